from __future__ import annotations

import logging
from typing import Any, Optional

from salesops.engine.errors import OrganizationUnresolved
from salesops.engine.providers.base import NormalizedBookingEvent, as_dict, uuid_from_uri

logger = logging.getLogger(__name__)


def _from_nested(settings: dict[str, Any], keys: list[str]) -> Any:
    cur: Any = settings
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _nested_str(settings: dict[str, Any], keys: list[str]) -> Optional[str]:
    val = _from_nested(settings, keys)
    if isinstance(val, str) and val.strip():
        return val.strip()
    return None


def platform_configured(settings: dict[str, Any], platform: str) -> bool:
    block = _from_nested(settings, ["integrations", platform])
    if isinstance(block, dict):
        return block.get("enabled", True) is not False
    return bool(_from_nested(settings, [f"{platform}_enabled"]))


def configured_account_id(settings: dict[str, Any], platform: str) -> Optional[str]:
    candidates = [
        _nested_str(settings, ["integrations", platform, "organization_uri"]),
        _nested_str(settings, ["integrations", platform, "account_id"]),
        _nested_str(settings, [f"{platform}_organization_uri"]),
    ]
    for item in candidates:
        if item:
            return item
    return None


def _same_account(configured: str, incoming: str) -> bool:
    # Calendly organization URIs may be stored as full URI or bare UUID
    return configured == incoming or uuid_from_uri(configured) == uuid_from_uri(incoming)


async def resolve_organization(
    repo: Any,
    event: NormalizedBookingEvent,
    *,
    org_hint: Optional[str] = None,
) -> str:
    """
    Tenant for an inbound booking webhook. Order:
    explicit hint > platform account mapping > organizer/closer membership >
    the single enabled organization with the platform configured.
    """
    for hint in (org_hint, event.organization_hint):
        if not hint:
            continue
        org = await repo.find_organization(hint)
        if org:
            return org["id"]
        logger.warning("Organization hint did not resolve hint=%s platform=%s", hint, event.platform)

    orgs = await repo.list_enabled_organizations()

    if event.platform_account_id:
        for org in orgs:
            configured = configured_account_id(as_dict(org["settings"]), event.platform)
            if configured and _same_account(configured, event.platform_account_id):
                return org["id"]

    for email in (event.organizer_email, event.closer_email):
        if not email:
            continue
        org_ids = await repo.find_org_ids_by_member_email(email)
        if len(org_ids) == 1:
            return org_ids[0]
        if len(org_ids) > 1:
            logger.warning("Organizer email belongs to %d organizations email=%s", len(org_ids), email)

    configured_orgs = [o for o in orgs if platform_configured(as_dict(o["settings"]), event.platform)]
    if len(configured_orgs) == 1:
        return configured_orgs[0]["id"]

    raise OrganizationUnresolved(
        f"Could not resolve organization for {event.platform} booking {event.native_id or '<no id>'}"
    )
