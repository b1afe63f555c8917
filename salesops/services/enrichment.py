"""
CRM enrichment for inbound bookings (HubSpot contact id, Close lead source).

Runs before the reconciliation transaction. An unavailable CRM never blocks
the upsert: the enrichment fields simply stay NULL.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from salesops.adapters.crm import close, hubspot
from salesops.config import settings
from salesops.engine.errors import UpstreamUnavailable
from salesops.engine.providers.base import as_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Enrichment:
    hubspot_contact_id: Optional[str] = None
    close_lead_source: Optional[str] = None


EMPTY = Enrichment()


def _from_nested(data: dict[str, Any], keys: list[str]) -> Optional[str]:
    cur: Any = data
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    if isinstance(cur, str) and cur.strip():
        return cur.strip()
    return None


def primary_crm(org_settings: dict[str, Any]) -> Optional[str]:
    crm = _from_nested(org_settings, ["crm", "primary"])
    return crm.lower() if crm else None


def crm_api_key(org_settings: dict[str, Any], crm: str) -> Optional[str]:
    configured = _from_nested(org_settings, ["crm", crm, "api_key"])
    if configured:
        return configured
    if crm == "hubspot":
        return settings.hubspot_api_key or None
    if crm == "close":
        return settings.close_api_key or None
    return None


async def enrich_lead(
    repo: Any,
    organization_id: str,
    email: Optional[str],
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Enrichment:
    if not settings.crm_enrichment_enabled or not email:
        return EMPTY

    org = await repo.find_organization(organization_id)
    org_settings = as_dict(org["settings"]) if org else {}
    crm = primary_crm(org_settings)
    if not crm:
        return EMPTY
    api_key = crm_api_key(org_settings, crm)
    if not api_key:
        logger.warning("CRM %s configured without API key org=%s", crm, organization_id)
        return EMPTY

    timeout = settings.crm_timeout_seconds
    try:
        if crm == "hubspot":
            contact_id = await hubspot.find_contact_id(api_key, email, timeout=timeout, transport=transport)
            return Enrichment(hubspot_contact_id=contact_id)
        if crm == "close":
            source = await close.fetch_lead_source(api_key, email, timeout=timeout, transport=transport)
            return Enrichment(close_lead_source=source)
    except UpstreamUnavailable as e:
        logger.warning("CRM enrichment unavailable org=%s crm=%s: %s", organization_id, crm, e.message)
        return EMPTY
    except (httpx.HTTPStatusError, RuntimeError) as e:
        logger.error("CRM enrichment failed org=%s crm=%s: %s", organization_id, crm, e)
        return EMPTY

    logger.info("Unsupported CRM for enrichment org=%s crm=%s", organization_id, crm)
    return EMPTY
