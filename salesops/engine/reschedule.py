"""
Reschedule chain tracking.

Explicit: the platform names the booking this one replaces (Cal.com
rescheduledFromUid, Calendly old_invitee / new_invitee).
Inferred: a fresh scheduled booking retires every other scheduled or
canceled booking for the same (lead email, event name, organization),
so at most one booking per triple stays scheduled.

Every function here is safe to re-run on the same input.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from salesops.engine import statuses as st
from salesops.engine.outcomes import auto_complete

logger = logging.getLogger(__name__)


def _changed(record: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if record.get(k) != v}


def retire_fields() -> dict[str, Any]:
    return auto_complete(st.RESCHEDULED)


async def _retire(repo: Any, record: dict[str, Any], extra: Optional[dict[str, Any]] = None) -> bool:
    fields = retire_fields()
    if extra:
        fields.update(extra)
    changes = _changed(record, fields)
    if not changes:
        return False
    await repo.update_event(record["id"], changes)
    return True


async def link_explicit_predecessor(
    repo: Any,
    *,
    organization_id: str,
    platform: str,
    predecessor_native_id: str,
    successor_native_id: Optional[str],
    reason: Optional[str] = None,
) -> Optional[str]:
    """
    Mark the named predecessor rescheduled and point it at its replacement.
    Returns the predecessor's event id, or None when it is not on file.
    """
    predecessor = await repo.find_event_by_native_id(organization_id, platform, predecessor_native_id)
    if predecessor is None:
        logger.info(
            "Reschedule predecessor not found org=%s platform=%s native_id=%s",
            organization_id,
            platform,
            predecessor_native_id,
        )
        return None

    extra: dict[str, Any] = {}
    if reason and not predecessor.get("reschedule_reason"):
        extra["reschedule_reason"] = reason
    await _retire(repo, predecessor, extra)

    if successor_native_id and not predecessor.get("rescheduled_to_uid"):
        await repo.set_rescheduled_to(predecessor["id"], successor_native_id)
    return predecessor["id"]


async def find_successor(
    repo: Any, *, organization_id: str, platform: str, native_id: Optional[str]
) -> Optional[dict[str, Any]]:
    """A record already on file that names `native_id` as its predecessor (out-of-order delivery)."""
    if not native_id:
        return None
    return await repo.find_successor(organization_id, platform, native_id)


def choose_survivor(incoming: dict[str, Any], others: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Latest booked_at stays scheduled. Ties and missing timestamps go to the
    incoming record.
    """
    survivor = incoming
    best: Optional[datetime] = incoming.get("booked_at")
    if best is None:
        return incoming
    for other in others:
        booked = other.get("booked_at")
        if booked is not None and booked > best:
            survivor, best = other, booked
    return survivor


async def retire_superseded(repo: Any, *, organization_id: str, record: dict[str, Any]) -> list[str]:
    """
    Enforce one scheduled booking per (lead email, event name, organization).
    Returns the ids moved to rescheduled by this call.
    """
    if record.get("call_status") != st.SCHEDULED:
        return []
    email = record.get("lead_email")
    event_name = record.get("event_name")
    if not email or not event_name:
        return []

    await repo.lock_chain(organization_id, email, event_name)
    candidates = await repo.find_chain_candidates(
        organization_id, email, event_name, exclude_id=record["id"]
    )
    if not candidates:
        return []

    scheduled = [c for c in candidates if c.get("call_status") == st.SCHEDULED]
    survivor = choose_survivor(record, scheduled)

    retired: list[str] = []
    for row in [record, *candidates]:
        if row["id"] == survivor["id"]:
            continue
        if await _retire(repo, row):
            retired.append(row["id"])

    if retired:
        logger.info(
            "Inferred reschedule org=%s email=%s event=%s survivor=%s retired=%s",
            organization_id,
            email,
            event_name,
            survivor["id"],
            retired,
        )
    return retired


async def cancellation_status(
    repo: Any,
    *,
    organization_id: str,
    lead_email: Optional[str],
    event_name: Optional[str],
    exclude_id: Optional[str],
) -> str:
    """
    A cancellation with another live booking for the same triple is the first
    half of a reschedule, not a real cancellation.
    """
    if not lead_email or not event_name:
        return st.CANCELED
    others = await repo.find_chain_candidates(
        organization_id, lead_email, event_name, exclude_id=exclude_id, statuses=(st.SCHEDULED,)
    )
    return st.RESCHEDULED if others else st.CANCELED
