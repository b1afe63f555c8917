"""
Identity matcher: find the tracked event an inbound booking refers to.

Rule 1: exact native booking id (authoritative).
Rule 2: same lead email + organization + platform (or legacy NULL platform)
        with scheduled_at within +/- tolerance, inclusive.
Rule 3: no match, caller creates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from salesops.config import settings

logger = logging.getLogger(__name__)

RULE_NATIVE_ID = "native_id"
RULE_EMAIL_TIME = "email_time_window"
RULE_NONE = "none"


@dataclass(frozen=True)
class MatchResult:
    event_id: Optional[str]
    rule: str
    candidates: int = 0
    record: Optional[dict[str, Any]] = None

    @property
    def matched(self) -> bool:
        return self.event_id is not None


NO_MATCH = MatchResult(None, RULE_NONE)


def match_tolerance() -> timedelta:
    return timedelta(seconds=settings.match_tolerance_seconds)


def within_tolerance(a: Optional[datetime], b: Optional[datetime], tolerance: timedelta) -> bool:
    if a is None or b is None:
        return False
    return abs(a - b) <= tolerance


def _created_key(row: dict[str, Any]) -> float:
    created = row.get("created_at")
    return created.timestamp() if isinstance(created, datetime) else float("-inf")


def pick_most_recent(candidates: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Ambiguous rule-2 matches resolve to the most recently created row."""
    if not candidates:
        return None
    return max(candidates, key=_created_key)


async def find_matching_event(
    repo: Any,
    *,
    organization_id: str,
    platform: str,
    native_id: Optional[str],
    lead_email: Optional[str],
    scheduled_at: Optional[datetime],
    tolerance: Optional[timedelta] = None,
) -> MatchResult:
    if native_id:
        row = await repo.find_event_by_native_id(organization_id, platform, native_id)
        if row:
            return MatchResult(row["id"], RULE_NATIVE_ID, 1, row)

    if not lead_email or scheduled_at is None:
        return NO_MATCH

    window = tolerance if tolerance is not None else match_tolerance()
    rows = await repo.find_events_near(
        organization_id, platform, lead_email, scheduled_at, int(window.total_seconds())
    )
    candidates = [
        r
        for r in rows
        if within_tolerance(r.get("scheduled_at"), scheduled_at, window)
        # a row already holding another native id is a different booking
        and not (native_id and r.get("native_booking_id") and r["native_booking_id"] != native_id)
    ]
    if not candidates:
        return NO_MATCH

    best = pick_most_recent(candidates) or candidates[0]
    if len(candidates) > 1:
        logger.warning(
            "Ambiguous fallback match org=%s email=%s candidates=%d chose=%s",
            organization_id,
            lead_email,
            len(candidates),
            best["id"],
        )
    return MatchResult(best["id"], RULE_EMAIL_TIME, len(candidates), best)
