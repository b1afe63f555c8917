from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class NormalizedBookingEvent:
    """Provider-agnostic booking webhook. Nothing past the adapters branches on platform."""

    platform: str
    kind: str
    raw_trigger: str
    native_id: Optional[str]
    lead_email: Optional[str] = None
    lead_name: Optional[str] = None
    lead_phone: Optional[str] = None
    organizer_email: Optional[str] = None
    organizer_name: Optional[str] = None
    closer_email: Optional[str] = None
    closer_name: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    booked_at: Optional[datetime] = None
    event_name: Optional[str] = None
    event_type_id: Optional[str] = None
    secondary_native_id: Optional[str] = None
    responses: dict[str, Any] = field(default_factory=dict)
    user_fields: dict[str, Any] = field(default_factory=dict)
    booking_fields: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    setter_hint: Optional[str] = None
    source_hint: Optional[str] = None
    predecessor_native_id: Optional[str] = None
    successor_native_id: Optional[str] = None
    reschedule_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    no_show_guest: Optional[bool] = None
    no_show_host: Optional[bool] = None
    meeting_started_at: Optional[datetime] = None
    meeting_ended_at: Optional[datetime] = None
    recording_url: Optional[str] = None
    platform_account_id: Optional[str] = None
    organization_hint: Optional[str] = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


def deep_get(data: Any, *path: str) -> Any:
    cur: Any = data
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            return {}
    return {}


def first_non_empty(payload: Any, *keys: str) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in keys:
        val = payload.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_email(value: Any) -> Optional[str]:
    txt = clean_str(value)
    return txt.lower() if txt else None


def parse_dt(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch seconds. Unparseable input gives None, never "now"."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        txt = value.strip()
        if txt.endswith("Z"):
            txt = txt[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(txt)
        except ValueError:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt
    return None


def as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        low = value.strip().lower()
        if low in ("true", "yes", "1"):
            return True
        if low in ("false", "no", "0"):
            return False
    return None


def uuid_from_uri(uri_or_uuid: Any) -> Optional[str]:
    """Calendly v2 sends API URIs; the UUID is the last path segment."""
    txt = clean_str(uri_or_uuid)
    if not txt:
        return None
    if "/" not in txt:
        return txt
    return txt.rstrip("/").rsplit("/", 1)[-1] or None
