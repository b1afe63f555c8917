"""
Webhook audit trail: one row per inbound webhook, header redaction and a
payload sanitizer for log lines.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from salesops.engine import statuses as st
from salesops.engine.providers.base import NormalizedBookingEvent

REDACTED = "[REDACTED]"

_SENSITIVE_HEADER_MARKERS = ("authorization", "x-api-key", "cookie", "signature", "token", "secret")
_SENSITIVE_KEY_MARKERS = (
    "password", "token", "secret", "api_key", "apikey", "authorization", "signature", "email", "phone",
)


def redact_headers(headers: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    if not headers:
        return {}
    out: dict[str, Any] = {}
    for name, value in headers.items():
        low = str(name).lower()
        if any(marker in low for marker in _SENSITIVE_HEADER_MARKERS):
            out[name] = REDACTED
        else:
            out[name] = value
    return out


def sanitize_for_logging(data: Any) -> Any:
    """Flat view of a payload for log lines without secrets or contact details. Nested objects collapse to a marker."""
    if not isinstance(data, dict):
        return data
    out: dict[str, Any] = {}
    for key, value in data.items():
        low = str(key).lower()
        if any(marker in low for marker in _SENSITIVE_KEY_MARKERS):
            out[key] = REDACTED
        elif isinstance(value, dict):
            out[key] = "[Object]"
        elif isinstance(value, list):
            out[key] = f"[Array({len(value)})]"
        else:
            out[key] = value
    return out


def build_audit_record(
    event: Optional[NormalizedBookingEvent],
    *,
    platform: str,
    payload: dict[str, Any],
    headers: Optional[Mapping[str, Any]] = None,
    client_ip: Optional[str] = None,
) -> dict[str, Any]:
    """Audit row for an inbound webhook. `event` is None when the adapter rejected the body."""
    record: dict[str, Any] = {
        "platform": platform,
        "headers": redact_headers(headers),
        "client_ip": client_ip,
        "payload": payload,
        "processing_result": st.AUDIT_PROCESSING,
    }
    if event is None:
        return record
    record.update(
        {
            "trigger_event": event.raw_trigger,
            "native_booking_id": event.native_id,
            "attendee_email": event.lead_email,
            "organizer_email": event.organizer_email,
            "event_name": event.event_name,
            "scheduled_at": event.scheduled_at,
            "rescheduled_from_uid": event.predecessor_native_id,
            "rescheduled_to_uid": event.successor_native_id,
            "reschedule_reason": event.reschedule_reason,
            "cancellation_reason": event.cancellation_reason,
            "no_show_guest": event.no_show_guest,
            "no_show_host": event.no_show_host,
        }
    )
    return record
