from __future__ import annotations

from typing import Any

from salesops.engine import statuses as st
from salesops.engine.providers.base import (
    NormalizedBookingEvent,
    as_bool,
    as_dict,
    clean_str,
    deep_get,
    first_non_empty,
    normalize_email,
    parse_dt,
)

_TRIGGER_KINDS = {
    "BOOKING_CREATED": st.KIND_CREATED,
    "BOOKING_RESCHEDULED": st.KIND_RESCHEDULED,
    "BOOKING_CANCELLED": st.KIND_CANCELED,
    "BOOKING_CANCELED": st.KIND_CANCELED,
    "BOOKING_NO_SHOW_UPDATED": st.KIND_NO_SHOW_UPDATED,
    "MEETING_STARTED": st.KIND_MEETING_STARTED,
    "MEETING_ENDED": st.KIND_MEETING_ENDED,
    "RECORDING_READY": st.KIND_RECORDING_READY,
}


def parse_calcom_webhook(payload: dict[str, Any]) -> NormalizedBookingEvent:
    """
    Parse a Cal.com webhook body ({triggerEvent, createdAt, payload}) into the
    internal booking contract.
    """
    trigger = first_non_empty(payload, "triggerEvent", "trigger_event") or ""
    body = payload.get("payload")
    if not isinstance(body, dict):
        raise ValueError("Missing payload object in Cal.com webhook")

    kind = _TRIGGER_KINDS.get(trigger.upper(), st.KIND_UNSUPPORTED)

    attendees = body.get("attendees")
    attendee: dict[str, Any] = {}
    if isinstance(attendees, list) and attendees and isinstance(attendees[0], dict):
        attendee = attendees[0]
    organizer = as_dict(body.get("organizer"))
    event_type = as_dict(body.get("eventType"))

    event_type_id = event_type.get("id")

    return NormalizedBookingEvent(
        platform=st.CALCOM,
        kind=kind,
        raw_trigger=trigger,
        native_id=clean_str(body.get("uid")),
        lead_email=normalize_email(attendee.get("email")),
        lead_name=clean_str(attendee.get("name")),
        lead_phone=clean_str(attendee.get("phoneNumber")),
        organizer_email=normalize_email(organizer.get("email")),
        organizer_name=clean_str(organizer.get("name")),
        closer_email=normalize_email(organizer.get("email")),
        closer_name=clean_str(organizer.get("name")),
        scheduled_at=parse_dt(body.get("startTime")),
        ends_at=parse_dt(body.get("endTime")),
        booked_at=parse_dt(payload.get("createdAt")),
        event_name=clean_str(event_type.get("title")) or clean_str(body.get("title")),
        event_type_id=str(event_type_id) if event_type_id is not None else None,
        responses=as_dict(body.get("responses")),
        user_fields=as_dict(body.get("userFieldsResponses")),
        booking_fields=as_dict(body.get("bookingFieldsResponses")),
        metadata=as_dict(body.get("metadata")),
        predecessor_native_id=clean_str(body.get("rescheduledFromUid")),
        reschedule_reason=clean_str(body.get("rescheduleReason")),
        cancellation_reason=clean_str(body.get("cancellationReason")),
        no_show_guest=as_bool(attendee.get("noShow")),
        no_show_host=as_bool(body.get("noShowHost")),
        meeting_started_at=parse_dt(body.get("meetingStartedAt")),
        meeting_ended_at=parse_dt(body.get("meetingEndedAt")),
        recording_url=clean_str(body.get("recordingUrl")) or clean_str(deep_get(body, "videoCallData", "recordingUrl")),
        organization_hint=first_non_empty(payload, "organization_id", "tenant_id")
        or first_non_empty(body, "organization_id", "tenant_id"),
        raw_payload=payload,
    )
