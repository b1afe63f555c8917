from __future__ import annotations

import logging
import re
from typing import Any, Optional

from salesops.engine import statuses as st
from salesops.engine.providers.base import (
    NormalizedBookingEvent,
    as_dict,
    clean_str,
    deep_get,
    first_non_empty,
    normalize_email,
    parse_dt,
    uuid_from_uri,
)

_TRIGGER_KINDS = {
    "invitee.created": st.KIND_CREATED,
    "invitee.canceled": st.KIND_CANCELED,
    "invitee_no_show.created": st.KIND_NO_SHOW_UPDATED,
    "invitee_no_show.deleted": st.KIND_NO_SHOW_UPDATED,
}

_SETTER_QUESTION_MARKERS = ("setter", "who referred")
_MACHINE_TOKEN = re.compile(r"^[a-z0-9]{20,}$", re.IGNORECASE)

logger = logging.getLogger(__name__)


def _person(obj: Any, name_key: str = "name", email_key: str = "email") -> tuple[Optional[str], Optional[str]]:
    if not isinstance(obj, dict):
        return None, None
    return clean_str(obj.get(name_key)), normalize_email(obj.get(email_key))


def extract_closer(
    scheduled_event: dict[str, Any],
    body: dict[str, Any],
    invitee: dict[str, Any],
) -> tuple[Optional[str], Optional[str], str]:
    """
    Closer (host) of a Calendly booking. Returns (name, email, method).

    Priority: event_memberships[0] > event_guests[0] > scheduled_by >
    assigned_to > event_type.profile > routing_form_submission.assigned_to
    """
    memberships = scheduled_event.get("event_memberships")
    if isinstance(memberships, list) and memberships:
        name, email = _person(memberships[0], "user_name", "user_email")
        if name or email:
            return name, email, "event_memberships"

    guests = scheduled_event.get("event_guests")
    if isinstance(guests, list) and guests:
        name, email = _person(guests[0])
        if name or email:
            return name, email, "event_guests"

    for key in ("scheduled_by", "assigned_to"):
        name, email = _person(body.get(key))
        if name or email:
            return name, email, key

    event_type = scheduled_event.get("event_type") or body.get("event_type")
    name, email = _person(deep_get(event_type, "profile"))
    if name or email:
        return name, email, "event_type_profile"

    name, email = _person(deep_get(invitee, "routing_form_submission", "assigned_to"))
    if name or email:
        return name, email, "routing_form_assigned"

    return None, None, "none"


def _questions_to_responses(questions: Any) -> dict[str, Any]:
    responses: dict[str, Any] = {}
    if not isinstance(questions, list):
        return responses
    for item in questions:
        if not isinstance(item, dict):
            continue
        question = clean_str(item.get("question"))
        if question and item.get("answer") is not None:
            responses[question] = item.get("answer")
    return responses


def _setter_hint(responses: dict[str, Any], tracking: dict[str, Any]) -> Optional[str]:
    for question, answer in responses.items():
        low = question.lower()
        if any(marker in low for marker in _SETTER_QUESTION_MARKERS):
            hint = clean_str(answer)
            if hint:
                return hint

    utm_term = clean_str(tracking.get("utm_term"))
    if utm_term and not utm_term.lower().startswith("user_") and not _MACHINE_TOKEN.match(utm_term):
        return utm_term
    return None


def parse_calendly_webhook(payload: dict[str, Any]) -> NormalizedBookingEvent:
    """
    Parse a Calendly v2 webhook body ({event, payload}) into the internal
    booking contract. Native id is the invitee UUID.
    """
    trigger = first_non_empty(payload, "event") or ""
    body = payload.get("payload")
    if not isinstance(body, dict):
        raise ValueError("Missing payload object in Calendly webhook")

    kind = _TRIGGER_KINDS.get(trigger.lower(), st.KIND_UNSUPPORTED)

    # invitee_no_show.* payloads reference the invitee by URI string
    raw_invitee = body.get("invitee")
    invitee = raw_invitee if isinstance(raw_invitee, dict) else body
    scheduled_event = as_dict(body.get("scheduled_event")) or as_dict(body.get("event"))
    cancellation = as_dict(body.get("cancellation")) or as_dict(invitee.get("cancellation"))
    tracking = as_dict(invitee.get("tracking"))

    native_id = (
        uuid_from_uri(raw_invitee if isinstance(raw_invitee, str) else invitee.get("uri"))
        or clean_str(invitee.get("uuid"))
        or clean_str(scheduled_event.get("invitee_uuid"))
    )
    event_uuid = (
        uuid_from_uri(scheduled_event.get("uri"))
        or clean_str(scheduled_event.get("uuid"))
        or clean_str(body.get("event_uuid"))
    )

    predecessor = uuid_from_uri(invitee.get("old_invitee"))
    successor = uuid_from_uri(invitee.get("new_invitee"))
    if kind == st.KIND_CREATED and predecessor:
        kind = st.KIND_RESCHEDULED

    no_show_guest: Optional[bool] = None
    if kind == st.KIND_NO_SHOW_UPDATED:
        no_show_guest = trigger.lower() == "invitee_no_show.created"

    responses = _questions_to_responses(invitee.get("questions_and_answers"))
    closer_name, closer_email, method = extract_closer(scheduled_event, body, invitee)
    if method == "none" and kind in st.BOOKING_KINDS:
        logger.warning("Calendly closer extraction failed for invitee=%s", native_id)

    source_hint = (
        clean_str(tracking.get("source"))
        or clean_str(tracking.get("utm_source"))
        or clean_str(invitee.get("utm_source"))
        or clean_str(tracking.get("platform"))
        or clean_str(tracking.get("utm_medium"))
        or clean_str(invitee.get("utm_medium"))
    )
    metadata = {k: v for k, v in tracking.items() if v is not None}

    event_name = (
        clean_str(scheduled_event.get("name"))
        or clean_str(deep_get(scheduled_event, "event_type", "name"))
        or clean_str(deep_get(body, "event_type", "name"))
    )

    return NormalizedBookingEvent(
        platform=st.CALENDLY,
        kind=kind,
        raw_trigger=trigger,
        native_id=native_id,
        secondary_native_id=event_uuid,
        lead_email=normalize_email(invitee.get("email")),
        lead_name=clean_str(invitee.get("name")) or clean_str(invitee.get("first_name")),
        lead_phone=clean_str(invitee.get("text_reminder_number")),
        organizer_email=closer_email,
        organizer_name=closer_name,
        closer_email=closer_email,
        closer_name=closer_name,
        scheduled_at=parse_dt(scheduled_event.get("start_time") or body.get("event_start_time")),
        ends_at=parse_dt(scheduled_event.get("end_time")),
        booked_at=parse_dt(scheduled_event.get("created_at") or invitee.get("created_at")),
        event_name=event_name,
        responses=responses,
        metadata=metadata,
        setter_hint=_setter_hint(responses, tracking),
        source_hint=source_hint,
        predecessor_native_id=predecessor,
        successor_native_id=successor,
        cancellation_reason=clean_str(cancellation.get("reason")),
        no_show_guest=no_show_guest,
        platform_account_id=clean_str(body.get("organization")),
        organization_hint=first_non_empty(payload, "organization_id", "tenant_id"),
        raw_payload=payload,
    )
