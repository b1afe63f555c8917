from datetime import timedelta

import pytest
from conftest import CALENDLY_ORG_URI, T0

from salesops.engine import statuses as st
from salesops.engine.providers.calendly import extract_closer, parse_calendly_webhook


def test_invitee_created(calendly_payload):
    payload = calendly_payload(
        questions_and_answers=[
            {"question": "Who is your setter?", "answer": "Mike"},
            {"question": "Budget", "answer": "5k"},
        ],
        tracking={"utm_source": "instagram", "utm_campaign": "spring", "utm_term": None},
        text_reminder_number="+441234",
    )
    payload["payload"]["organization"] = CALENDLY_ORG_URI

    event = parse_calendly_webhook(payload)

    assert event.platform == st.CALENDLY
    assert event.kind == st.KIND_CREATED
    assert event.native_id == "INV-1"
    assert event.secondary_native_id == "EVT-1"
    assert event.lead_email == "lead@example.com"
    assert event.lead_phone == "+441234"
    assert event.event_name == "Strategy Call"
    assert event.scheduled_at == T0
    assert event.ends_at == T0 + timedelta(minutes=45)
    assert event.booked_at == T0 - timedelta(days=1)
    assert event.closer_email == "closer@acme.test"
    assert event.closer_name == "Casey Closer"
    assert event.responses == {"Who is your setter?": "Mike", "Budget": "5k"}
    assert event.setter_hint == "Mike"
    assert event.source_hint == "instagram"
    assert event.metadata == {"utm_source": "instagram", "utm_campaign": "spring"}
    assert event.platform_account_id == CALENDLY_ORG_URI


def test_created_with_old_invitee_is_reschedule(calendly_payload):
    event = parse_calendly_webhook(
        calendly_payload(invitee="INV-2", old_invitee="https://api.calendly.com/scheduled_events/EVT-1/invitees/INV-1")
    )
    assert event.kind == st.KIND_RESCHEDULED
    assert event.predecessor_native_id == "INV-1"


def test_canceled_with_new_invitee(calendly_payload):
    event = parse_calendly_webhook(
        calendly_payload(
            "invitee.canceled",
            new_invitee="https://api.calendly.com/scheduled_events/EVT-2/invitees/INV-2",
            cancellation={"reason": "Rescheduling", "canceled_by": "Lead Person"},
        )
    )
    assert event.kind == st.KIND_CANCELED
    assert event.successor_native_id == "INV-2"
    assert event.cancellation_reason == "Rescheduling"


@pytest.mark.parametrize(
    "trigger, guest",
    [("invitee_no_show.created", True), ("invitee_no_show.deleted", False)],
)
def test_no_show_triggers(trigger, guest):
    event = parse_calendly_webhook(
        {"event": trigger, "payload": {"invitee": "https://api.calendly.com/scheduled_events/E/invitees/INV-9"}}
    )
    assert event.kind == st.KIND_NO_SHOW_UPDATED
    assert event.native_id == "INV-9"
    assert event.no_show_guest is guest


def test_utm_term_setter_hint_filters_machine_tokens(calendly_payload):
    assert parse_calendly_webhook(calendly_payload(tracking={"utm_term": "rob"})).setter_hint == "rob"
    assert parse_calendly_webhook(calendly_payload(tracking={"utm_term": "user_123"})).setter_hint is None
    token = "a1b2c3d4e5f6a7b8c9d0e1f2"
    assert parse_calendly_webhook(calendly_payload(tracking={"utm_term": token})).setter_hint is None


def test_unknown_trigger_unsupported(calendly_payload):
    assert parse_calendly_webhook(calendly_payload("routing_form_submission.created")).kind == st.KIND_UNSUPPORTED


def test_missing_payload_object():
    with pytest.raises(ValueError):
        parse_calendly_webhook({"event": "invitee.created"})


def test_closer_fallback_order():
    body = {"scheduled_by": {"name": "Sam", "email": "SAM@acme.test"}}
    assert extract_closer({"event_memberships": []}, body, body) == ("Sam", "sam@acme.test", "scheduled_by")

    scheduled_event = {"event_guests": [{"email": "guest@acme.test"}]}
    assert extract_closer(scheduled_event, body, body) == (None, "guest@acme.test", "event_guests")

    routed = {"routing_form_submission": {"assigned_to": {"name": "Rita"}}}
    assert extract_closer({}, {}, routed) == ("Rita", None, "routing_form_assigned")

    assert extract_closer({}, {}, {}) == (None, None, "none")
