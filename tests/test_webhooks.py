from contextlib import asynccontextmanager

import pytest
from conftest import OTHER_ORG_ID, ORG_ID
from fastapi import FastAPI
from fastapi.testclient import TestClient

from salesops.engine import statuses as st
from salesops.engine import webhooks


@pytest.fixture
def client(repo, monkeypatch):
    @asynccontextmanager
    async def fake_repository():
        yield repo

    monkeypatch.setattr(webhooks, "_repository", fake_repository)
    app = FastAPI()
    app.include_router(webhooks.router)
    return TestClient(app)


def test_calcom_webhook_creates_event(client, repo, calcom_payload):
    r = client.post("/engine/webhooks/calcom", json=calcom_payload())

    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["action"] == "created"
    assert body["organization_id"] == ORG_ID
    assert repo.event(body["event_id"])["native_booking_id"] == "cal_123"

    again = client.post("/engine/webhooks/calcom", json=calcom_payload()).json()
    assert again["action"] == "unchanged"


def test_calendly_webhook_platform_case_insensitive(client, calendly_payload):
    r = client.post("/engine/webhooks/Calendly", json=calendly_payload())
    assert r.status_code == 200
    assert r.json()["action"] == "created"


def test_org_id_query_param(client, repo, calcom_payload):
    repo.add_organization(OTHER_ORG_ID)
    r = client.post(f"/engine/webhooks/calcom?org_id={OTHER_ORG_ID}", json=calcom_payload())
    assert r.json()["organization_id"] == OTHER_ORG_ID


def test_unknown_platform(client):
    assert client.post("/engine/webhooks/zoom", json={}).status_code == 404


def test_non_object_body(client):
    assert client.post("/engine/webhooks/calcom", json=[1, 2]).status_code == 400
    r = client.post("/engine/webhooks/calcom", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_unparseable_payload_audited(client, repo):
    r = client.post("/engine/webhooks/calcom", json={"triggerEvent": "BOOKING_CREATED"})

    assert r.status_code == 400
    (audit,) = repo.audit.values()
    assert audit["error_code"] == "invalid_payload"
    assert audit["platform"] == st.CALCOM


def test_unresolved_organization_acknowledged(client, repo, calcom_payload):
    repo.add_organization(OTHER_ORG_ID, settings={"integrations": {"calcom": {}}})
    payload = calcom_payload(organizer={"email": "nobody@nowhere.test"})

    r = client.post("/engine/webhooks/calcom", json=payload)

    assert r.status_code == 200
    assert r.json() == {
        "ok": False,
        "error_code": "organization_unresolved",
        "error": "Could not resolve organization for calcom booking cal_123",
        "event_id": None,
    }


def test_missing_email_is_client_error(client, calcom_payload):
    r = client.post("/engine/webhooks/calcom", json=calcom_payload(attendees=[]))
    assert r.status_code == 400
    assert r.json()["error_code"] == "missing_required_field"


def test_outcome_form_submit_and_retract(client, repo, calcom_payload):
    event_id = client.post("/engine/webhooks/calcom", json=calcom_payload()).json()["event_id"]

    r = client.post(
        "/engine/pcf",
        json={"event_id": event_id, "lead_showed": True, "offer_made": True, "deal_closed": True, "cash_collected": "500"},
    )
    assert r.status_code == 200
    assert repo.event(event_id)["event_outcome"] == st.CLOSED

    r = client.delete(f"/engine/pcf/{event_id}")
    assert r.status_code == 200
    assert repo.event(event_id)["call_status"] == st.SCHEDULED


def test_outcome_form_unknown_event(client):
    r = client.post("/engine/pcf", json={"event_id": "missing", "lead_showed": False})
    assert r.status_code == 404
    assert r.json()["error_code"] == "event_not_found"


def test_outcome_form_validation(client):
    assert client.post("/engine/pcf", json={"event_id": "x"}).status_code == 422


def test_manual_payment(client, repo):
    body = {
        "external_payment_id": "inv-1001",
        "customer_email": " Buyer@X.com ",
        "amount": "997.00",
        "organization_id": ORG_ID,
    }
    first = client.post("/engine/payments", json=body).json()
    second = client.post("/engine/payments", json=body).json()

    assert first["created"] is True
    assert second["created"] is False
    assert repo.payments[f"{ORG_ID}|inv-1001"]["customer_email"] == "buyer@x.com"

    body["payment_type"] = "barter"
    body["external_payment_id"] = "inv-1002"
    assert client.post("/engine/payments", json=body).status_code == 400


def test_whop_webhook(client, repo):
    ignored = client.post("/engine/payments/whop", json={"event": "membership.went_valid", "data": {}})
    assert ignored.json()["ignored"] is True

    payload = {"event": "payment.succeeded", "data": {"id": "pay_1", "user_email": "b@x.com", "total": 50}}
    r = client.post(f"/engine/payments/whop?org_id={ORG_ID}", json=payload)
    assert r.json()["created"] is True
    assert f"{ORG_ID}|whop_pay_1" in repo.payments


def test_get_event_view(client, repo, calcom_payload):
    repo.add_closer_name(ORG_ID, email="closer@acme.test", name=None, display="Casey")
    event_id = client.post("/engine/webhooks/calcom", json=calcom_payload()).json()["event_id"]

    r = client.get(f"/engine/events/{event_id}")

    assert r.status_code == 200
    assert r.json()["event"]["closer_display_name"] == "Casey"
    assert client.get("/engine/events/missing").status_code == 404


def test_webhook_log_line_is_sanitized(client, calcom_payload, caplog):
    payload = calcom_payload()
    payload["email"] = "leak@x.com"

    with caplog.at_level("INFO", logger="salesops.engine.webhooks"):
        client.post("/engine/webhooks/calcom", json=payload)

    assert "calcom webhook received" in caplog.text
    assert "BOOKING_CREATED" in caplog.text
    assert "leak@x.com" not in caplog.text
