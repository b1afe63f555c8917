from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from salesops.db import acquire
from salesops.engine import statuses as st
from salesops.engine.audit import sanitize_for_logging
from salesops.engine.errors import (
    OrganizationUnresolved,
    ReconciliationError,
)
from salesops.engine.payments import record_payment, record_refund
from salesops.engine.providers.base import normalize_email
from salesops.engine.providers.calcom import parse_calcom_webhook
from salesops.engine.providers.calendly import parse_calendly_webhook
from salesops.engine.providers.whop import PAID_IN_FULL, NormalizedPayment, parse_whop_webhook
from salesops.engine.reconciler import (
    OutcomeFormSubmission,
    load_event_view,
    reconcile_booking_event,
    record_rejected_webhook,
    retract_outcome_form,
    submit_outcome_form,
)
from salesops.engine.repository import EventRepository
from salesops.services.enrichment import enrich_lead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/engine", tags=["engine"])


class OutcomeFormBody(BaseModel):
    event_id: str
    lead_showed: bool
    offer_made: bool = False
    deal_closed: bool = False
    call_occurred: Optional[bool] = None
    cash_collected: Optional[Decimal] = None
    pipeline_stage_id: Optional[str] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None


class PaymentBody(BaseModel):
    external_payment_id: str
    customer_email: str
    amount: Decimal
    paid_at: Optional[datetime] = None
    payment_type: str = PAID_IN_FULL
    currency: Optional[str] = None
    organization_id: Optional[str] = None


@asynccontextmanager
async def _repository() -> AsyncIterator[EventRepository]:
    async with acquire() as conn:
        yield EventRepository(conn)


def _get_parser(platform: str):
    platform_l = platform.lower()
    if platform_l == st.CALCOM:
        return parse_calcom_webhook
    if platform_l == st.CALENDLY:
        return parse_calendly_webhook
    raise HTTPException(status_code=404, detail=f"Unsupported platform: {platform}")


def _error_response(e: ReconciliationError) -> JSONResponse:
    return JSONResponse(
        status_code=e.http_status,
        content={"ok": False, "error_code": e.code, "error": e.message, "event_id": e.event_id},
    )


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body must be valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")
    return payload


@router.post("/webhooks/{platform}")
async def ingest_booking_webhook(
    platform: str,
    request: Request,
    org_id: Optional[str] = None,
) -> Any:
    parser = _get_parser(platform)
    payload = await _json_object(request)
    logger.info("%s webhook received: %s", platform.lower(), sanitize_for_logging(payload))
    headers = dict(request.headers)
    client_ip = request.client.host if request.client else None

    async with _repository() as repo:
        try:
            event = parser(payload)
        except ValueError as e:
            await record_rejected_webhook(
                repo,
                platform=platform.lower(),
                payload=payload,
                error=str(e),
                headers=headers,
                client_ip=client_ip,
            )
            raise HTTPException(status_code=400, detail=str(e))

        try:
            result = await reconcile_booking_event(
                repo,
                event,
                org_hint=org_id,
                headers=headers,
                client_ip=client_ip,
                enricher=enrich_lead,
            )
        except OrganizationUnresolved as e:
            # acknowledged with 200 so the platform stops redelivering
            logger.warning("Dropping %s webhook: %s", platform, e.message)
            return _error_response(e)
        except ReconciliationError as e:
            return _error_response(e)

    return result.as_dict()


@router.post("/pcf")
async def submit_pcf(body: OutcomeFormBody) -> Any:
    form = OutcomeFormSubmission(
        event_id=body.event_id,
        lead_showed=body.lead_showed,
        offer_made=body.offer_made,
        deal_closed=body.deal_closed,
        call_occurred=body.call_occurred,
        cash_collected=body.cash_collected,
        pipeline_stage_id=body.pipeline_stage_id,
        notes=body.notes,
        submitted_by=body.submitted_by,
    )
    async with _repository() as repo:
        try:
            result = await submit_outcome_form(repo, form)
        except ReconciliationError as e:
            return _error_response(e)
    return result.as_dict()


@router.delete("/pcf/{event_id}")
async def delete_pcf(event_id: str) -> Any:
    async with _repository() as repo:
        try:
            result = await retract_outcome_form(repo, event_id)
        except ReconciliationError as e:
            return _error_response(e)
    return result.as_dict()


@router.post("/payments")
async def ingest_payment(body: PaymentBody) -> Any:
    email = normalize_email(body.customer_email)
    payment = NormalizedPayment(
        kind="payment",
        external_payment_id=body.external_payment_id,
        customer_email=email,
        amount=body.amount,
        paid_at=body.paid_at,
        payment_type=body.payment_type,
        currency=body.currency,
        raw_payload=body.model_dump(mode="json"),
    )
    async with _repository() as repo:
        try:
            result = await record_payment(repo, payment, org_hint=body.organization_id, provider="manual")
        except ReconciliationError as e:
            return _error_response(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return result.as_dict()


@router.post("/payments/whop")
async def ingest_whop_webhook(request: Request, org_id: Optional[str] = None) -> Any:
    payload = await _json_object(request)
    payment = parse_whop_webhook(payload)
    if payment.kind == "unsupported":
        return {"ok": True, "ignored": True}
    if payment.kind == "payment" and not payment.customer_email:
        return {"ok": True, "ignored": True, "reason": "no customer email"}

    async with _repository() as repo:
        try:
            if payment.kind == "refund":
                result = await record_refund(repo, payment, org_hint=org_id)
            else:
                result = await record_payment(repo, payment, org_hint=org_id)
        except ReconciliationError as e:
            return _error_response(e)
    return result.as_dict()


@router.get("/events/{event_id}")
async def get_event(event_id: str) -> Any:
    async with _repository() as repo:
        try:
            view = await load_event_view(repo, event_id)
        except ReconciliationError as e:
            raise HTTPException(status_code=e.http_status, detail=e.message)
    return {"ok": True, "event": view}
