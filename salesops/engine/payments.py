"""
Payment / attribution join.

A payment copies event, setter, closer and source attribution from the
customer's most recently scheduled tracked event at creation time. The copy
is never refreshed: later re-attribution of the lead leaves historical
payments as they were recorded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from salesops.engine.errors import MissingRequiredField, OrganizationUnresolved
from salesops.engine.providers.base import as_dict
from salesops.engine.providers.whop import PAYMENT_TYPES, NormalizedPayment
from salesops.engine.tenants import configured_account_id
from salesops.engine.trace_logger import log_reconciliation_run

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    ok: bool
    created: bool
    payment_id: Optional[str] = None
    organization_id: Optional[str] = None
    event_id: Optional[str] = None
    refunded: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "created": self.created,
            "payment_id": self.payment_id,
            "organization_id": self.organization_id,
            "event_id": self.event_id,
            "refunded": self.refunded,
        }


async def _org_from_account(repo: Any, provider: str, account_id: Optional[str]) -> Optional[str]:
    if not account_id:
        return None
    for org in await repo.list_enabled_organizations():
        if configured_account_id(as_dict(org["settings"]), provider) == account_id:
            return org["id"]
    return None


async def _resolve_attribution(
    repo: Any,
    payment: NormalizedPayment,
    org_hint: Optional[str],
    provider: str,
) -> tuple[str, Optional[dict[str, Any]], Optional[dict[str, Any]]]:
    """(organization_id, latest event, lead) for a payment's customer."""
    organization_id = await _org_from_account(repo, provider, payment.account_id)
    if organization_id is None and org_hint:
        org = await repo.find_organization(org_hint)
        organization_id = org["id"] if org else None

    event = lead = None
    if payment.customer_email:
        event = await repo.find_latest_event_for_email(payment.customer_email, organization_id)
        lead = await repo.find_lead(payment.customer_email, organization_id)

    if organization_id is None:
        organization_id = (event or {}).get("organization_id") or (lead or {}).get("organization_id")
    if organization_id is None:
        raise OrganizationUnresolved(f"Could not resolve organization for payment {payment.external_payment_id}")
    return organization_id, event, lead


async def record_payment(
    repo: Any,
    payment: NormalizedPayment,
    *,
    org_hint: Optional[str] = None,
    provider: str = "whop",
) -> PaymentResult:
    """Idempotent on (organization, external payment id)."""
    if not payment.external_payment_id:
        raise MissingRequiredField("external_payment_id")
    if not payment.customer_email:
        raise MissingRequiredField("customer_email")
    if payment.payment_type not in PAYMENT_TYPES:
        raise ValueError(f"Unknown payment type: {payment.payment_type}")

    async with repo.transaction():
        organization_id, event, lead = await _resolve_attribution(repo, payment, org_hint, provider)

        existing = await repo.find_payment(organization_id, payment.external_payment_id)
        if existing:
            logger.info("Payment already recorded id=%s", payment.external_payment_id)
            return PaymentResult(True, False, existing["id"], organization_id, existing.get("event_id"))

        event = event or {}
        lead = lead or {}
        row = await repo.insert_payment(
            {
                "organization_id": organization_id,
                "external_payment_id": payment.external_payment_id,
                "event_id": event.get("id"),
                "lead_id": lead.get("id"),
                "customer_email": payment.customer_email,
                "amount": payment.amount,
                "currency": payment.currency,
                "paid_at": payment.paid_at or datetime.now(timezone.utc),
                "payment_type": payment.payment_type,
                "setter_name": event.get("setter_name"),
                "closer_name": event.get("closer_name"),
                "closer_email": event.get("closer_email"),
                "source_id": lead.get("source_id") or event.get("source_id"),
                "raw_payload": payment.raw_payload,
            }
        )
        if row is None:
            # lost a race with a concurrent delivery of the same payment
            row = await repo.find_payment(organization_id, payment.external_payment_id)
            return PaymentResult(True, False, row["id"] if row else None, organization_id, event.get("id"))

    log_reconciliation_run(
        kind="payment",
        platform=provider,
        native_id=payment.external_payment_id,
        organization_id=organization_id,
        action="created",
        ok=True,
        event_id=row.get("event_id"),
    )
    return PaymentResult(True, True, row["id"], organization_id, row.get("event_id"))


async def record_refund(
    repo: Any,
    payment: NormalizedPayment,
    *,
    org_hint: Optional[str] = None,
    provider: str = "whop",
) -> PaymentResult:
    """Mark a recorded payment refunded, or record the refunded payment with its attribution."""
    if not payment.external_payment_id:
        raise MissingRequiredField("external_payment_id")
    refunded_at = payment.refunded_at or datetime.now(timezone.utc)

    async with repo.transaction():
        organization_id, event, lead = await _resolve_attribution(repo, payment, org_hint, provider)
        existing = await repo.find_payment(organization_id, payment.external_payment_id)
        if existing:
            row = await repo.apply_refund(existing["id"], payment.amount, refunded_at)
            return PaymentResult(True, False, row["id"], organization_id, row.get("event_id"), refunded=True)

        event = event or {}
        lead = lead or {}
        row = await repo.insert_payment(
            {
                "organization_id": organization_id,
                "external_payment_id": payment.external_payment_id,
                "event_id": event.get("id"),
                "lead_id": lead.get("id"),
                "customer_email": payment.customer_email,
                "amount": payment.amount,
                "currency": payment.currency,
                "paid_at": payment.paid_at or refunded_at,
                "payment_type": payment.payment_type,
                "setter_name": event.get("setter_name"),
                "closer_name": event.get("closer_name"),
                "closer_email": event.get("closer_email"),
                "source_id": lead.get("source_id") or event.get("source_id"),
                "refund_amount": payment.amount,
                "refunded_at": refunded_at,
                "raw_payload": payment.raw_payload,
            }
        )
    return PaymentResult(
        True, row is not None, row["id"] if row else None, organization_id, event.get("id"), refunded=True
    )
