from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from salesops.engine.providers.base import as_dict, clean_str, deep_get, normalize_email, parse_dt

PAYMENT_TRIGGERS = ("payment.succeeded", "payment.completed", "payment_completed")
REFUND_TRIGGERS = ("payment.refunded", "refund.created", "payment_refunded")

PAID_IN_FULL = "paid_in_full"
SPLIT_PAY = "split_pay"
DEPOSIT = "deposit"
PAYMENT_TYPES = (PAID_IN_FULL, SPLIT_PAY, DEPOSIT)


@dataclass(frozen=True)
class NormalizedPayment:
    kind: str  # "payment" | "refund" | "unsupported"
    external_payment_id: Optional[str]
    customer_email: Optional[str]
    amount: Optional[Decimal]
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    payment_type: str = PAID_IN_FULL
    currency: Optional[str] = None
    account_id: Optional[str] = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


def _amount(*values: Any) -> Optional[Decimal]:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            return Decimal(str(value))
        except InvalidOperation:
            continue
    return None


def parse_whop_webhook(payload: dict[str, Any]) -> NormalizedPayment:
    """Whop payment / refund webhook. Amounts are in major units (dollars, not cents)."""
    trigger = (clean_str(payload.get("event")) or clean_str(payload.get("action")) or "").lower()
    data = as_dict(payload.get("data")) or payload
    payment = as_dict(data.get("payment")) or data

    if trigger in PAYMENT_TRIGGERS:
        kind = "payment"
        amount = _amount(payment.get("total"), payment.get("amount"), payment.get("usd_total"))
    elif trigger in REFUND_TRIGGERS:
        kind = "refund"
        amount = _amount(payment.get("total"), payment.get("refunded_amount"), payment.get("amount"))
    else:
        kind = "unsupported"
        amount = None

    payment_id = clean_str(payment.get("id")) or clean_str(data.get("id"))

    return NormalizedPayment(
        kind=kind,
        external_payment_id=f"whop_{payment_id}" if payment_id else None,
        customer_email=normalize_email(payment.get("user_email"))
        or normalize_email(payment.get("email"))
        or normalize_email(deep_get(data, "user", "email")),
        amount=amount,
        paid_at=parse_dt(payment.get("paid_at")) or parse_dt(payment.get("created_at")),
        refunded_at=parse_dt(payment.get("refunded_at")),
        payment_type=SPLIT_PAY if payment.get("payment_plan") else PAID_IN_FULL,
        currency=clean_str(payment.get("currency")),
        account_id=clean_str(data.get("company_id"))
        or clean_str(data.get("business_id"))
        or clean_str(payload.get("company_id")),
        raw_payload=payload,
    )
