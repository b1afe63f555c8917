"""
Persistence for the reconciliation engine.

EventRepository wraps one asyncpg connection. Every read and write the
engine performs goes through it, so a unit of work is exactly the
statements issued between `async with repo.transaction():` and its exit.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import asyncpg

from salesops.engine import statuses as st
from salesops.engine.attribution import AliasSnapshot
from salesops.engine.errors import ConflictingWrite

# ---------------------------------------------------------------------------
# SQL: tracked events
# ---------------------------------------------------------------------------

EVENT_COLUMNS = """
    id::text AS id, organization_id::text AS organization_id,
    booking_platform, native_booking_id, secondary_booking_id,
    lead_id::text AS lead_id, lead_email, lead_name, lead_phone,
    scheduled_at, ends_at, booked_at,
    closer_name, closer_email, setter_name,
    event_name, event_type_id,
    source_id::text AS source_id, source_value,
    hubspot_contact_id, close_lead_source,
    call_status, event_outcome, pcf_outcome_label, pcf_submitted, pcf_submitted_at,
    responses, metadata, utm,
    rescheduled_from_uid, rescheduled_to_uid, reschedule_reason, cancellation_reason, canceled_at,
    no_show_guest, no_show_host, no_show_reported_at,
    meeting_started_at, meeting_ended_at, actual_duration_minutes, recording_url,
    created_at, updated_at
"""

FIND_EVENT_BY_ID_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE id = $1::uuid;
"""

FIND_EVENT_BY_NATIVE_ID_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE organization_id = $1::uuid
  AND booking_platform = $2::text
  AND native_booking_id = $3::text
LIMIT 1;
"""

# Rule 2 candidates; legacy rows may have a NULL platform
FIND_EVENTS_NEAR_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE organization_id = $1::uuid
  AND lead_email = $2::text
  AND (booking_platform = $3::text OR booking_platform IS NULL)
  AND scheduled_at BETWEEN $4::timestamptz - make_interval(secs => $5)
                       AND $4::timestamptz + make_interval(secs => $5)
ORDER BY created_at DESC;
"""

FIND_CHAIN_CANDIDATES_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE organization_id = $1::uuid
  AND lead_email = $2::text
  AND lower(event_name) = lower($3::text)
  AND call_status = ANY($4::text[])
  AND ($5::uuid IS NULL OR id <> $5::uuid)
ORDER BY created_at;
"""

FIND_SUCCESSOR_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE organization_id = $1::uuid
  AND booking_platform = $2::text
  AND rescheduled_from_uid = $3::text
ORDER BY created_at DESC
LIMIT 1;
"""

FIND_LATEST_EVENT_FOR_EMAIL_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM ops.tracked_events
WHERE lead_email = $1::text
  AND ($2::uuid IS NULL OR organization_id = $2::uuid)
ORDER BY scheduled_at DESC NULLS LAST, created_at DESC
LIMIT 1;
"""

INSERT_EVENT_SQL = f"""
INSERT INTO ops.tracked_events (
    organization_id, booking_platform, native_booking_id, secondary_booking_id,
    lead_id, lead_email, lead_name, lead_phone,
    scheduled_at, ends_at, booked_at,
    closer_name, closer_email, setter_name,
    event_name, event_type_id,
    source_id, source_value,
    hubspot_contact_id, close_lead_source,
    call_status, event_outcome, pcf_outcome_label, pcf_submitted, pcf_submitted_at,
    responses, metadata, utm,
    rescheduled_from_uid, rescheduled_to_uid, reschedule_reason, cancellation_reason, canceled_at,
    no_show_guest, no_show_host, no_show_reported_at,
    meeting_started_at, meeting_ended_at, actual_duration_minutes, recording_url
)
VALUES (
    $1::uuid, $2::text, $3::text, $4::text,
    $5::uuid, $6::text, $7::text, $8::text,
    $9::timestamptz, $10::timestamptz, $11::timestamptz,
    $12::text, $13::text, $14::text,
    $15::text, $16::text,
    $17::uuid, $18::text,
    $19::text, $20::text,
    COALESCE($21::text, 'scheduled'), $22::text, $23::text, COALESCE($24::boolean, FALSE), $25::timestamptz,
    COALESCE($26::jsonb, '{{}}'::jsonb), COALESCE($27::jsonb, '{{}}'::jsonb), COALESCE($28::jsonb, '{{}}'::jsonb),
    $29::text, $30::text, $31::text, $32::text, $33::timestamptz,
    $34::boolean, $35::boolean, $36::timestamptz,
    $37::timestamptz, $38::timestamptz, $39::integer, $40::text
)
RETURNING {EVENT_COLUMNS};
"""

INSERT_EVENT_FIELDS = (
    "organization_id", "booking_platform", "native_booking_id", "secondary_booking_id",
    "lead_id", "lead_email", "lead_name", "lead_phone",
    "scheduled_at", "ends_at", "booked_at",
    "closer_name", "closer_email", "setter_name",
    "event_name", "event_type_id",
    "source_id", "source_value",
    "hubspot_contact_id", "close_lead_source",
    "call_status", "event_outcome", "pcf_outcome_label", "pcf_submitted", "pcf_submitted_at",
    "responses", "metadata", "utm",
    "rescheduled_from_uid", "rescheduled_to_uid", "reschedule_reason", "cancellation_reason", "canceled_at",
    "no_show_guest", "no_show_host", "no_show_reported_at",
    "meeting_started_at", "meeting_ended_at", "actual_duration_minutes", "recording_url",
)

# Columns an update may touch, with their SQL casts
UPDATABLE_EVENT_COLUMNS: dict[str, str] = {
    "native_booking_id": "text",
    "secondary_booking_id": "text",
    "booking_platform": "text",
    "lead_id": "uuid",
    "lead_name": "text",
    "lead_phone": "text",
    "scheduled_at": "timestamptz",
    "ends_at": "timestamptz",
    "booked_at": "timestamptz",
    "closer_name": "text",
    "closer_email": "text",
    "setter_name": "text",
    "event_name": "text",
    "event_type_id": "text",
    "source_id": "uuid",
    "source_value": "text",
    "hubspot_contact_id": "text",
    "close_lead_source": "text",
    "call_status": "text",
    "event_outcome": "text",
    "pcf_outcome_label": "text",
    "pcf_submitted": "boolean",
    "pcf_submitted_at": "timestamptz",
    "responses": "jsonb",
    "metadata": "jsonb",
    "utm": "jsonb",
    "rescheduled_from_uid": "text",
    "rescheduled_to_uid": "text",
    "reschedule_reason": "text",
    "cancellation_reason": "text",
    "canceled_at": "timestamptz",
    "no_show_guest": "boolean",
    "no_show_host": "boolean",
    "no_show_reported_at": "timestamptz",
    "meeting_started_at": "timestamptz",
    "meeting_ended_at": "timestamptz",
    "actual_duration_minutes": "integer",
    "recording_url": "text",
}

# Forward pointer is set once and never replaced
SET_RESCHEDULED_TO_SQL = f"""
UPDATE ops.tracked_events
SET rescheduled_to_uid = COALESCE(rescheduled_to_uid, $2::text),
    updated_at = now()
WHERE id = $1::uuid
RETURNING {EVENT_COLUMNS};
"""

LOCK_CHAIN_SQL = """
SELECT pg_advisory_xact_lock(hashtext($1::text));
"""

# ---------------------------------------------------------------------------
# SQL: leads
# ---------------------------------------------------------------------------

UPSERT_LEAD_SQL = """
INSERT INTO ops.leads (
    organization_id, email, name, phone,
    original_setter_name, current_setter_name, source_id
)
VALUES (
    $1::uuid, $2::text, $3::text, $4::text,
    $5::text, $5::text, $6::uuid
)
ON CONFLICT (organization_id, email)
DO UPDATE SET
    name                = COALESCE(EXCLUDED.name, ops.leads.name),
    phone               = COALESCE(EXCLUDED.phone, ops.leads.phone),
    current_setter_name = COALESCE(EXCLUDED.current_setter_name, ops.leads.current_setter_name),
    source_id           = COALESCE(ops.leads.source_id, EXCLUDED.source_id),
    updated_at          = now()
RETURNING id::text;
"""

FIND_LEAD_SQL = """
SELECT id::text AS id, organization_id::text AS organization_id, email, name,
       original_setter_name, current_setter_name, source_id::text AS source_id
FROM ops.leads
WHERE email = $1::text
  AND ($2::uuid IS NULL OR organization_id = $2::uuid)
ORDER BY updated_at DESC
LIMIT 1;
"""

# ---------------------------------------------------------------------------
# SQL: lookup tables
# ---------------------------------------------------------------------------

LOAD_SETTER_ALIASES_SQL = """
SELECT alias, canonical_name
FROM ops.setter_aliases
WHERE organization_id = $1::uuid
ORDER BY created_at, alias;
"""

LOAD_CLOSER_DISPLAY_NAMES_SQL = """
SELECT closer_email, closer_name, display_name
FROM ops.closer_display_names
WHERE organization_id = $1::uuid;
"""

LOAD_SOURCES_SQL = """
SELECT id::text AS id, name
FROM ops.sources
WHERE organization_id = $1::uuid
ORDER BY created_at, name;
"""

CREATE_SOURCE_SQL = """
INSERT INTO ops.sources (organization_id, name)
VALUES ($1::uuid, $2::text)
ON CONFLICT (organization_id, name) DO UPDATE SET name = EXCLUDED.name
RETURNING id::text;
"""

LOAD_PIPELINE_STAGE_NAME_SQL = """
SELECT name
FROM ops.pipeline_stages
WHERE id = $1::uuid
LIMIT 1;
"""

# ---------------------------------------------------------------------------
# SQL: post-call outcome forms
# ---------------------------------------------------------------------------

UPSERT_OUTCOME_FORM_SQL = """
INSERT INTO ops.post_call_forms (
    event_id, organization_id, call_occurred, lead_showed, offer_made, deal_closed,
    cash_collected, pipeline_stage_id, notes, submitted_by
)
VALUES (
    $1::uuid, $2::uuid, $3::boolean, $4::boolean, $5::boolean, $6::boolean,
    $7::numeric, $8::uuid, $9::text, $10::text
)
ON CONFLICT (event_id)
DO UPDATE SET
    call_occurred     = EXCLUDED.call_occurred,
    lead_showed       = EXCLUDED.lead_showed,
    offer_made        = EXCLUDED.offer_made,
    deal_closed       = EXCLUDED.deal_closed,
    cash_collected    = EXCLUDED.cash_collected,
    pipeline_stage_id = EXCLUDED.pipeline_stage_id,
    notes             = EXCLUDED.notes,
    submitted_by      = EXCLUDED.submitted_by,
    updated_at        = now()
RETURNING id::text;
"""

DELETE_OUTCOME_FORM_SQL = """
DELETE FROM ops.post_call_forms
WHERE event_id = $1::uuid
RETURNING id::text;
"""

# ---------------------------------------------------------------------------
# SQL: payments
# ---------------------------------------------------------------------------

PAYMENT_COLUMNS = """
    id::text AS id, organization_id::text AS organization_id, external_payment_id,
    event_id::text AS event_id, lead_id::text AS lead_id, customer_email,
    amount, currency, paid_at, payment_type,
    setter_name, closer_name, closer_email, source_id::text AS source_id,
    refund_amount, refunded_at
"""

FIND_PAYMENT_SQL = f"""
SELECT {PAYMENT_COLUMNS}
FROM ops.payments
WHERE organization_id = $1::uuid
  AND external_payment_id = $2::text
LIMIT 1;
"""

INSERT_PAYMENT_SQL = f"""
INSERT INTO ops.payments (
    organization_id, external_payment_id, event_id, lead_id, customer_email,
    amount, currency, paid_at, payment_type,
    setter_name, closer_name, closer_email, source_id,
    refund_amount, refunded_at, raw_payload
)
VALUES (
    $1::uuid, $2::text, $3::uuid, $4::uuid, $5::text,
    $6::numeric, $7::text, $8::timestamptz, $9::text,
    $10::text, $11::text, $12::text, $13::uuid,
    $14::numeric, $15::timestamptz, COALESCE($16::jsonb, '{{}}'::jsonb)
)
ON CONFLICT (organization_id, external_payment_id) DO NOTHING
RETURNING {PAYMENT_COLUMNS};
"""

# Attribution columns are never rewritten by a refund
APPLY_REFUND_SQL = f"""
UPDATE ops.payments
SET refund_amount = $2::numeric,
    refunded_at = $3::timestamptz,
    updated_at = now()
WHERE id = $1::uuid
RETURNING {PAYMENT_COLUMNS};
"""

# ---------------------------------------------------------------------------
# SQL: audit
# ---------------------------------------------------------------------------

INSERT_AUDIT_SQL = """
INSERT INTO ops.webhook_audit (
    platform, trigger_event, native_booking_id, attendee_email, organizer_email,
    event_name, scheduled_at, rescheduled_from_uid, rescheduled_to_uid,
    reschedule_reason, cancellation_reason, no_show_guest, no_show_host,
    headers, client_ip, payload, processing_result
)
VALUES (
    $1::text, $2::text, $3::text, $4::text, $5::text,
    $6::text, $7::timestamptz, $8::text, $9::text,
    $10::text, $11::text, $12::boolean, $13::boolean,
    COALESCE($14::jsonb, '{}'::jsonb), $15::text, COALESCE($16::jsonb, '{}'::jsonb), $17::text
)
RETURNING id::text;
"""

FINISH_AUDIT_SQL = """
UPDATE ops.webhook_audit
SET processing_result = $2::text,
    error_code = $3::text,
    error_message = $4::text,
    organization_id = $5::uuid,
    event_id = $6::uuid,
    processed_at = now()
WHERE id = $1::uuid;
"""

# ---------------------------------------------------------------------------
# SQL: organizations
# ---------------------------------------------------------------------------

LOAD_ORGANIZATION_SQL = """
SELECT id::text AS id, name, settings
FROM core.organizations
WHERE id = $1::uuid
  AND is_enabled = TRUE
LIMIT 1;
"""

LOAD_ENABLED_ORGANIZATIONS_SQL = """
SELECT id::text AS id, name, settings
FROM core.organizations
WHERE is_enabled = TRUE
ORDER BY created_at;
"""

FIND_ORGS_BY_MEMBER_EMAIL_SQL = """
SELECT DISTINCT m.organization_id::text AS organization_id
FROM core.members m
JOIN core.organizations o ON o.id = m.organization_id
WHERE lower(m.email) = lower($1::text)
  AND o.is_enabled = TRUE;
"""


def _row(record: Optional[asyncpg.Record]) -> Optional[dict[str, Any]]:
    return dict(record) if record is not None else None


class EventRepository:
    """asyncpg-backed store for one unit of work."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self.conn.transaction():
            yield

    async def lock_chain(self, organization_id: str, lead_email: str, event_name: Optional[str]) -> None:
        key = f"{organization_id}|{lead_email}|{(event_name or '').lower()}"
        await self.conn.execute(LOCK_CHAIN_SQL, key)

    # -- tracked events -----------------------------------------------------

    async def find_event_by_id(self, event_id: str) -> Optional[dict[str, Any]]:
        try:
            return _row(await self.conn.fetchrow(FIND_EVENT_BY_ID_SQL, event_id))
        except asyncpg.DataError:
            return None

    async def find_event_by_native_id(
        self, organization_id: str, platform: str, native_id: str
    ) -> Optional[dict[str, Any]]:
        return _row(await self.conn.fetchrow(FIND_EVENT_BY_NATIVE_ID_SQL, organization_id, platform, native_id))

    async def find_events_near(
        self,
        organization_id: str,
        platform: str,
        lead_email: str,
        scheduled_at: datetime,
        tolerance_seconds: int,
    ) -> list[dict[str, Any]]:
        rows = await self.conn.fetch(
            FIND_EVENTS_NEAR_SQL,
            organization_id,
            lead_email,
            platform,
            scheduled_at,
            float(tolerance_seconds),
        )
        return [dict(r) for r in rows]

    async def find_chain_candidates(
        self,
        organization_id: str,
        lead_email: str,
        event_name: str,
        *,
        exclude_id: Optional[str] = None,
        statuses: tuple[str, ...] = st.CHAIN_RETIRABLE_STATUSES,
    ) -> list[dict[str, Any]]:
        rows = await self.conn.fetch(
            FIND_CHAIN_CANDIDATES_SQL,
            organization_id,
            lead_email,
            event_name,
            list(statuses),
            exclude_id,
        )
        return [dict(r) for r in rows]

    async def find_successor(self, organization_id: str, platform: str, native_id: str) -> Optional[dict[str, Any]]:
        return _row(await self.conn.fetchrow(FIND_SUCCESSOR_SQL, organization_id, platform, native_id))

    async def find_latest_event_for_email(
        self, lead_email: str, organization_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        return _row(await self.conn.fetchrow(FIND_LATEST_EVENT_FOR_EMAIL_SQL, lead_email, organization_id))

    async def insert_event(self, values: dict[str, Any]) -> dict[str, Any]:
        args = [values.get(name) for name in INSERT_EVENT_FIELDS]
        try:
            row = await self.conn.fetchrow(INSERT_EVENT_SQL, *args)
        except asyncpg.UniqueViolationError as e:
            raise ConflictingWrite(
                f"Concurrent insert for native id {values.get('native_booking_id')}"
            ) from e
        return dict(row)

    async def update_event(self, event_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        unknown = set(changes) - set(UPDATABLE_EVENT_COLUMNS)
        if unknown:
            raise ValueError(f"Not updatable: {sorted(unknown)}")
        if not changes:
            row = await self.find_event_by_id(event_id)
            if row is None:
                raise ValueError(f"Tracked event not found: {event_id}")
            return row

        names = list(changes)
        assignments = ", ".join(
            f"{name} = ${i + 2}::{UPDATABLE_EVENT_COLUMNS[name]}" for i, name in enumerate(names)
        )
        sql = (
            f"UPDATE ops.tracked_events SET {assignments}, updated_at = now() "
            f"WHERE id = $1::uuid RETURNING {EVENT_COLUMNS};"
        )
        try:
            row = await self.conn.fetchrow(sql, event_id, *[changes[n] for n in names])
        except asyncpg.UniqueViolationError as e:
            raise ConflictingWrite(f"Concurrent update on event {event_id}", event_id=event_id) from e
        if row is None:
            raise ValueError(f"Tracked event not found: {event_id}")
        return dict(row)

    async def set_rescheduled_to(self, event_id: str, successor_native_id: str) -> dict[str, Any]:
        return dict(await self.conn.fetchrow(SET_RESCHEDULED_TO_SQL, event_id, successor_native_id))

    # -- leads ----------------------------------------------------------------

    async def upsert_lead(
        self,
        organization_id: str,
        email: str,
        *,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        setter_name: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> str:
        return await self.conn.fetchval(UPSERT_LEAD_SQL, organization_id, email, name, phone, setter_name, source_id)

    async def find_lead(self, email: str, organization_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        return _row(await self.conn.fetchrow(FIND_LEAD_SQL, email, organization_id))

    # -- lookup tables --------------------------------------------------------

    async def load_alias_snapshot(self, organization_id: str) -> AliasSnapshot:
        aliases = await self.conn.fetch(LOAD_SETTER_ALIASES_SQL, organization_id)
        closers = await self.conn.fetch(LOAD_CLOSER_DISPLAY_NAMES_SQL, organization_id)
        sources = await self.conn.fetch(LOAD_SOURCES_SQL, organization_id)

        by_email: dict[str, str] = {}
        by_name: dict[str, str] = {}
        for r in closers:
            if r["closer_email"]:
                by_email[r["closer_email"].strip().lower()] = r["display_name"]
            if r["closer_name"]:
                by_name[r["closer_name"].strip().lower()] = r["display_name"]

        return AliasSnapshot(
            setter_aliases=tuple((r["alias"], r["canonical_name"]) for r in aliases),
            closer_by_email=by_email,
            closer_by_name=by_name,
            sources=tuple((r["id"], r["name"]) for r in sources),
        )

    async def create_source(self, organization_id: str, name: str) -> str:
        return await self.conn.fetchval(CREATE_SOURCE_SQL, organization_id, name)

    async def load_pipeline_stage_name(self, stage_id: str) -> Optional[str]:
        try:
            return await self.conn.fetchval(LOAD_PIPELINE_STAGE_NAME_SQL, stage_id)
        except asyncpg.DataError:
            return None

    # -- outcome forms --------------------------------------------------------

    async def upsert_outcome_form(self, organization_id: str, form: Any) -> str:
        return await self.conn.fetchval(
            UPSERT_OUTCOME_FORM_SQL,
            form.event_id,
            organization_id,
            form.call_occurred,
            form.lead_showed,
            form.offer_made,
            form.deal_closed,
            form.cash_collected,
            form.pipeline_stage_id,
            form.notes,
            form.submitted_by,
        )

    async def delete_outcome_form(self, event_id: str) -> bool:
        return await self.conn.fetchval(DELETE_OUTCOME_FORM_SQL, event_id) is not None

    # -- payments -------------------------------------------------------------

    async def find_payment(self, organization_id: str, external_payment_id: str) -> Optional[dict[str, Any]]:
        return _row(await self.conn.fetchrow(FIND_PAYMENT_SQL, organization_id, external_payment_id))

    async def insert_payment(self, values: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Returns None when the external payment id was already recorded."""
        return _row(
            await self.conn.fetchrow(
                INSERT_PAYMENT_SQL,
                values["organization_id"],
                values["external_payment_id"],
                values.get("event_id"),
                values.get("lead_id"),
                values.get("customer_email"),
                values.get("amount"),
                values.get("currency"),
                values.get("paid_at"),
                values.get("payment_type"),
                values.get("setter_name"),
                values.get("closer_name"),
                values.get("closer_email"),
                values.get("source_id"),
                values.get("refund_amount"),
                values.get("refunded_at"),
                values.get("raw_payload"),
            )
        )

    async def apply_refund(self, payment_id: str, refund_amount: Any, refunded_at: datetime) -> dict[str, Any]:
        return dict(await self.conn.fetchrow(APPLY_REFUND_SQL, payment_id, refund_amount, refunded_at))

    # -- audit ----------------------------------------------------------------

    async def write_audit(self, record: dict[str, Any]) -> str:
        return await self.conn.fetchval(
            INSERT_AUDIT_SQL,
            record.get("platform"),
            record.get("trigger_event"),
            record.get("native_booking_id"),
            record.get("attendee_email"),
            record.get("organizer_email"),
            record.get("event_name"),
            record.get("scheduled_at"),
            record.get("rescheduled_from_uid"),
            record.get("rescheduled_to_uid"),
            record.get("reschedule_reason"),
            record.get("cancellation_reason"),
            record.get("no_show_guest"),
            record.get("no_show_host"),
            record.get("headers"),
            record.get("client_ip"),
            record.get("payload"),
            record.get("processing_result", st.AUDIT_PROCESSING),
        )

    async def finish_audit(
        self,
        audit_id: str,
        *,
        result: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        organization_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> None:
        await self.conn.execute(
            FINISH_AUDIT_SQL, audit_id, result, error_code, error_message, organization_id, event_id
        )

    # -- organizations --------------------------------------------------------

    async def find_organization(self, organization_id: str) -> Optional[dict[str, Any]]:
        try:
            return _row(await self.conn.fetchrow(LOAD_ORGANIZATION_SQL, organization_id))
        except asyncpg.DataError:
            # not a uuid
            return None

    async def list_enabled_organizations(self) -> list[dict[str, Any]]:
        return [dict(r) for r in await self.conn.fetch(LOAD_ENABLED_ORGANIZATIONS_SQL)]

    async def find_org_ids_by_member_email(self, email: str) -> list[str]:
        rows = await self.conn.fetch(FIND_ORGS_BY_MEMBER_EMAIL_SQL, email)
        return [r["organization_id"] for r in rows]
