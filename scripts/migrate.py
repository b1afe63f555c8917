"""
Reconciliation engine schema migration. Run with an owner DATABASE_URL.

Usage:
  python scripts/migrate.py

Creates (idempotent):
  - core.organizations, core.members
  - ops.tracked_events with per-organization unique native booking ids
  - ops.leads, ops.post_call_forms, ops.payments
  - ops.setter_aliases, ops.closer_display_names, ops.pipeline_stages, ops.sources
  - ops.webhook_audit
"""
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

import asyncpg

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    print("ERROR: DATABASE_URL not set")
    sys.exit(1)


async def migrate():
    conn = await asyncpg.connect(DATABASE_URL)
    try:
        print("Running reconciliation engine migration...")

        await conn.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
        await conn.execute("CREATE SCHEMA IF NOT EXISTS core")
        await conn.execute("CREATE SCHEMA IF NOT EXISTS ops")
        print("OK schemas")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS core.organizations (
                id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                name        TEXT NOT NULL,
                is_enabled  BOOLEAN NOT NULL DEFAULT true,
                settings    JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS core.members (
                id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id  UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                email            TEXT NOT NULL,
                name             TEXT,
                role             TEXT,
                created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE (organization_id, email)
            )
        """)
        print("OK core.organizations, core.members")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.sources (
                id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id  UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                name             TEXT NOT NULL,
                created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE (organization_id, name)
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.leads (
                id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id       UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                email                 TEXT NOT NULL,
                name                  TEXT,
                phone                 TEXT,
                original_setter_name  TEXT,
                current_setter_name   TEXT,
                source_id             UUID REFERENCES ops.sources(id),
                created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE (organization_id, email)
            )
        """)
        print("OK ops.sources, ops.leads")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.tracked_events (
                id                       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id          UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                booking_platform         TEXT,
                native_booking_id        TEXT,
                secondary_booking_id     TEXT,
                lead_id                  UUID REFERENCES ops.leads(id),
                lead_email               TEXT NOT NULL,
                lead_name                TEXT,
                lead_phone               TEXT,
                scheduled_at             TIMESTAMPTZ,
                ends_at                  TIMESTAMPTZ,
                booked_at                TIMESTAMPTZ,
                closer_name              TEXT,
                closer_email             TEXT,
                setter_name              TEXT,
                event_name               TEXT,
                event_type_id            TEXT,
                source_id                UUID REFERENCES ops.sources(id),
                source_value             TEXT,
                hubspot_contact_id       TEXT,
                close_lead_source        TEXT,
                call_status              TEXT NOT NULL DEFAULT 'scheduled',
                event_outcome            TEXT,
                pcf_outcome_label        TEXT,
                pcf_submitted            BOOLEAN NOT NULL DEFAULT false,
                pcf_submitted_at         TIMESTAMPTZ,
                responses                JSONB NOT NULL DEFAULT '{}'::jsonb,
                metadata                 JSONB NOT NULL DEFAULT '{}'::jsonb,
                utm                      JSONB NOT NULL DEFAULT '{}'::jsonb,
                rescheduled_from_uid     TEXT,
                rescheduled_to_uid       TEXT,
                reschedule_reason        TEXT,
                cancellation_reason      TEXT,
                canceled_at              TIMESTAMPTZ,
                no_show_guest            BOOLEAN,
                no_show_host             BOOLEAN,
                no_show_reported_at      TIMESTAMPTZ,
                meeting_started_at       TIMESTAMPTZ,
                meeting_ended_at         TIMESTAMPTZ,
                actual_duration_minutes  INT,
                recording_url            TEXT,
                created_at               TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at               TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        # Native ids are the dedup key; legacy rows without one are allowed
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS tracked_events_native_id_uq
            ON ops.tracked_events (organization_id, booking_platform, native_booking_id)
            WHERE native_booking_id IS NOT NULL
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS tracked_events_lead_time_idx
            ON ops.tracked_events (organization_id, lead_email, scheduled_at)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS tracked_events_chain_idx
            ON ops.tracked_events (organization_id, lead_email, lower(event_name), call_status)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS tracked_events_rescheduled_from_idx
            ON ops.tracked_events (organization_id, booking_platform, rescheduled_from_uid)
            WHERE rescheduled_from_uid IS NOT NULL
        """)
        print("OK ops.tracked_events")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.pipeline_stages (
                id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id  UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                name             TEXT NOT NULL,
                sort_order       INT DEFAULT 0,
                created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.post_call_forms (
                id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                event_id           UUID NOT NULL UNIQUE REFERENCES ops.tracked_events(id) ON DELETE CASCADE,
                organization_id    UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                call_occurred      BOOLEAN,
                lead_showed        BOOLEAN NOT NULL,
                offer_made         BOOLEAN NOT NULL DEFAULT false,
                deal_closed        BOOLEAN NOT NULL DEFAULT false,
                cash_collected     NUMERIC(12, 2),
                pipeline_stage_id  UUID REFERENCES ops.pipeline_stages(id),
                notes              TEXT,
                submitted_by       TEXT,
                created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        print("OK ops.pipeline_stages, ops.post_call_forms")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.payments (
                id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id      UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                external_payment_id  TEXT NOT NULL,
                event_id             UUID REFERENCES ops.tracked_events(id) ON DELETE SET NULL,
                lead_id              UUID REFERENCES ops.leads(id) ON DELETE SET NULL,
                customer_email       TEXT,
                amount               NUMERIC(12, 2),
                currency             TEXT,
                paid_at              TIMESTAMPTZ NOT NULL,
                payment_type         TEXT NOT NULL DEFAULT 'paid_in_full',
                setter_name          TEXT,
                closer_name          TEXT,
                closer_email         TEXT,
                source_id            UUID REFERENCES ops.sources(id),
                refund_amount        NUMERIC(12, 2),
                refunded_at          TIMESTAMPTZ,
                raw_payload          JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE (organization_id, external_payment_id)
            )
        """)
        print("OK ops.payments")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.setter_aliases (
                id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id  UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                alias            TEXT NOT NULL,
                canonical_name   TEXT NOT NULL,
                created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE (organization_id, alias)
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.closer_display_names (
                id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                organization_id  UUID NOT NULL REFERENCES core.organizations(id) ON DELETE CASCADE,
                closer_email     TEXT,
                closer_name      TEXT,
                display_name     TEXT NOT NULL,
                created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        print("OK ops.setter_aliases, ops.closer_display_names")

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ops.webhook_audit (
                id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                platform              TEXT NOT NULL,
                trigger_event         TEXT,
                native_booking_id     TEXT,
                attendee_email        TEXT,
                organizer_email       TEXT,
                event_name            TEXT,
                scheduled_at          TIMESTAMPTZ,
                rescheduled_from_uid  TEXT,
                rescheduled_to_uid    TEXT,
                reschedule_reason     TEXT,
                cancellation_reason   TEXT,
                no_show_guest         BOOLEAN,
                no_show_host          BOOLEAN,
                headers               JSONB NOT NULL DEFAULT '{}'::jsonb,
                client_ip             TEXT,
                payload               JSONB NOT NULL DEFAULT '{}'::jsonb,
                processing_result     TEXT NOT NULL DEFAULT 'processing',
                error_code            TEXT,
                error_message         TEXT,
                organization_id       UUID,
                event_id              UUID,
                received_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
                processed_at          TIMESTAMPTZ
            )
        """)
        print("OK ops.webhook_audit")

        print("\nMigration complete.")

    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(migrate())
