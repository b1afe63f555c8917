"""
Event reconciler.

Processes one inbound booking webhook, outcome-form submission or
retraction as a single unit of work:

    resolve organization -> (CRM enrichment) -> BEGIN
        match -> attribute -> upsert -> chain-link
    COMMIT

The audit row is written outside the transaction so failures stay on record.
A unique violation on the native booking id (a concurrent delivery of the
same booking) rolls back and re-runs the whole unit once.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, Optional

from salesops.engine import statuses as st
from salesops.engine.attribution import (
    match_source,
    resolve_attribution,
    resolve_closer_display_name,
    resolve_setter_name,
)
from salesops.engine.audit import build_audit_record
from salesops.engine.errors import (
    ConflictingWrite,
    EventNotFound,
    MissingRequiredField,
    ReconciliationError,
)
from salesops.engine.matching import find_matching_event
from salesops.engine.outcomes import auto_complete, can_write_outcome, derive_outcome
from salesops.engine.providers.base import NormalizedBookingEvent
from salesops.engine.reschedule import (
    cancellation_status,
    find_successor,
    link_explicit_predecessor,
    retire_fields,
    retire_superseded,
)
from salesops.engine.tenants import resolve_organization
from salesops.engine.trace_logger import log_reconciliation_run
from salesops.services.enrichment import EMPTY, Enrichment

logger = logging.getLogger(__name__)

Enricher = Callable[[Any, str, Optional[str]], Awaitable[Enrichment]]

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_UNCHANGED = "unchanged"
ACTION_IGNORED = "ignored"

# jsonb columns that merge instead of replace
_MAP_FIELDS = ("responses", "metadata", "utm")
# Written on first sight only
_SET_ONCE_FIELDS = (
    "booking_platform",
    "native_booking_id",
    "secondary_booking_id",
    "booked_at",
    "rescheduled_from_uid",
    "rescheduled_to_uid",
    "reschedule_reason",
    "cancellation_reason",
    "canceled_at",
)


@dataclass(frozen=True)
class ReconciliationResult:
    ok: bool
    action: str
    event_id: Optional[str] = None
    organization_id: Optional[str] = None
    match_rule: Optional[str] = None
    superseded_event_ids: tuple[str, ...] = ()
    error_code: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["superseded_event_ids"] = list(self.superseded_event_ids)
        return out


@dataclass(frozen=True)
class OutcomeFormSubmission:
    event_id: str
    lead_showed: bool
    offer_made: bool
    deal_closed: bool
    call_occurred: Optional[bool] = None
    cash_collected: Optional[Decimal] = None
    pipeline_stage_id: Optional[str] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _merge_changes(record: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """
    Columns that actually change. None never overwrites; maps merge key-wise;
    set-once columns are only filled when empty.
    """
    changes: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        current = record.get(key)
        if key in _MAP_FIELDS:
            base = current if isinstance(current, dict) else {}
            merged = {**base, **value}
            if merged != base:
                changes[key] = merged
        elif key in _SET_ONCE_FIELDS:
            if current is None:
                changes[key] = value
        elif current != value:
            changes[key] = value
    return changes


def _booking_fields(event: NormalizedBookingEvent) -> dict[str, Any]:
    responses = {**event.booking_fields, **event.user_fields, **event.responses}
    return {
        "booking_platform": event.platform,
        "native_booking_id": event.native_id,
        "secondary_booking_id": event.secondary_native_id,
        "lead_name": event.lead_name,
        "lead_phone": event.lead_phone,
        "scheduled_at": event.scheduled_at,
        "ends_at": event.ends_at,
        "booked_at": event.booked_at,
        "closer_name": event.closer_name,
        "closer_email": event.closer_email,
        "event_name": event.event_name,
        "event_type_id": event.event_type_id,
        "responses": responses or None,
        "metadata": dict(event.metadata) or None,
    }


# ---------------------------------------------------------------------------
# Booking webhooks
# ---------------------------------------------------------------------------


async def _apply_booking(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    enrichment: Enrichment,
) -> tuple[ReconciliationResult, Optional[str]]:
    snapshot = await repo.load_alias_snapshot(organization_id)
    attribution = resolve_attribution(event, snapshot)

    source_id = match_source(attribution.source_value, snapshot)
    if attribution.source_value and not source_id:
        source_id = await repo.create_source(organization_id, attribution.source_value)

    match = await find_matching_event(
        repo,
        organization_id=organization_id,
        platform=event.platform,
        native_id=event.native_id,
        lead_email=event.lead_email,
        scheduled_at=event.scheduled_at,
    )

    lead_id = await repo.upsert_lead(
        organization_id,
        event.lead_email,
        name=event.lead_name,
        phone=event.lead_phone,
        setter_name=attribution.setter_name,
        source_id=source_id,
    )

    fields = _booking_fields(event)
    fields.update(
        {
            "lead_id": lead_id,
            "setter_name": attribution.setter_name,
            "source_id": source_id,
            "source_value": attribution.source_value,
            "utm": attribution.utm_fields or None,
            "hubspot_contact_id": enrichment.hubspot_contact_id,
            "close_lead_source": enrichment.close_lead_source,
            "rescheduled_from_uid": event.predecessor_native_id,
            "reschedule_reason": event.reschedule_reason,
        }
    )

    if match.record is None:
        values = {k: v for k, v in fields.items() if v is not None}
        values.update(
            {
                "organization_id": organization_id,
                "lead_email": event.lead_email,
                "call_status": st.SCHEDULED,
                "pcf_submitted": False,
            }
        )
        # The replacement booking may already be on file (out-of-order delivery)
        successor = await find_successor(
            repo, organization_id=organization_id, platform=event.platform, native_id=event.native_id
        )
        if successor is not None:
            values.update(retire_fields())
            values["rescheduled_to_uid"] = successor["native_booking_id"]
        record = await repo.insert_event(values)
        action = ACTION_CREATED
    else:
        record = match.record
        # status and outcome are never touched by a booking update
        changes = _merge_changes(record, fields)
        if changes:
            record = await repo.update_event(record["id"], changes)
            action = ACTION_UPDATED
        else:
            action = ACTION_UNCHANGED

    superseded: list[str] = []
    if event.predecessor_native_id:
        predecessor_id = await link_explicit_predecessor(
            repo,
            organization_id=organization_id,
            platform=event.platform,
            predecessor_native_id=event.predecessor_native_id,
            successor_native_id=event.native_id,
            reason=event.reschedule_reason,
        )
        if predecessor_id and predecessor_id != record["id"]:
            superseded.append(predecessor_id)

    for retired_id in await retire_superseded(repo, organization_id=organization_id, record=record):
        if retired_id not in superseded:
            superseded.append(retired_id)

    result = ReconciliationResult(
        ok=True,
        action=action,
        event_id=record["id"],
        organization_id=organization_id,
        match_rule=match.rule,
        superseded_event_ids=tuple(superseded),
    )
    return result, attribution.setter_resolution


# ---------------------------------------------------------------------------
# Cancellation / no-show / meeting signals
# ---------------------------------------------------------------------------


async def _apply_cancellation(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    now: datetime,
) -> ReconciliationResult:
    match = await find_matching_event(
        repo,
        organization_id=organization_id,
        platform=event.platform,
        native_id=event.native_id,
        lead_email=event.lead_email,
        scheduled_at=event.scheduled_at,
    )

    if match.record is None:
        if not event.lead_email or event.scheduled_at is None:
            logger.info(
                "Cancellation for unknown booking ignored org=%s native_id=%s",
                organization_id,
                event.native_id,
            )
            return ReconciliationResult(True, ACTION_IGNORED, organization_id=organization_id, match_rule=match.rule)

        # Store the booking already canceled so a late creation cannot revive it
        status = st.RESCHEDULED if event.successor_native_id else await cancellation_status(
            repo,
            organization_id=organization_id,
            lead_email=event.lead_email,
            event_name=event.event_name,
            exclude_id=None,
        )
        values = {k: v for k, v in _booking_fields(event).items() if v is not None}
        values.update(auto_complete(status))
        values.update(
            {
                "organization_id": organization_id,
                "lead_email": event.lead_email,
                "cancellation_reason": event.cancellation_reason,
                "canceled_at": now,
                "rescheduled_to_uid": event.successor_native_id,
            }
        )
        record = await repo.insert_event(values)
        return ReconciliationResult(
            True, ACTION_CREATED, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
        )

    record = match.record
    if event.successor_native_id or record.get("call_status") == st.RESCHEDULED:
        status = st.RESCHEDULED
    else:
        status = await cancellation_status(
            repo,
            organization_id=organization_id,
            lead_email=record.get("lead_email"),
            event_name=record.get("event_name"),
            exclude_id=record["id"],
        )

    fields = auto_complete(status)
    fields.update(
        {
            "cancellation_reason": event.cancellation_reason,
            "canceled_at": now,
            "rescheduled_to_uid": event.successor_native_id,
        }
    )
    changes = {k: v for k, v in fields.items() if k not in _SET_ONCE_FIELDS and record.get(k) != v}
    changes.update(_merge_changes(record, {k: v for k, v in fields.items() if k in _SET_ONCE_FIELDS}))

    if not changes:
        action = ACTION_UNCHANGED
    else:
        record = await repo.update_event(record["id"], changes)
        action = ACTION_UPDATED
    return ReconciliationResult(
        True, action, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
    )


async def _apply_no_show(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    now: datetime,
) -> ReconciliationResult:
    match = await find_matching_event(
        repo,
        organization_id=organization_id,
        platform=event.platform,
        native_id=event.native_id,
        lead_email=event.lead_email,
        scheduled_at=event.scheduled_at,
    )
    if match.record is None:
        logger.info("No-show for unknown booking org=%s native_id=%s", organization_id, event.native_id)
        return ReconciliationResult(True, ACTION_IGNORED, organization_id=organization_id, match_rule=match.rule)

    record = match.record
    changes: dict[str, Any] = {}
    if event.no_show_guest is not None and record.get("no_show_guest") != event.no_show_guest:
        changes["no_show_guest"] = event.no_show_guest
    if event.no_show_host is not None and record.get("no_show_host") != event.no_show_host:
        changes["no_show_host"] = event.no_show_host
    if changes:
        changes["no_show_reported_at"] = now

    if event.no_show_guest:
        if can_write_outcome(bool(record.get("pcf_submitted")), st.SOURCE_WEBHOOK):
            if record.get("call_status") != st.NO_SHOW:
                changes["call_status"] = st.NO_SHOW
            if record.get("event_outcome") != st.OUTCOME_NO_SHOW:
                changes["event_outcome"] = st.OUTCOME_NO_SHOW
        else:
            logger.info("No-show outcome not applied, outcome form already submitted event=%s", record["id"])

    if not changes:
        return ReconciliationResult(
            True, ACTION_UNCHANGED, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
        )
    record = await repo.update_event(record["id"], changes)
    return ReconciliationResult(
        True, ACTION_UPDATED, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
    )


async def _apply_meeting(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    now: datetime,
) -> ReconciliationResult:
    match = await find_matching_event(
        repo,
        organization_id=organization_id,
        platform=event.platform,
        native_id=event.native_id,
        lead_email=event.lead_email,
        scheduled_at=event.scheduled_at,
    )
    if match.record is None:
        return ReconciliationResult(True, ACTION_IGNORED, organization_id=organization_id, match_rule=match.rule)

    record = match.record
    changes: dict[str, Any] = {}
    if event.kind == st.KIND_MEETING_STARTED:
        if record.get("meeting_started_at") is None:
            changes["meeting_started_at"] = event.meeting_started_at or now
    elif event.kind == st.KIND_MEETING_ENDED:
        ended = record.get("meeting_ended_at") or event.meeting_ended_at or now
        started = record.get("meeting_started_at") or event.meeting_started_at
        if record.get("meeting_ended_at") is None:
            changes["meeting_ended_at"] = ended
        if started is not None and record.get("meeting_started_at") is None:
            changes["meeting_started_at"] = started
        if started is not None and record.get("actual_duration_minutes") is None:
            changes["actual_duration_minutes"] = max(0, round((ended - started).total_seconds() / 60))
    elif event.kind == st.KIND_RECORDING_READY:
        if event.recording_url and record.get("recording_url") != event.recording_url:
            changes["recording_url"] = event.recording_url

    if not changes:
        return ReconciliationResult(
            True, ACTION_UNCHANGED, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
        )
    record = await repo.update_event(record["id"], changes)
    return ReconciliationResult(
        True, ACTION_UPDATED, event_id=record["id"], organization_id=organization_id, match_rule=match.rule
    )


async def _apply(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    enrichment: Enrichment,
    now: datetime,
) -> tuple[ReconciliationResult, Optional[str]]:
    if event.kind in st.BOOKING_KINDS:
        return await _apply_booking(repo, organization_id, event, enrichment)
    if event.kind == st.KIND_CANCELED:
        return await _apply_cancellation(repo, organization_id, event, now), None
    if event.kind == st.KIND_NO_SHOW_UPDATED:
        return await _apply_no_show(repo, organization_id, event, now), None
    if event.kind in st.MEETING_KINDS:
        return await _apply_meeting(repo, organization_id, event, now), None
    return ReconciliationResult(True, ACTION_IGNORED, organization_id=organization_id), None


async def _apply_with_retry(
    repo: Any,
    organization_id: str,
    event: NormalizedBookingEvent,
    enrichment: Enrichment,
    now: datetime,
) -> tuple[ReconciliationResult, Optional[str]]:
    try:
        async with repo.transaction():
            return await _apply(repo, organization_id, event, enrichment, now)
    except ConflictingWrite:
        logger.warning(
            "Concurrent write on %s booking %s, retrying once", event.platform, event.native_id
        )
    async with repo.transaction():
        return await _apply(repo, organization_id, event, enrichment, now)


async def reconcile_booking_event(
    repo: Any,
    event: NormalizedBookingEvent,
    *,
    org_hint: Optional[str] = None,
    headers: Optional[Mapping[str, Any]] = None,
    client_ip: Optional[str] = None,
    enricher: Optional[Enricher] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """
    Reconcile one normalized booking webhook. Raises ReconciliationError
    subclasses after recording the failure in the audit trail.
    """
    now = now or _utcnow()
    audit_id = await repo.write_audit(
        build_audit_record(
            event, platform=event.platform, payload=event.raw_payload, headers=headers, client_ip=client_ip
        )
    )

    organization_id: Optional[str] = None
    setter_resolution: Optional[str] = None
    try:
        organization_id = await resolve_organization(repo, event, org_hint=org_hint)

        if event.kind in st.BOOKING_KINDS and not event.lead_email:
            raise MissingRequiredField("lead_email", "Booking webhook has no attendee email")

        enrichment = EMPTY
        if enricher is not None and event.kind in st.BOOKING_KINDS:
            enrichment = await enricher(repo, organization_id, event.lead_email)

        result, setter_resolution = await _apply_with_retry(repo, organization_id, event, enrichment, now)
    except ReconciliationError as e:
        await repo.finish_audit(
            audit_id,
            result=st.AUDIT_FAILURE,
            error_code=e.code,
            error_message=e.message,
            organization_id=organization_id,
            event_id=e.event_id,
        )
        log_reconciliation_run(
            kind=event.kind,
            platform=event.platform,
            native_id=event.native_id,
            organization_id=organization_id,
            action="failed",
            ok=False,
            error_code=e.code,
        )
        raise
    except Exception as e:
        await repo.finish_audit(
            audit_id,
            result=st.AUDIT_FAILURE,
            error_code="internal_error",
            error_message=str(e),
            organization_id=organization_id,
        )
        raise

    await repo.finish_audit(
        audit_id,
        result=st.AUDIT_SUCCESS,
        organization_id=organization_id,
        event_id=result.event_id,
    )
    log_reconciliation_run(
        kind=event.kind,
        platform=event.platform,
        native_id=event.native_id,
        organization_id=organization_id,
        action=result.action,
        ok=True,
        event_id=result.event_id,
        match_rule=result.match_rule,
        setter_resolution=setter_resolution,
        superseded=list(result.superseded_event_ids),
    )
    return result


async def record_rejected_webhook(
    repo: Any,
    *,
    platform: str,
    payload: dict[str, Any],
    error: str,
    headers: Optional[Mapping[str, Any]] = None,
    client_ip: Optional[str] = None,
) -> None:
    """Audit a webhook body the platform adapter could not parse."""
    audit_id = await repo.write_audit(
        build_audit_record(None, platform=platform, payload=payload, headers=headers, client_ip=client_ip)
    )
    await repo.finish_audit(audit_id, result=st.AUDIT_FAILURE, error_code="invalid_payload", error_message=error)


# ---------------------------------------------------------------------------
# Outcome forms
# ---------------------------------------------------------------------------


async def submit_outcome_form(
    repo: Any,
    form: OutcomeFormSubmission,
    *,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """Upsert the outcome form and re-derive the event's outcome in one transaction."""
    now = now or _utcnow()
    async with repo.transaction():
        record = await repo.find_event_by_id(form.event_id)
        if record is None:
            raise EventNotFound(f"Tracked event not found: {form.event_id}", event_id=form.event_id)

        stage_name = None
        if form.pipeline_stage_id:
            stage_name = await repo.load_pipeline_stage_name(form.pipeline_stage_id)
            if stage_name is None:
                logger.warning("Unknown pipeline stage id=%s event=%s", form.pipeline_stage_id, form.event_id)
                form = replace(form, pipeline_stage_id=None)

        decision = derive_outcome(
            stage_name=stage_name,
            lead_showed=form.lead_showed,
            offer_made=form.offer_made,
            deal_closed=form.deal_closed,
        )
        await repo.upsert_outcome_form(record["organization_id"], form)
        record = await repo.update_event(
            record["id"],
            {
                "call_status": decision.call_status,
                "event_outcome": decision.event_outcome,
                "pcf_outcome_label": decision.outcome_label,
                "pcf_submitted": True,
                "pcf_submitted_at": now,
            },
        )

    log_reconciliation_run(
        kind="pcf",
        platform=record.get("booking_platform"),
        native_id=record.get("native_booking_id"),
        organization_id=record["organization_id"],
        action=ACTION_UPDATED,
        ok=True,
        event_id=record["id"],
        match_rule=decision.decided_by,
    )
    return ReconciliationResult(
        True, ACTION_UPDATED, event_id=record["id"], organization_id=record["organization_id"]
    )


async def _restored_status_fields(repo: Any, record: dict[str, Any]) -> dict[str, Any]:
    """Outcome columns as the booking platform last left them, before any form."""
    if record.get("rescheduled_to_uid"):
        fields = retire_fields()
    elif record.get("canceled_at") is not None:
        fields = auto_complete(
            await cancellation_status(
                repo,
                organization_id=record["organization_id"],
                lead_email=record.get("lead_email"),
                event_name=record.get("event_name"),
                exclude_id=record["id"],
            )
        )
    elif record.get("no_show_guest"):
        fields = {"call_status": st.NO_SHOW, "event_outcome": st.OUTCOME_NO_SHOW, "pcf_submitted": False}
    else:
        fields = {"call_status": st.SCHEDULED, "event_outcome": None, "pcf_submitted": False}
    fields.update({"pcf_outcome_label": None, "pcf_submitted_at": None})
    return fields


async def retract_outcome_form(repo: Any, event_id: str) -> ReconciliationResult:
    """
    Admin correction: drop the form and restore the platform-derived status.
    Events with no form on file are left alone.
    """
    async with repo.transaction():
        record = await repo.find_event_by_id(event_id)
        if record is None:
            raise EventNotFound(f"Tracked event not found: {event_id}", event_id=event_id)
        if not await repo.delete_outcome_form(event_id):
            logger.info("No outcome form to retract event=%s", event_id)
            return ReconciliationResult(
                True, ACTION_UNCHANGED, event_id=record["id"], organization_id=record["organization_id"]
            )
        record = await repo.update_event(event_id, await _restored_status_fields(repo, record))
        superseded = await retire_superseded(repo, organization_id=record["organization_id"], record=record)

    log_reconciliation_run(
        kind="pcf_retract",
        platform=record.get("booking_platform"),
        native_id=record.get("native_booking_id"),
        organization_id=record["organization_id"],
        action=ACTION_UPDATED,
        ok=True,
        event_id=record["id"],
        superseded=superseded,
    )
    return ReconciliationResult(
        True,
        ACTION_UPDATED,
        event_id=record["id"],
        organization_id=record["organization_id"],
        superseded_event_ids=tuple(superseded),
    )


async def load_event_view(repo: Any, event_id: str) -> dict[str, Any]:
    """Stored record plus read-time setter and closer display names."""
    record = await repo.find_event_by_id(event_id)
    if record is None:
        raise EventNotFound(f"Tracked event not found: {event_id}", event_id=event_id)
    snapshot = await repo.load_alias_snapshot(record["organization_id"])
    view = dict(record)
    view["setter_display_name"] = resolve_setter_name(record.get("setter_name"), snapshot)
    view["closer_display_name"] = resolve_closer_display_name(
        record.get("closer_email"), record.get("closer_name"), snapshot
    )
    return view
