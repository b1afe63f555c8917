"""
Canonical call statuses, outcomes and webhook kinds.

Statuses are string constants, not a Postgres ENUM.
Adding a new value requires only a code change, not a migration.
"""
from __future__ import annotations

# Booking platforms
CALENDLY = "calendly"
CALCOM = "calcom"

PLATFORMS: frozenset[str] = frozenset([CALENDLY, CALCOM])

# call_status: lifecycle of a tracked event
SCHEDULED = "scheduled"
COMPLETED = "completed"
NO_SHOW = "no_show"
CANCELED = "canceled"
RESCHEDULED = "rescheduled"

CALL_STATUSES: frozenset[str] = frozenset([SCHEDULED, COMPLETED, NO_SHOW, CANCELED, RESCHEDULED])

# event_outcome: classification of what happened on the call
SHOWED_NO_OFFER = "showed_no_offer"
SHOWED_OFFER_NO_CLOSE = "showed_offer_no_close"
CLOSED = "closed"
NOT_QUALIFIED = "not_qualified"
LOST = "lost"
OUTCOME_NO_SHOW = NO_SHOW
OUTCOME_CANCELED = CANCELED
OUTCOME_RESCHEDULED = RESCHEDULED

EVENT_OUTCOMES: frozenset[str] = frozenset([
    SHOWED_NO_OFFER,
    SHOWED_OFFER_NO_CLOSE,
    CLOSED,
    NOT_QUALIFIED,
    LOST,
    OUTCOME_NO_SHOW,
    OUTCOME_CANCELED,
    OUTCOME_RESCHEDULED,
])

# Statuses the inferred reschedule chain retires
CHAIN_RETIRABLE_STATUSES: tuple[str, ...] = (SCHEDULED, CANCELED)

# Normalized webhook kinds (adapter output)
KIND_CREATED = "created"
KIND_RESCHEDULED = "rescheduled"
KIND_CANCELED = "canceled"
KIND_NO_SHOW_UPDATED = "no_show_updated"
KIND_MEETING_STARTED = "meeting_started"
KIND_MEETING_ENDED = "meeting_ended"
KIND_RECORDING_READY = "recording_ready"
KIND_UNSUPPORTED = "unsupported"

BOOKING_KINDS: frozenset[str] = frozenset([KIND_CREATED, KIND_RESCHEDULED])
MEETING_KINDS: frozenset[str] = frozenset([KIND_MEETING_STARTED, KIND_MEETING_ENDED, KIND_RECORDING_READY])

# Who is writing outcome fields
SOURCE_FORM = "form"
SOURCE_AUTO_COMPLETE = "auto_complete"
SOURCE_WEBHOOK = "webhook"

# Audit processing results
AUDIT_PROCESSING = "processing"
AUDIT_SUCCESS = "success"
AUDIT_FAILURE = "failure"
