"""
Reconciliation error taxonomy.

Lower layers raise these; the route layer maps them to HTTP responses via
`code` and `http_status`. Only organization resolution and missing lead
identity abort a unit of work; everything else degrades locally.
"""
from __future__ import annotations

from typing import Optional


class ReconciliationError(Exception):
    """Base class for every typed failure of the reconciliation pipeline."""

    code = "reconciliation_error"
    http_status = 500

    def __init__(self, message: str, *, event_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.event_id = event_id


class OrganizationUnresolved(ReconciliationError):
    """No tenant could be determined for an inbound payload.

    Logged to the audit trail and dropped. Answered with 200 so the platform
    does not redeliver something that cannot succeed.
    """

    code = "organization_unresolved"
    http_status = 200


class MissingRequiredField(ReconciliationError):
    code = "missing_required_field"
    http_status = 400

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class ConflictingWrite(ReconciliationError):
    """A concurrent write raced this one on the same native booking id."""

    code = "conflicting_write"
    http_status = 409


class UpstreamUnavailable(ReconciliationError):
    """A third-party CRM/platform call timed out or was rate limited."""

    code = "upstream_unavailable"
    http_status = 503

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class EventNotFound(ReconciliationError):
    code = "event_not_found"
    http_status = 404
