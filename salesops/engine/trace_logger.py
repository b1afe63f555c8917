"""
Structured JSON logging for reconciliation runs.

One flat, queryable record per processed webhook / form / payment.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Dedicated logger for trace events (separate from operational logs)
_trace_logger: Optional[logging.Logger] = None


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # record.msg is already a dict for trace logs
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, default=str, ensure_ascii=False)
        return super().format(record)


def _get_trace_logger() -> logging.Logger:
    """Get or create the trace logger with JSON formatting."""
    global _trace_logger
    if _trace_logger is not None:
        return _trace_logger

    _trace_logger = logging.getLogger("salesops.trace")
    _trace_logger.setLevel(logging.INFO)
    _trace_logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(JsonFormatter())
    _trace_logger.addHandler(handler)

    return _trace_logger


def log_reconciliation_run(
    *,
    kind: str,
    platform: Optional[str],
    native_id: Optional[str],
    organization_id: Optional[str],
    action: str,
    ok: bool,
    event_id: Optional[str] = None,
    match_rule: Optional[str] = None,
    setter_resolution: Optional[str] = None,
    superseded: Optional[list[str]] = None,
    error_code: Optional[str] = None,
) -> None:
    """
    Log a single structured record for a reconciliation run.

    Args:
        kind: Normalized webhook kind, or "pcf" / "payment"
        action: What happened to the tracked event ("created", "updated", "unchanged", ...)
        match_rule: Which identity-matcher rule fired
        superseded: Event ids moved to rescheduled by the chain tracker
    """
    logger = _get_trace_logger()

    record: dict[str, Any] = {
        "type": "reconciliation_run",
        "ts": datetime.now(timezone.utc).isoformat(),
        "kind": kind,
        "platform": platform,
        "native_id": native_id,
        "organization_id": organization_id,
        "event_id": event_id,
        "action": action,
        "ok": ok,
    }

    # Optional fields (only include if present)
    if match_rule is not None:
        record["match_rule"] = match_rule

    if setter_resolution is not None:
        record["setter_resolution"] = setter_resolution

    if superseded:
        record["superseded"] = superseded

    if error_code is not None:
        record["error_code"] = error_code

    logger.info(record)
