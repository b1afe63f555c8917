"""
Call outcome state machine.

Derives the canonical (call_status, event_outcome) pair from either a CRM
pipeline-stage display name or the (lead_showed, offer_made, deal_closed)
flags of a post-call outcome form. Stage classification is evaluated first,
in a fixed order; the flags only decide when no stage keyword matched.

Pure functions: no I/O, no clock.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from salesops.engine import statuses as st

# Stage keyword rules, evaluated in order, first match wins.
# "dns" and "dq" are abbreviations and only match as whole words.
_NO_SHOW_PHRASES = ("no show", "no-show", "did not show")
_NO_SHOW_WORDS = re.compile(r"\bdns\b")
_NOT_QUALIFIED_PHRASES = ("unqualified", "not qualified", "disqualified")
_NOT_QUALIFIED_WORDS = re.compile(r"\bdq\b")
_WON_NAMES = ("won", "closed won")


@dataclass(frozen=True)
class OutcomeDecision:
    call_status: str
    event_outcome: str
    outcome_label: Optional[str] = None
    decided_by: str = "flags"  # "stage" | "flags"


def classify_stage_name(stage_name: Optional[str]) -> Optional[tuple[str, str]]:
    """
    Map a pipeline-stage display name to (event_outcome, call_status).

    Returns None when no keyword matched, so the caller falls through to the
    boolean classification.
    """
    if not stage_name:
        return None
    name = " ".join(stage_name.lower().split())
    if not name:
        return None

    if any(p in name for p in _NO_SHOW_PHRASES) or _NO_SHOW_WORDS.search(name):
        return st.OUTCOME_NO_SHOW, st.NO_SHOW
    if "cancel" in name:
        return st.OUTCOME_CANCELED, st.CANCELED
    if "reschedule" in name:
        return st.OUTCOME_RESCHEDULED, st.RESCHEDULED
    if any(p in name for p in _NOT_QUALIFIED_PHRASES) or _NOT_QUALIFIED_WORDS.search(name):
        return st.NOT_QUALIFIED, st.COMPLETED
    # lost / won are exact-match only
    if name == "lost":
        return st.LOST, st.COMPLETED
    if name in _WON_NAMES:
        return st.CLOSED, st.COMPLETED
    return None


def classify_flags(lead_showed: bool, offer_made: bool, deal_closed: bool) -> tuple[str, str]:
    """Boolean classification of a submitted outcome form."""
    if not lead_showed:
        return st.OUTCOME_NO_SHOW, st.NO_SHOW
    if deal_closed:
        return st.CLOSED, st.COMPLETED
    if offer_made:
        return st.SHOWED_OFFER_NO_CLOSE, st.COMPLETED
    return st.SHOWED_NO_OFFER, st.COMPLETED


def derive_outcome(
    *,
    stage_name: Optional[str] = None,
    lead_showed: bool = False,
    offer_made: bool = False,
    deal_closed: bool = False,
) -> OutcomeDecision:
    """
    Stage name strictly dominates the flags. The label is the stage name
    verbatim, kept for display only.
    """
    label = stage_name.strip() if stage_name and stage_name.strip() else None

    by_stage = classify_stage_name(stage_name)
    if by_stage is not None:
        outcome, call_status = by_stage
        return OutcomeDecision(call_status, outcome, label, "stage")

    outcome, call_status = classify_flags(bool(lead_showed), bool(offer_made), bool(deal_closed))
    return OutcomeDecision(call_status, outcome, label, "flags")


def can_write_outcome(pcf_submitted: bool, source: str) -> bool:
    """
    Guard against silently overwriting a human-entered outcome.

    Once pcf_submitted is set, only a form (re)submission or a platform
    cancellation/reschedule auto-complete may write outcome fields.
    """
    if not pcf_submitted:
        return True
    return source in (st.SOURCE_FORM, st.SOURCE_AUTO_COMPLETE)


def auto_complete(call_status: str) -> dict[str, object]:
    """Outcome fields for a platform-detected cancellation or reschedule."""
    if call_status not in (st.CANCELED, st.RESCHEDULED):
        raise ValueError(f"auto_complete only applies to canceled/rescheduled, got {call_status!r}")
    return {
        "call_status": call_status,
        "event_outcome": call_status,
        "pcf_submitted": True,
    }
