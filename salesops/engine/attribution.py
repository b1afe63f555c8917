"""
Attribution resolver.

Turns the raw custom-field maps of a booking (responses, user fields,
booking fields, metadata) into setter / source / UTM attribution. Alias,
display-name and source tables arrive as an immutable AliasSnapshot loaded
once per unit of work; nothing in here touches the database.

resolve_attribution() never raises: malformed or absent fields degrade to
None / empty maps.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from salesops.engine.providers.base import NormalizedBookingEvent, clean_str

logger = logging.getLogger(__name__)

SETTER_KEYS = ("utm_setter", "setter", "setter-name")
HANDLE_KEYS = ("IGHANDLE", "ighandle", "IG Handle", "ig_handle", "instagram_handle")

_JUNK_SETTER_PATTERNS = (
    re.compile(r"^user_", re.IGNORECASE),
    re.compile(r"^[a-z]{1,2}$", re.IGNORECASE),
    re.compile(r"^\d+$"),
    re.compile(r"^utm_", re.IGNORECASE),
    re.compile(r"^https?://", re.IGNORECASE),
    re.compile(r"^www\.", re.IGNORECASE),
)


@dataclass(frozen=True)
class AliasSnapshot:
    """Organization-scoped lookup tables, read once and never mutated."""

    # (alias, canonical_name) in table order; first match wins
    setter_aliases: tuple[tuple[str, str], ...] = ()
    closer_by_email: dict[str, str] = field(default_factory=dict)
    closer_by_name: dict[str, str] = field(default_factory=dict)
    # (source_id, name)
    sources: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Attribution:
    setter_name: Optional[str]
    setter_resolution: str
    source_value: Optional[str]
    utm_fields: dict[str, Any]
    flattened_responses: dict[str, Any]
    handle: Optional[str] = None


def unwrap_answer(value: Any) -> Any:
    """Cal.com wraps answers as {label, value, isHidden}; pull out the value."""
    if isinstance(value, dict) and "value" in value:
        return value.get("value")
    return value


def _unwrap_map(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): unwrap_answer(v) for k, v in raw.items()}


def flatten_responses(
    responses: Any,
    user_fields: Any = None,
    booking_fields: Any = None,
) -> dict[str, Any]:
    """Merge the answer maps into one flat map. responses win on key collision."""
    flat: dict[str, Any] = {}
    flat.update(_unwrap_map(booking_fields))
    flat.update(_unwrap_map(user_fields))
    flat.update(_unwrap_map(responses))
    return flat


def extract_utm_fields(responses: dict[str, Any], metadata: dict[str, Any]) -> dict[str, Any]:
    """Collect every key prefixed utm_ (case-insensitive). responses take precedence."""
    utm: dict[str, Any] = {}
    for source in (metadata, responses):
        if not isinstance(source, dict):
            continue
        for key, value in source.items():
            if not isinstance(key, str) or not key.lower().startswith("utm_"):
                continue
            value = unwrap_answer(value)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            utm[key.lower()] = value.strip() if isinstance(value, str) else value
    return utm


def _text(value: Any) -> Optional[str]:
    value = unwrap_answer(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return clean_str(value)


def _explicit_setter(fields: dict[str, Any]) -> Optional[str]:
    for key in SETTER_KEYS:
        found = _text(fields.get(key))
        if found:
            return found
    return None


def normalize_handle(raw: Any) -> Optional[str]:
    txt = _text(raw)
    if not txt:
        return None
    txt = txt.strip().lstrip("@").strip().lower()
    return txt or None


def _find_handle(*maps: dict[str, Any]) -> Optional[str]:
    for fields in maps:
        for key in HANDLE_KEYS:
            handle = normalize_handle(fields.get(key))
            if handle:
                return handle
    return None


def resolve_handle(handle: Optional[str], snapshot: AliasSnapshot) -> Optional[str]:
    """
    Match a social handle against the setter alias table.
    Exact alias first, then alias containing the handle, then handle containing the alias.
    """
    if not handle:
        return None
    aliases = [(normalize_handle(alias), canonical) for alias, canonical in snapshot.setter_aliases]
    aliases = [(alias, canonical) for alias, canonical in aliases if alias]

    for alias, canonical in aliases:
        if alias == handle:
            return canonical
    for alias, canonical in aliases:
        if handle in alias:
            return canonical
    for alias, canonical in aliases:
        if alias in handle:
            return canonical
    return None


def _source_value(event: NormalizedBookingEvent, flat: dict[str, Any], utm: dict[str, Any]) -> Optional[str]:
    return (
        clean_str(event.source_hint)
        or _text(utm.get("utm_source"))
        or _text(utm.get("utm_medium"))
        or _text(flat.get("source"))
    )


def resolve_attribution(event: NormalizedBookingEvent, snapshot: AliasSnapshot) -> Attribution:
    """
    Setter priority: explicit key in responses > user fields > booking fields >
    metadata > adapter hint > social-handle lookup against the alias table.
    """
    try:
        responses = _unwrap_map(event.responses)
        user_fields = _unwrap_map(event.user_fields)
        booking_fields = _unwrap_map(event.booking_fields)
        metadata = _unwrap_map(event.metadata)
        flat = flatten_responses(event.responses, event.user_fields, event.booking_fields)
        utm = extract_utm_fields(flat, metadata)

        setter: Optional[str] = None
        how = "none"
        for label, fields in (
            ("responses", responses),
            ("user_fields", user_fields),
            ("booking_fields", booking_fields),
            ("metadata", metadata),
        ):
            setter = _explicit_setter(fields)
            if setter:
                how = label
                break

        if not setter and clean_str(event.setter_hint):
            setter = clean_str(event.setter_hint)
            how = "hint"

        handle = _find_handle(responses, user_fields, booking_fields, metadata)
        if not setter and handle:
            setter = resolve_handle(handle, snapshot)
            if setter:
                how = "handle"
            else:
                logger.info("No setter alias matched handle=%s", handle)

        return Attribution(
            setter_name=setter,
            setter_resolution=how,
            source_value=_source_value(event, flat, utm),
            utm_fields=utm,
            flattened_responses=flat,
            handle=handle,
        )
    except Exception:
        logger.exception("Attribution resolution failed for native_id=%s", event.native_id)
        return Attribution(None, "error", None, {}, {})


def is_junk_setter_name(name: Optional[str]) -> bool:
    txt = clean_str(name)
    if not txt:
        return True
    return any(p.search(txt) for p in _JUNK_SETTER_PATTERNS)


def _squash(value: str) -> str:
    return re.sub(r"[\s@]+", "", value).lower()


def resolve_setter_name(raw_name: Optional[str], snapshot: AliasSnapshot) -> Optional[str]:
    """Read-time display name for a stored setter name."""
    if is_junk_setter_name(raw_name):
        return None
    name = raw_name.strip()  # type: ignore[union-attr]
    low = name.lower()
    for alias, canonical in snapshot.setter_aliases:
        if alias.strip().lower() == low:
            return canonical
    squashed = _squash(name)
    for alias, canonical in snapshot.setter_aliases:
        if _squash(alias) == squashed:
            return canonical
    return name


def resolve_closer_display_name(
    closer_email: Optional[str],
    closer_name: Optional[str],
    snapshot: AliasSnapshot,
) -> Optional[str]:
    email = clean_str(closer_email)
    if email and email.lower() in snapshot.closer_by_email:
        return snapshot.closer_by_email[email.lower()]
    name = clean_str(closer_name)
    if name and name.lower() in snapshot.closer_by_name:
        return snapshot.closer_by_name[name.lower()]
    return name


def match_source(source_value: Optional[str], snapshot: AliasSnapshot) -> Optional[str]:
    """Source id for a raw source value: exact (case-insensitive), then value contains name."""
    value = clean_str(source_value)
    if not value:
        return None
    low = value.lower()
    for source_id, name in snapshot.sources:
        if name.strip().lower() == low:
            return source_id
    for source_id, name in snapshot.sources:
        needle = name.strip().lower()
        if needle and needle in low:
            return source_id
    return None
