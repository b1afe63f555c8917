from __future__ import annotations

from typing import Any, Optional

import httpx

from salesops.engine.errors import UpstreamUnavailable

BASE_URL = "https://api.close.com/api/v1"

# Lead custom field holding the lead's acquisition platform
SOURCE_FIELD_MARKER = "platform"


def _check(r: httpx.Response) -> None:
    if r.status_code == 429 or r.status_code >= 500:
        raise UpstreamUnavailable("close", f"HTTP {r.status_code}")
    if r.status_code == 401:
        raise RuntimeError("Unauthorized: check Close API key")
    r.raise_for_status()


def _source_field_id(custom_fields: list[dict[str, Any]]) -> Optional[str]:
    exact = [f for f in custom_fields if str(f.get("name", "")).strip().lower() == SOURCE_FIELD_MARKER]
    loose = [f for f in custom_fields if SOURCE_FIELD_MARKER in str(f.get("name", "")).lower()]
    for field in exact + loose:
        if field.get("id"):
            return str(field["id"])
    return None


async def fetch_lead_source(
    api_key: str,
    email: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Value of the Close lead's "Platform" custom field for an email. None when absent."""
    # Close uses HTTP basic auth with the key as username
    auth = httpx.BasicAuth(api_key, "")

    try:
        async with httpx.AsyncClient(base_url=BASE_URL, timeout=timeout, transport=transport, auth=auth) as client:
            r = await client.get("/lead/", params={"query": f"email:{email}"})
            _check(r)
            leads = r.json().get("data") or []
            if not leads:
                return None
            lead = leads[0]

            r = await client.get("/custom_field/lead/")
            _check(r)
            field_id = _source_field_id(r.json().get("data") or [])
    except httpx.TimeoutException as e:
        raise UpstreamUnavailable("close", "timeout") from e
    except httpx.TransportError as e:
        raise UpstreamUnavailable("close", str(e)) from e

    if not field_id:
        return None
    value = lead.get(f"custom.{field_id}")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
