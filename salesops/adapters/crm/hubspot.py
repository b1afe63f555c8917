from __future__ import annotations

from typing import Any, Optional

import httpx

from salesops.engine.errors import UpstreamUnavailable

BASE_URL = "https://api.hubapi.com"


async def find_contact_id(
    api_key: str,
    email: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """HubSpot contact id for an email via CRM v3 search. None when not found."""
    body: dict[str, Any] = {
        "filterGroups": [{"filters": [{"propertyName": "email", "operator": "EQ", "value": email.lower()}]}],
        "properties": ["email", "firstname", "lastname"],
        "limit": 1,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(base_url=BASE_URL, timeout=timeout, transport=transport) as client:
            r = await client.post("/crm/v3/objects/contacts/search", json=body, headers=headers)
    except httpx.TimeoutException as e:
        raise UpstreamUnavailable("hubspot", "timeout") from e
    except httpx.TransportError as e:
        raise UpstreamUnavailable("hubspot", str(e)) from e

    if r.status_code == 429 or r.status_code >= 500:
        raise UpstreamUnavailable("hubspot", f"HTTP {r.status_code}")
    if r.status_code == 401:
        raise RuntimeError("Unauthorized: check HubSpot private app token")
    r.raise_for_status()

    results = r.json().get("results") or []
    if not results:
        return None
    contact_id = results[0].get("id")
    return str(contact_id) if contact_id else None
