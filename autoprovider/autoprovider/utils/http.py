"""HTTP utilities shared by every pipeline stage."""

from __future__ import annotations

import json
from typing import Any

import httpx

from autoprovider.config import Config

_DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


def build_client(
    config: Config,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the single client an analysis run shares across stages."""
    return httpx.AsyncClient(
        timeout=config.http_timeout,
        follow_redirects=True,
        headers={**_DEFAULT_HEADERS, "User-Agent": config.user_agent},
        transport=transport,
    )


def site_headers(base_url: str, extra: dict[str, str] | None = None) -> dict[str, str]:
    """Referer/Origin headers most catalog sites insist on."""
    origin = base_url.rstrip("/")
    return {"Referer": origin + "/", "Origin": origin, **(extra or {})}


def parse_json(text: str | None) -> Any:
    """Parse a body, returning None for anything that is not JSON."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
