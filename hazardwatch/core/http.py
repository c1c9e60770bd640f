"""
Shared outbound HTTP client.

Government sources serve broken certificate chains often enough that TLS
verification is configurable (HTTP_VERIFY_TLS). Adapters receive a client
through their constructor, so tests can pass one built on
httpx.MockTransport.
"""

from __future__ import annotations

from typing import Optional

import httpx

from hazardwatch.core.config import settings

DEFAULT_HEADERS = {
    "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def build_client(
    *,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """httpx.AsyncClient with the service's UA, TLS and redirect policy."""
    return httpx.AsyncClient(
        timeout=timeout or settings.ADAPTER_TIMEOUT_SECONDS,
        verify=settings.HTTP_VERIFY_TLS,
        follow_redirects=True,
        headers={"User-Agent": settings.HTTP_USER_AGENT, **DEFAULT_HEADERS},
        transport=transport,
    )
