"""
Shared HTTP Client Configuration.

Provides standardized HTTP client creation for the content service client
and any other outbound JSON API we talk to.

Usage:
    from src.common.http_client import create_api_client

    async with create_api_client(bearer_token=settings.firecrawl_api_key) as client:
        response = await client.post(url, json=payload)
"""

import httpx
from typing import Optional

from ..config.settings import settings


# Identifies the ingestion service to upstream APIs
USER_AGENT = "ConvocatoriasIngest/1.0"


def create_api_client(
    bearer_token: str = "",
    timeout: Optional[float] = None,
    max_connections: int = 20,
    max_keepalive: int = 10,
    extra_headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client for a JSON API.

    Args:
        bearer_token: Sent as "Authorization: Bearer <token>" when non-empty
        timeout: Request timeout in seconds (default: settings.firecrawl_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        extra_headers: Additional headers to include
        transport: Optional transport override (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Content-Type": "application/json",
    }
    if bearer_token:
        headers["Authorization"] = f"Bearer {bearer_token}"
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.firecrawl_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        transport=transport,
    )
