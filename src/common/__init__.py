"""
Common utilities and shared modules.
"""

from .errors import (
    IngestError,
    InvalidInputError,
    UpstreamError,
    StoreReadError,
    CommitFailure,
)

from .firecrawl_client import FirecrawlClient, SubmittedJob

from .http_client import create_api_client, USER_AGENT

from .tasks import spawn_detached, drain_detached, pending_tasks

__all__ = [
    # Errors
    "IngestError",
    "InvalidInputError",
    "UpstreamError",
    "StoreReadError",
    "CommitFailure",
    # Firecrawl client
    "FirecrawlClient",
    "SubmittedJob",
    # HTTP client utilities
    "create_api_client",
    "USER_AGENT",
    # Detached tasks
    "spawn_detached",
    "drain_detached",
    "pending_tasks",
]
