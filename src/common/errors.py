"""
Error taxonomy shared by the ingestion pipeline.

A poll that runs out of budget is NOT an error: it is reported as a
TIMED_OUT PollOutcome carrying the job id and status endpoint.
"""

from typing import Any, Optional


class IngestError(Exception):
    """Base class for ingestion failures."""
    pass


class InvalidInputError(IngestError):
    """Raised for malformed input, before any external call is made."""
    pass


class UpstreamError(IngestError):
    """Raised when the content service or the store answers with an error.

    Carries the upstream HTTP status (when there is one) and whatever
    details the upstream returned so callers can surface them verbatim.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class StoreReadError(UpstreamError):
    """Raised when the batched existence read fails. Nothing was written."""
    pass


class CommitFailure(IngestError):
    """Raised when the batch commit is rejected. The whole batch was rolled back."""

    def __init__(self, message: str, staged: int = 0):
        super().__init__(message)
        self.staged = staged
