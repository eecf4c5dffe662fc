"""
Job Poller - drives a submitted content-service job to a terminal outcome.

The poller checks the job's status endpoint at a fixed interval until one of:
- the service reports "completed"  -> COMPLETED outcome with the job data
- the service reports "failed"     -> FAILED outcome (terminal, not retried)
- the wall-clock budget runs out   -> TIMED_OUT outcome carrying the job id
                                      and status endpoint so the caller can
                                      resume polling later

Bad status answers (non-2xx, malformed JSON, transport errors) are transient:
they are logged and the loop goes on until the budget runs out.

The budget is enforced by the poller itself, not by the HTTP transport's
timeout. Cancellation is budget expiry only.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from ..common.errors import UpstreamError
from ..common.firecrawl_client import SubmittedJob
from ..config.settings import settings

logger = logging.getLogger(__name__)

# Lower bound for a single status call's transport timeout (seconds), capped at the poll interval
MIN_CALL_TIMEOUT = 1.0


class JobState(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT})


class InvalidTransition(RuntimeError):
    """Raised when something tries to move a job out of a terminal state."""
    pass


@dataclass
class Job:
    """One in-flight crawl / batch-scrape / extract request.

    Lives only as long as the request that submitted it. The state is
    mutated by the poller alone.
    """
    id: str
    status_endpoint: str
    budget_ms: int = field(default_factory=lambda: settings.poll_budget_ms)
    poll_interval_ms: int = field(default_factory=lambda: settings.poll_interval_ms)
    state: JobState = JobState.SUBMITTED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_submission(
        cls,
        submitted: SubmittedJob,
        budget_ms: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> "Job":
        return cls(
            id=submitted.id,
            status_endpoint=submitted.status_url,
            budget_ms=settings.poll_budget_ms if budget_ms is None else budget_ms,
            poll_interval_ms=settings.poll_interval_ms if poll_interval_ms is None else poll_interval_ms,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: JobState) -> None:
        """Move to new_state. Terminal states are final."""
        if self.state == new_state:
            return
        if self.is_terminal:
            raise InvalidTransition(f"Job {self.id} is {self.state.value}, cannot move to {new_state.value}")
        self.state = new_state


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"


@dataclass
class PollOutcome:
    """Terminal result of one poll() call."""
    kind: OutcomeKind
    job_id: str
    status_endpoint: str
    data: Any = None  # Page list (scrape/crawl) or extracted document (extract)
    details: Any = None  # Failure document, or last transient error on timeout
    attempts: int = 0
    elapsed_ms: int = 0
    credits_used: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.kind == OutcomeKind.COMPLETED

    @property
    def failed(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    @property
    def timed_out(self) -> bool:
        return self.kind == OutcomeKind.TIMED_OUT

    def continuation(self) -> Dict[str, Any]:
        """Token the caller uses to resume polling out of band."""
        return {
            "timedOut": True,
            "jobId": self.job_id,
            "statusEndpoint": self.status_endpoint,
        }


class StatusSource(Protocol):
    async def get_status(self, status_url: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        ...


class JobPoller:
    """
    Fixed-interval poller with a hard wall-clock budget.

    Holds no per-job state, so one poller can drive many jobs concurrently;
    each poll() call has its own budget and interval.

    Args:
        client: Anything with an async get_status(status_url, timeout=...)
        clock: Monotonic clock in seconds (injectable for tests)
        sleep: Async sleep in seconds (injectable for tests)
    """

    def __init__(
        self,
        client: StatusSource,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._clock = clock
        self._sleep = sleep

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    async def poll(
        self,
        job: Job,
        budget_ms: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> PollOutcome:
        """
        Poll job until it completes, fails, or the budget runs out.

        The first status check happens immediately. Between checks the
        poller sleeps interval_ms, clipped so it never sleeps past the
        budget; one last check is made at the budget boundary.
        Each status call's transport timeout is the remaining budget, but
        never less than min(1s, interval), so the whole poll ends within
        budget_ms + interval_ms.

        Returns:
            PollOutcome (never raises for upstream errors or timeouts)
        """
        budget_ms = job.budget_ms if budget_ms is None else budget_ms
        interval_ms = job.poll_interval_ms if interval_ms is None else interval_ms
        if budget_ms < 0 or interval_ms <= 0:
            raise ValueError(f"Invalid poll settings: budget_ms={budget_ms}, interval_ms={interval_ms}")
        if job.is_terminal:
            raise InvalidTransition(f"Job {job.id} is already {job.state.value}")

        # A status call may outlive the budget by at most one interval
        call_floor_s = min(MIN_CALL_TIMEOUT, interval_ms / 1000)
        start = self._clock()
        attempts = 0
        last_error: Any = None

        while True:
            attempts += 1
            remaining_s = max(budget_ms - self._elapsed_ms(start), 0) / 1000

            status: Optional[Dict[str, Any]] = None
            try:
                status = await self._client.get_status(
                    job.status_endpoint,
                    timeout=max(remaining_s, call_floor_s),
                )
            except UpstreamError as e:
                last_error = {"error": str(e), "status_code": e.status_code, "details": e.details}
                logger.warning(f"[{job.id}] Status check #{attempts} failed (HTTP {e.status_code}): {e}")

            if status is not None:
                state = str(status.get("status", "")).lower()
                logger.info(
                    f"[{job.id}] Status: {state} - "
                    f"{status.get('completed', '?')}/{status.get('total', '?')} completed"
                )

                if state == JobState.COMPLETED.value:
                    job.advance(JobState.COMPLETED)
                    elapsed = self._elapsed_ms(start)
                    logger.info(f"[{job.id}] Completed after {attempts} check(s), {elapsed}ms")
                    return PollOutcome(
                        kind=OutcomeKind.COMPLETED,
                        job_id=job.id,
                        status_endpoint=job.status_endpoint,
                        data=status.get("data"),
                        attempts=attempts,
                        elapsed_ms=elapsed,
                        credits_used=status.get("creditsUsed"),
                    )

                if state == JobState.FAILED.value:
                    job.advance(JobState.FAILED)
                    logger.error(f"[{job.id}] Job failed: {status.get('error') or status}")
                    return PollOutcome(
                        kind=OutcomeKind.FAILED,
                        job_id=job.id,
                        status_endpoint=job.status_endpoint,
                        details=status,
                        attempts=attempts,
                        elapsed_ms=self._elapsed_ms(start),
                    )

                job.advance(JobState.PROCESSING)

            elapsed = self._elapsed_ms(start)
            if elapsed >= budget_ms:
                break
            await self._sleep(min(interval_ms, budget_ms - elapsed) / 1000)

        job.advance(JobState.TIMED_OUT)
        elapsed = self._elapsed_ms(start)
        logger.warning(
            f"[{job.id}] Budget of {budget_ms}ms exhausted after {attempts} check(s), "
            f"returning job handle for later polling"
        )
        return PollOutcome(
            kind=OutcomeKind.TIMED_OUT,
            job_id=job.id,
            status_endpoint=job.status_endpoint,
            details=last_error,
            attempts=attempts,
            elapsed_ms=elapsed,
        )
