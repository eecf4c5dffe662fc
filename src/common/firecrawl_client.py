"""
Firecrawl API Client.

Thin async wrapper around the content-extraction service:
- submit batch-scrape, crawl and extract jobs
- fetch job status from the status endpoint the service hands back

There is no cancel call: a job is abandoned when the poller's budget runs
out, and the caller may resume polling later from the status endpoint.

The client is constructed explicitly and injected into the poller and the
orchestration functions (no module-level instance).
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

import httpx

from .errors import InvalidInputError, UpstreamError
from .http_client import create_api_client
from ..config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class SubmittedJob:
    """Handle returned by the service when a job is accepted."""
    id: str
    status_url: str


class FirecrawlClient:
    """
    Async client for the Firecrawl v2 API.

    Every non-2xx answer, transport error or malformed body is raised as
    UpstreamError carrying the upstream status code and details.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.firecrawl_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self.client = create_api_client(
            bearer_token=self.api_key,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        if not self.client.is_closed:
            await self.client.aclose()

    def is_configured(self) -> bool:
        """Check if API key is configured."""
        if not self.api_key:
            logger.error("FIRECRAWL_API_KEY not configured")
            return False
        return True

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            raise UpstreamError(
                f"Firecrawl returned a non-JSON body (HTTP {response.status_code})",
                status_code=response.status_code,
                details=response.text[:500],
            )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Firecrawl request to {path} failed: {e}") from e

        data = self._decode(response)
        if not response.is_success or not isinstance(data, dict) or data.get("success") is False:
            logger.error(f"Firecrawl {path} failed (HTTP {response.status_code}): {data}")
            raise UpstreamError(
                f"Firecrawl {path} failed",
                status_code=response.status_code,
                details=data,
            )
        return data

    def owns_url(self, url: str) -> bool:
        """True when url points at the configured service (same scheme, host and port)."""
        try:
            candidate = httpx.URL(url)
        except (httpx.InvalidURL, TypeError):
            return False
        base = httpx.URL(self.base_url)
        return (candidate.scheme, candidate.host, candidate.port) == (base.scheme, base.host, base.port)

    def _job_from(self, data: Dict[str, Any], path: str) -> SubmittedJob:
        job_id = data.get("id")
        if not job_id:
            raise UpstreamError(
                f"Firecrawl {path} response has no job id",
                status_code=200,
                details=data,
            )
        status_url = data.get("url")
        if not status_url or not self.owns_url(status_url):
            status_url = f"{self.base_url}{path}/{job_id}"
        return SubmittedJob(id=str(job_id), status_url=status_url)

    async def submit_batch_scrape(
        self,
        urls: List[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> SubmittedJob:
        """
        Start a batch-scrape job.

        Args:
            urls: Pages to scrape
            options: Scrape options merged into the request body (formats, onlyMainContent, ...)

        Returns:
            SubmittedJob with the job id and status endpoint
        """
        payload = {"urls": list(urls), **(options or {})}
        data = await self._post("/batch/scrape", payload)
        job = self._job_from(data, "/batch/scrape")
        logger.info(f"Batch scrape job started: {job.id} ({len(urls)} URLs)")
        return job

    async def submit_crawl(
        self,
        url: str,
        crawl_options: Optional[Dict[str, Any]] = None,
        scrape_options: Optional[Dict[str, Any]] = None,
    ) -> SubmittedJob:
        """Start a crawl job rooted at url."""
        payload: Dict[str, Any] = {"url": url, **(crawl_options or {})}
        if scrape_options:
            payload["scrapeOptions"] = scrape_options
        data = await self._post("/crawl", payload)
        job = self._job_from(data, "/crawl")
        logger.info(f"Crawl job started for {url}: {job.id}")
        return job

    async def submit_extract(
        self,
        urls: List[str],
        prompt: str,
        schema: Dict[str, Any],
        scrape_options: Optional[Dict[str, Any]] = None,
    ) -> SubmittedJob:
        """Start a structured extraction job. Prompt and schema come from the caller."""
        payload: Dict[str, Any] = {
            "urls": list(urls),
            "prompt": prompt,
            "schema": schema,
            "enableWebSearch": False,
            "ignoreInvalidURLs": True,
        }
        if scrape_options:
            payload["scrapeOptions"] = scrape_options
        data = await self._post("/extract", payload)
        job = self._job_from(data, "/extract")
        logger.info(f"Extract job started: {job.id} ({len(urls)} URLs)")
        return job

    async def get_status(
        self,
        status_url: str,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Fetch a job's status document.

        Args:
            status_url: Status endpoint returned at submission
            timeout: Optional per-call timeout overriding the client default

        Returns:
            The status document; always has a "status" key

        Raises:
            InvalidInputError: status_url is not on the configured service host
            UpstreamError: on transport errors, non-2xx answers or malformed bodies
        """
        if not self.owns_url(status_url):
            # Requests carry the API key, never send them to another host
            raise InvalidInputError(f"Status URL is not a {self.base_url} endpoint: {status_url!r}")

        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            response = await self.client.get(status_url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Status check failed: {e}") from e

        data = self._decode(response)
        if not response.is_success:
            raise UpstreamError(
                "Failed to check job status",
                status_code=response.status_code,
                details=data,
            )
        if not isinstance(data, dict) or not data.get("status"):
            raise UpstreamError(
                "Malformed status response",
                status_code=response.status_code,
                details=data,
            )
        return data
