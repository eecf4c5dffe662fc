"""
Scrape Orchestrator - submits content-service jobs and drives them to an outcome.

Entry points:
- scrape_batch(): batch-scrape a URL list within a time budget
- start_batch() / check_batch(): submit now, check later (one status call per check)
- crawl_sites(): crawl several sites concurrently, one job and one poller budget per site
- extract_listings(): structured extraction job returning raw listing dicts

A timed-out job is not an error: the result carries the job id and status
endpoint so the caller can keep polling out of band.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.errors import InvalidInputError, UpstreamError
from ..common.firecrawl_client import FirecrawlClient, SubmittedJob
from .normalizer import (
    CanonicalEntry,
    PAGE_BREAK,
    SECTION_BREAK,
    combine_markdown,
    normalize,
)
from .poller import Job, JobPoller, PollOutcome

logger = logging.getLogger(__name__)


DEFAULT_SCRAPE_OPTIONS: Dict[str, Any] = {
    "formats": ["markdown"],
}

DEFAULT_CRAWL_OPTIONS: Dict[str, Any] = {
    "maxDiscoveryDepth": 2,
    "limit": 20,
    "includePaths": ["convocatorias"],
    "excludePaths": ["login", "admin", "usuario", "register"],
    "allowExternalLinks": False,
}


class JobFailedError(UpstreamError):
    """The content service reported the job as failed. Not retried."""

    def __init__(self, message: str, job_id: str, details: Any = None):
        super().__init__(message, status_code=None, details=details)
        self.job_id = job_id


def validate_urls(urls: Any) -> List[str]:
    """Return the URL list, or raise InvalidInputError if it is empty or malformed."""
    if not isinstance(urls, (list, tuple)) or not urls:
        raise InvalidInputError("Provide 'urls' as a non-empty array of strings")
    cleaned = []
    for url in urls:
        if not isinstance(url, str) or not url.strip():
            raise InvalidInputError(f"Invalid URL in 'urls': {url!r}")
        cleaned.append(url.strip())
    return cleaned


def merge_options(defaults: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Caller options win over defaults (shallow merge)."""
    merged = dict(defaults)
    merged.update(overrides or {})
    return merged


@dataclass
class BatchScrapeResult:
    """Completed batch results, or a continuation token when the budget ran out."""
    job_id: str
    status_endpoint: str
    timed_out: bool = False
    entries: List[CanonicalEntry] = field(default_factory=list)
    credits_used: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.timed_out:
            return {
                "success": False,
                "timedOut": True,
                "message": "Batch job is still processing. Use jobId to check status later.",
                "jobId": self.job_id,
                "statusEndpoint": self.status_endpoint,
            }
        return {
            "success": True,
            "count": len(self.entries),
            "results": [entry.to_dict() for entry in self.entries],
            "jobId": self.job_id,
            "creditsUsed": self.credits_used,
        }


async def scrape_batch(
    client: FirecrawlClient,
    urls: List[str],
    options: Optional[Dict[str, Any]] = None,
    budget_ms: Optional[int] = None,
    interval_ms: Optional[int] = None,
    poller: Optional[JobPoller] = None,
) -> BatchScrapeResult:
    """
    Batch-scrape urls and wait for the results within budget_ms.

    Args:
        client: Content service client
        urls: Non-empty list of page URLs
        options: Scrape options merged over DEFAULT_SCRAPE_OPTIONS
        budget_ms: Max wall-clock time to spend polling (default: settings)
        interval_ms: Delay between status checks (default: settings)
        poller: Optional poller (tests inject one with a fake clock)

    Returns:
        BatchScrapeResult, with timed_out=True when the budget ran out

    Raises:
        InvalidInputError: empty/malformed URL list (before any call)
        UpstreamError: submission rejected
        JobFailedError: the service reported the job as failed
    """
    urls = validate_urls(urls)
    final_options = merge_options(DEFAULT_SCRAPE_OPTIONS, options)
    logger.info(f"Starting batch scrape for {len(urls)} URLs (options={final_options})")

    submitted = await client.submit_batch_scrape(urls, final_options)
    job = Job.from_submission(submitted, budget_ms=budget_ms, poll_interval_ms=interval_ms)
    outcome = await (poller or JobPoller(client)).poll(job)

    if outcome.failed:
        raise JobFailedError("Batch job failed", job_id=outcome.job_id, details=outcome.details)

    if outcome.timed_out:
        return BatchScrapeResult(
            job_id=outcome.job_id,
            status_endpoint=outcome.status_endpoint,
            timed_out=True,
        )

    entries = normalize(outcome.data)
    logger.info(f"Batch completed: {len(entries)} pages with content")
    return BatchScrapeResult(
        job_id=outcome.job_id,
        status_endpoint=outcome.status_endpoint,
        entries=entries,
        credits_used=outcome.credits_used,
    )


async def start_batch(
    client: FirecrawlClient,
    urls: List[str],
    formats: Optional[List[str]] = None,
    only_main_content: bool = True,
) -> SubmittedJob:
    """Submit a batch-scrape job and return its handle without waiting."""
    urls = validate_urls(urls)
    return await client.submit_batch_scrape(
        urls,
        {"formats": formats or ["markdown"], "onlyMainContent": only_main_content},
    )


async def check_batch(client: FirecrawlClient, status_url: str) -> Dict[str, Any]:
    """
    Check a previously started job once.

    Returns a status document with "jobStatus" in processing/completed/failed.
    Completed jobs carry the pages' markdown combined into one document.
    """
    if not status_url:
        raise InvalidInputError("Missing 'jobUrl'")

    status = await client.get_status(status_url)
    state = str(status.get("status", "processing")).lower()

    if state == "completed":
        raw_pages = status.get("data") or []
        entries = normalize(raw_pages)
        return {
            "success": True,
            "jobStatus": "completed",
            "totalUrls": len(raw_pages),
            "processedUrls": len(entries),
            "markdownContent": combine_markdown(entries, separator=SECTION_BREAK, with_urls=False),
        }

    if state == "failed":
        return {
            "success": False,
            "jobStatus": "failed",
            "error": status.get("error") or "Job failed",
        }

    return {"success": False, "jobStatus": state}


@dataclass
class SiteCrawlResult:
    """Outcome of crawling one site."""
    url: str
    success: bool
    markdown: str = ""
    pages_scraped: int = 0
    credits: Optional[int] = None
    error: Any = None
    job_id: Optional[str] = None
    status_endpoint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "url": self.url,
            "success": self.success,
            "markdown": self.markdown,
            "pagesScraped": self.pages_scraped,
        }
        if self.credits is not None:
            result["credits"] = self.credits
        if self.error is not None:
            result["error"] = self.error
        if self.job_id and not self.success:
            result["jobId"] = self.job_id
            result["statusEndpoint"] = self.status_endpoint
        return result


async def _crawl_one(
    client: FirecrawlClient,
    poller: JobPoller,
    url: str,
    crawl_options: Dict[str, Any],
    scrape_options: Dict[str, Any],
    budget_ms: Optional[int],
    interval_ms: Optional[int],
) -> SiteCrawlResult:
    try:
        submitted = await client.submit_crawl(url, crawl_options, scrape_options)
    except UpstreamError as e:
        logger.error(f"Crawl submission failed for {url}: {e}")
        return SiteCrawlResult(url=url, success=False, error=e.details or str(e))

    job = Job.from_submission(submitted, budget_ms=budget_ms, poll_interval_ms=interval_ms)
    outcome = await poller.poll(job)

    if outcome.timed_out:
        return SiteCrawlResult(
            url=url,
            success=False,
            error="timeout",
            job_id=outcome.job_id,
            status_endpoint=outcome.status_endpoint,
        )
    if outcome.failed:
        return SiteCrawlResult(url=url, success=False, error=outcome.details, job_id=outcome.job_id)

    raw_pages = outcome.data if isinstance(outcome.data, list) else []
    entries = normalize(raw_pages)
    logger.info(f"Crawl completed for {url}: {len(raw_pages)} pages")
    return SiteCrawlResult(
        url=url,
        success=True,
        markdown=combine_markdown(entries, separator=PAGE_BREAK, with_urls=True),
        pages_scraped=len(raw_pages),
        credits=outcome.credits_used,
        job_id=outcome.job_id,
    )


async def crawl_sites(
    client: FirecrawlClient,
    urls: List[str],
    crawl_options: Optional[Dict[str, Any]] = None,
    scrape_options: Optional[Dict[str, Any]] = None,
    budget_ms: Optional[int] = None,
    interval_ms: Optional[int] = None,
    poller: Optional[JobPoller] = None,
) -> List[SiteCrawlResult]:
    """
    Crawl each site in urls concurrently.

    Every site gets its own job and its own poll budget. One site failing
    or timing out never affects the others. Results keep the input order.
    """
    urls = validate_urls(urls)
    final_crawl = merge_options(DEFAULT_CRAWL_OPTIONS, crawl_options)
    final_scrape = merge_options(DEFAULT_SCRAPE_OPTIONS, scrape_options)
    poller = poller or JobPoller(client)

    logger.info(f"Starting crawl for {len(urls)} site(s)")
    return list(await asyncio.gather(*[
        _crawl_one(client, poller, url, final_crawl, final_scrape, budget_ms, interval_ms)
        for url in urls
    ]))


@dataclass
class ExtractResult:
    """Raw listing dicts from an extract job, or a continuation token."""
    job_id: str
    status_endpoint: str
    timed_out: bool = False
    records: List[Dict[str, Any]] = field(default_factory=list)


async def extract_listings(
    client: FirecrawlClient,
    urls: List[str],
    prompt: str,
    schema: Dict[str, Any],
    records_key: str = "convocatorias",
    budget_ms: Optional[int] = None,
    interval_ms: Optional[int] = None,
    poller: Optional[JobPoller] = None,
) -> ExtractResult:
    """
    Run a structured extraction job and return the extracted records.

    The prompt and schema are supplied by the caller. Non-dict items in the
    extracted array are dropped.
    """
    urls = validate_urls(urls)
    submitted = await client.submit_extract(
        urls,
        prompt=prompt,
        schema=schema,
        scrape_options={"formats": ["markdown"], "onlyMainContent": True},
    )
    job = Job.from_submission(submitted, budget_ms=budget_ms, poll_interval_ms=interval_ms)
    outcome: PollOutcome = await (poller or JobPoller(client)).poll(job)

    if outcome.failed:
        raise JobFailedError("Extract job failed", job_id=outcome.job_id, details=outcome.details)
    if outcome.timed_out:
        return ExtractResult(job_id=outcome.job_id, status_endpoint=outcome.status_endpoint, timed_out=True)

    data = outcome.data if isinstance(outcome.data, dict) else {}
    raw = data.get(records_key) or []
    records = [item for item in raw if isinstance(item, dict)]
    logger.info(f"Extracted {len(records)} {records_key} from {len(urls)} URL(s)")
    return ExtractResult(
        job_id=outcome.job_id,
        status_endpoint=outcome.status_endpoint,
        records=records,
    )
