from .poller import (
    Job,
    JobState,
    JobPoller,
    OutcomeKind,
    PollOutcome,
    InvalidTransition,
)
from .normalizer import (
    CanonicalEntry,
    PAGE_BREAK,
    SECTION_BREAK,
    normalize,
    normalize_page,
    combine_markdown,
)
from .orchestrator import (
    BatchScrapeResult,
    ExtractResult,
    JobFailedError,
    SiteCrawlResult,
    scrape_batch,
    start_batch,
    check_batch,
    crawl_sites,
    extract_listings,
    validate_urls,
)

__all__ = [
    "Job",
    "JobState",
    "JobPoller",
    "OutcomeKind",
    "PollOutcome",
    "InvalidTransition",
    "CanonicalEntry",
    "PAGE_BREAK",
    "SECTION_BREAK",
    "normalize",
    "normalize_page",
    "combine_markdown",
    "BatchScrapeResult",
    "ExtractResult",
    "JobFailedError",
    "SiteCrawlResult",
    "scrape_batch",
    "start_batch",
    "check_batch",
    "crawl_sites",
    "extract_listings",
    "validate_urls",
]
