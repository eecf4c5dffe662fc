"""
Result Normalizer - turns raw per-page job results into canonical entries.

Pure functions, no I/O. Order follows the order the service returned.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Page boundary used when a single combined document is requested
PAGE_BREAK = "\n\n---PAGE BREAK---\n\n"
# Lighter separator used by the start/check batch flow
SECTION_BREAK = "\n\n---\n\n"


@dataclass
class CanonicalEntry:
    """One non-empty page of job output."""
    url: str
    markdown: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "success": True,
            "markdown": self.markdown,
            "metadata": self.metadata,
        }


def _page_url(page: Dict[str, Any], metadata: Dict[str, Any]) -> str:
    return page.get("url") or metadata.get("sourceURL") or metadata.get("url") or ""


def normalize_page(page: Any) -> Optional[CanonicalEntry]:
    """Normalize one raw page, or return None if it is malformed or empty."""
    if not isinstance(page, dict):
        return None

    markdown = page.get("markdown")
    if not isinstance(markdown, str) or not markdown.strip():
        return None

    metadata = page.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return CanonicalEntry(
        url=_page_url(page, metadata),
        markdown=markdown,
        metadata=metadata,
    )


def normalize(pages: Optional[Iterable[Any]]) -> List[CanonicalEntry]:
    """
    Convert raw page results into canonical entries.

    Pages with blank/missing markdown and malformed pages (not a mapping)
    are dropped rather than failing the whole job.
    """
    if not pages:
        return []

    entries = []
    dropped = 0
    for page in pages:
        entry = normalize_page(page)
        if entry is None:
            dropped += 1
            continue
        entries.append(entry)

    if dropped:
        logger.debug(f"Dropped {dropped} empty or malformed page(s)")
    return entries


def combine_markdown(
    entries: Iterable[CanonicalEntry],
    separator: str = PAGE_BREAK,
    with_urls: bool = True,
) -> str:
    """
    Join entries into one document.

    With with_urls, each block is prefixed with "[URL: <page url>]" so the
    boundaries stay readable for the downstream extraction step.
    """
    blocks = []
    for entry in entries:
        if with_urls:
            blocks.append(f"[URL: {entry.url}]\n{entry.markdown}")
        else:
            blocks.append(entry.markdown)
    return separator.join(blocks)
