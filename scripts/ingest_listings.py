#!/usr/bin/env python3
"""
Ingestion CLI - run the pipeline without the HTTP layer.

Settings (FIRECRAWL_API_KEY, DATABASE_URL, DEDUP_STRATEGY, ...) are read
from the environment or .env, same as the API.

USAGE:
    # Batch-scrape pages and print the normalized results (or the
    # continuation token if the job outlives the budget)
    python scripts/ingest_listings.py scrape https://example.gov/convocatorias --budget-ms 60000

    # Print one combined markdown document instead of JSON
    python scripts/ingest_listings.py scrape https://a.example https://b.example --combined

    # Upsert a JSON file holding a list of convocatorias
    python scripts/ingest_listings.py upsert data/convocatorias.json
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.archivist import Database, SqlDocumentStore, get_resolver, upsert_listings
from src.common import FirecrawlClient, IngestError
from src.config import settings
from src.harvester import PAGE_BREAK, combine_markdown, scrape_batch

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("ingest_listings")


async def run_scrape(urls: List[str], budget_ms: Optional[int], combined: bool) -> int:
    async with FirecrawlClient() as client:
        if not client.is_configured():
            return 2
        result = await scrape_batch(client, urls, budget_ms=budget_ms)

    if result.timed_out:
        print(json.dumps(result.to_dict(), indent=2))
        return 3
    if combined:
        print(combine_markdown(result.entries, separator=PAGE_BREAK, with_urls=True))
    else:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def run_upsert(path: Path, strategy: Optional[str]) -> int:
    records = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(records, dict):
        records = records.get("convocatorias", records)

    database = Database.from_url()
    try:
        await database.init()
        store = SqlDocumentStore(database)
        result = await upsert_listings(store, records, get_resolver(strategy))
    finally:
        await database.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Convocatorias ingestion CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser("scrape", help="Batch-scrape URLs through the content service")
    scrape.add_argument("urls", nargs="+", help="Page URLs")
    scrape.add_argument("--budget-ms", type=int, default=None, help="Polling budget in milliseconds")
    scrape.add_argument("--combined", action="store_true", help="Print one combined markdown document")

    upsert = sub.add_parser("upsert", help="Upsert a JSON file of convocatorias")
    upsert.add_argument("path", type=Path, help="JSON file (list, or object with 'convocatorias')")
    upsert.add_argument("--strategy", choices=["titulo", "enlace"], default=None,
                        help="Dedup strategy (default: DEDUP_STRATEGY setting)")

    args = parser.parse_args(argv)
    try:
        if args.command == "scrape":
            return asyncio.run(run_scrape(args.urls, args.budget_ms, args.combined))
        return asyncio.run(run_upsert(args.path, args.strategy))
    except IngestError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
