"""
Convocatorias Ingest - Main Application Entry Point

Thin HTTP layer over the ingestion pipeline:
- batch scrape / site crawl through the content service, polled under a budget
- structured extraction of listings, stored in the background
- deduplicating upsert and listing queries
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .archivist import (
    Database,
    DocumentStore,
    KeyResolver,
    ListingRecord,
    SqlDocumentStore,
    get_resolver,
    list_listings,
    partition_records,
    upsert_listings,
)
from .common import (
    CommitFailure,
    FirecrawlClient,
    InvalidInputError,
    StoreReadError,
    UpstreamError,
    drain_detached,
    spawn_detached,
)
from .harvester import (
    JobFailedError,
    check_batch,
    crawl_sites,
    extract_listings,
    scrape_batch,
    start_batch,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = (
    "Extrae TODAS las convocatorias encontradas en este sitio web. "
    "Para cada convocatoria, identifica título, entidad, descripción, fecha de cierre "
    "(YYYY-MM-DD), enlace directo, monto, requisitos y estado (abierta o cerrada). "
    "Si algún campo no está disponible, usa null. NO omitas ninguna convocatoria."
)


def listing_extraction_schema() -> Dict[str, Any]:
    """JSON schema handed to the extract job, derived from ListingRecord."""
    return {
        "type": "object",
        "properties": {
            "convocatorias": {
                "type": "array",
                "items": ListingRecord.model_json_schema(by_alias=True),
            },
        },
        "required": ["convocatorias"],
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: build and release the injected services."""
    logger.info(f"Starting Convocatorias Ingest (dedup strategy: {settings.dedup_strategy})")

    database = Database.from_url(settings.database_url)
    try:
        await database.init()
        logger.info("Database tables ready")
    except Exception as e:
        logger.warning(f"Could not initialize database: {e}")

    app.state.database = database
    app.state.store = SqlDocumentStore(database)
    app.state.resolver = get_resolver()
    app.state.firecrawl = FirecrawlClient()

    yield

    logger.info("Shutting down...")
    await drain_detached()
    await app.state.firecrawl.close()
    await database.close()


app = FastAPI(
    title="Convocatorias Ingest",
    description="Scrape, extract and store public funding / grant / job announcements",
    version="1.0.0",
    lifespan=lifespan,
)

_allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
if settings.frontend_url:
    _allowed_origins.append(settings.frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# ----- Dependencies -----

def get_firecrawl(request: Request) -> FirecrawlClient:
    client: FirecrawlClient = request.app.state.firecrawl
    if not client.is_configured():
        raise HTTPException(
            status_code=500,
            detail="FIRECRAWL_API_KEY not configured in environment variables",
        )
    return client


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_key_resolver(request: Request) -> KeyResolver:
    return request.app.state.resolver


def _budget(requested: Optional[int]) -> int:
    """Caller budgets are capped by the configured ceiling."""
    if requested is None:
        return settings.poll_budget_ms
    return min(requested, settings.poll_budget_ms)


# ----- Error mapping -----

@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(JobFailedError)
async def job_failed_handler(request: Request, exc: JobFailedError):
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "jobId": exc.job_id, "details": exc.details},
    )


@app.exception_handler(StoreReadError)
async def store_read_handler(request: Request, exc: StoreReadError):
    logger.error(f"Storage read error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Database operation failed"})


@app.exception_handler(UpstreamError)
async def upstream_handler(request: Request, exc: UpstreamError):
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    return JSONResponse(
        status_code=status_code,
        content={"error": str(exc), "details": exc.details},
    )


@app.exception_handler(CommitFailure)
async def commit_failure_handler(request: Request, exc: CommitFailure):
    logger.error(f"Storage error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Database operation failed", "message": str(exc)})


# ----- Request Models -----

class BatchScrapeRequest(BaseModel):
    urls: Optional[List[str]] = None
    scrapeOptions: Optional[Dict[str, Any]] = None
    budgetMs: Optional[int] = Field(default=None, ge=0)


class BatchStartRequest(BaseModel):
    urls: Optional[List[str]] = None
    formats: Optional[List[str]] = None
    onlyMainContent: bool = True


class BatchCheckRequest(BaseModel):
    jobUrl: Optional[str] = None


class SiteCrawlRequest(BaseModel):
    url: Optional[str] = None
    urls: Optional[List[str]] = None
    crawlerOptions: Optional[Dict[str, Any]] = None
    scrapeOptions: Optional[Dict[str, Any]] = None
    budgetMs: Optional[int] = Field(default=None, ge=0)


class ExtractRequest(BaseModel):
    urls: Optional[List[str]] = None
    prompt: Optional[str] = None
    store: bool = True
    budgetMs: Optional[int] = Field(default=None, ge=0)


class UpsertRequest(BaseModel):
    convocatorias: Any = None


# ----- Endpoints -----

@app.get("/health")
async def health_check(request: Request):
    """Health check with pool counters."""
    try:
        pool_status = request.app.state.database.get_pool_status()
    except Exception as e:
        logger.warning(f"Failed to get pool status: {e}")
        pool_status = None

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "dedupStrategy": settings.dedup_strategy,
        "firecrawlConfigured": bool(settings.firecrawl_api_key),
        "pool": pool_status,
    }


@app.post("/crawl/batch")
async def crawl_batch(body: BatchScrapeRequest, client: FirecrawlClient = Depends(get_firecrawl)):
    """Batch-scrape URLs. 200 with results, or 202 with a continuation token on timeout."""
    result = await scrape_batch(
        client,
        body.urls,
        options=body.scrapeOptions,
        budget_ms=_budget(body.budgetMs),
    )
    if result.timed_out:
        return JSONResponse(status_code=202, content=result.to_dict())
    return result.to_dict()


@app.post("/crawl/batch/start")
async def crawl_batch_start(body: BatchStartRequest, client: FirecrawlClient = Depends(get_firecrawl)):
    """Submit a batch job and return its handle immediately."""
    job = await start_batch(client, body.urls, formats=body.formats, only_main_content=body.onlyMainContent)
    return {
        "success": True,
        "action": "started",
        "jobId": job.id,
        "jobUrl": job.status_url,
        "totalUrls": len(body.urls or []),
    }


@app.post("/crawl/batch/check")
async def crawl_batch_check(body: BatchCheckRequest, client: FirecrawlClient = Depends(get_firecrawl)):
    """Check a started batch job once."""
    status = await check_batch(client, body.jobUrl)
    if status["jobStatus"] == "failed":
        return JSONResponse(status_code=500, content=status)
    return status


@app.post("/crawl/sites")
async def crawl_site_urls(body: SiteCrawlRequest, client: FirecrawlClient = Depends(get_firecrawl)):
    """Crawl one or more sites concurrently."""
    url_list = body.urls if body.urls else ([body.url] if body.url else [])
    results = await crawl_sites(
        client,
        url_list,
        crawl_options=body.crawlerOptions,
        scrape_options=body.scrapeOptions,
        budget_ms=_budget(body.budgetMs),
    )

    # A single url keeps the single-result response shape
    if body.url and not body.urls:
        return results[0].to_dict()

    return {
        "success": True,
        "count": len(results),
        "results": [r.to_dict() for r in results],
    }


@app.post("/convocatorias/extract")
async def extract_convocatorias(
    body: ExtractRequest,
    client: FirecrawlClient = Depends(get_firecrawl),
    store: DocumentStore = Depends(get_store),
    resolver: KeyResolver = Depends(get_key_resolver),
):
    """Extract listings from URLs. Storing them is dispatched without waiting."""
    result = await extract_listings(
        client,
        body.urls,
        prompt=body.prompt or EXTRACTION_PROMPT,
        schema=listing_extraction_schema(),
        budget_ms=_budget(body.budgetMs),
    )
    if result.timed_out:
        return JSONResponse(status_code=202, content={
            "success": False,
            "timedOut": True,
            "jobId": result.job_id,
            "statusEndpoint": result.status_endpoint,
        })

    records, dropped = partition_records(result.records)
    if body.store and records:
        spawn_detached(
            upsert_listings(store, records, resolver),
            name=f"store_extracted_{result.job_id}",
        )

    return {
        "success": True,
        "url": body.urls,
        "convocatoriasCount": len(records),
        "droppedCount": dropped,
        "convocatorias": [r.model_dump(mode="json", by_alias=True) for r in records],
        "storeDispatched": bool(body.store and records),
    }


@app.post("/convocatorias")
async def store_convocatorias(
    body: UpsertRequest,
    store: DocumentStore = Depends(get_store),
    resolver: KeyResolver = Depends(get_key_resolver),
):
    """Deduplicating upsert of extracted listings."""
    result = await upsert_listings(store, body.convocatorias, resolver)
    return {"success": True, "count": result.total, **result.to_dict()}


@app.get("/convocatorias")
async def get_convocatorias(
    estado: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    store: DocumentStore = Depends(get_store),
):
    """Stored listings, newest first."""
    docs = await list_listings(store, estado=estado, limit=limit)
    return {
        "success": True,
        "count": len(docs),
        "data": [doc.to_dict() for doc in docs],
    }
