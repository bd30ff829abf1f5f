"""
FastAPI Blocklist Screening API Server

Provides REST API endpoints for list imports, fuzzy name search and
feed synchronization.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import uuid
import asyncio
import functools
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, UploadFile, File, Depends
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from api.models import (
    DatabaseStatusResponse,
    DataSourceResponse,
    ErrorResponse,
    FeedSyncResponse,
    HealthResponse,
    ImportJobResponse,
    SearchRequest,
    UploadResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, setup_logging, ConfigManager, ConfigurationError
from csv_ingestion import CsvIngestionPipeline, IngestionError
from database.connection import DatabaseSessionProvider, init_db, close_db
from database.monitoring import check_health, render_metrics
from database.models import ImportFileType
from database.repositories import DuplicateEntityError, ImportJobRepository
from downloader import FeedDownloader
from feed_sync import FeedSynchronizer
from indexer import Indexer
from scheduler import FeedScheduler
from screener import FuzzySearchEngine
from search_index import SearchIndex, create_search_index
from xml_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
FEED_SYNC_ON_STARTUP = os.getenv("FEED_SYNC_ON_STARTUP", "true").lower() == "true"

API_VERSION = "1.0.0"
UPLOAD_CHUNK_SIZE = 8192
RECENT_IMPORTS_LIMIT = 10

# Global state
_config: Optional[ConfigManager] = None
_db: Optional[DatabaseSessionProvider] = None
_search_index: Optional[SearchIndex] = None
_search_engine: Optional[FuzzySearchEngine] = None
_pipeline: Optional[CsvIngestionPipeline] = None
_scheduler: Optional[FeedScheduler] = None
_startup_time: Optional[datetime] = None
_sync_lock = asyncio.Lock()  # Serializes manual sync triggers
_executor = ThreadPoolExecutor(max_workers=2)  # Startup and feed sync
_import_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="import")  # Uploads, one file at a time


def configure_services(
    config: ConfigManager,
    db: DatabaseSessionProvider,
    search_index: SearchIndex,
    downloader: Optional[FeedDownloader] = None
) -> None:
    """Wire the service graph used by the endpoints."""
    global _config, _db, _search_index, _search_engine, _pipeline, _scheduler

    indexer = Indexer(search_index)
    _config = config
    _db = db
    _search_index = search_index
    _search_engine = FuzzySearchEngine(search_index, config)
    _pipeline = CsvIngestionPipeline(db, indexer, config.ingestion.index_batch_size)

    synchronizer = FeedSynchronizer(db, downloader or FeedDownloader(config), indexer)
    _scheduler = FeedScheduler(
        synchronizer.sync_from_feed,
        config.data.sync_interval_hours * 3600
    )


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_db_instance() -> DatabaseSessionProvider:
    if _db is None:
        raise HTTPException(status_code=503, detail="Database not initialized. Service is starting up.")
    return _db


def get_search_engine() -> FuzzySearchEngine:
    if _search_engine is None:
        raise HTTPException(status_code=503, detail="Search engine not initialized. Service is starting up.")
    return _search_engine


def get_pipeline() -> CsvIngestionPipeline:
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Import pipeline not initialized. Service is starting up.")
    return _pipeline


def get_scheduler() -> FeedScheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Feed scheduler not initialized. Service is starting up.")
    return _scheduler


# Create FastAPI application
app = FastAPI(
    title="Blocklist Screening API",
    description="API for importing sanctions lists and fuzzy name screening",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, connect the store and index, start the scheduler."""
    global _startup_time

    logger.info("Starting Blocklist Screening API...")

    try:
        config = get_config(CONFIG_PATH)
        setup_logging(config)
        logger.info(f"Configuration loaded from {CONFIG_PATH}")

        loop = asyncio.get_event_loop()
        db = await loop.run_in_executor(_executor, functools.partial(init_db, config))

        search_index = create_search_index(config)
        configure_services(config, db, search_index)
        await loop.run_in_executor(_executor, _pipeline.indexer.ensure_index)

        if FEED_SYNC_ON_STARTUP:
            _scheduler.start()

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Blocklist Screening API...")
    if _scheduler is not None:
        _scheduler.stop(wait=False)
    _executor.shutdown(wait=False)
    _import_executor.shutdown(wait=False)
    close_db()


# ============================================
# IMPORTS
# ============================================

def _process_import(pipeline: CsvIngestionPipeline, temp_path: Path, job_id: uuid.UUID) -> None:
    """Background worker: ingest one uploaded file and remove it afterwards."""
    try:
        pipeline.ingest(temp_path, job_id, delete_after=True)
    except IngestionError as e:
        logger.warning("Import %s failed: %s", job_id, sanitize_for_logging(str(e)))
    except Exception:
        logger.exception("Unexpected failure processing import %s", job_id)


def _upload_directory(config: ConfigManager) -> Path:
    directory = config.ingestion.upload_directory
    temp_dir = Path(directory) if directory else Path(tempfile.gettempdir()) / "blocklist_uploads"
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


async def _stream_to_disk(file: UploadFile, temp_path: Path, max_size_bytes: int, max_size_mb: int) -> int:
    """Stream an upload to disk in chunks; 413 when it exceeds the size limit."""
    total_size = 0
    with open(temp_path, "wb") as file_handle:
        while True:
            chunk = await file.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > max_size_bytes:
                raise HTTPException(
                    status_code=413,
                    detail=f"File too large. Maximum size is {max_size_mb}MB",
                )
            file_handle.write(chunk)
    return total_size


def _remove_temp_files(paths: List[Path]) -> None:
    for path in paths:
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.error("Failed to cleanup temp file: path=%s error=%s", path, e)


@app.post(
    "/imports/upload",
    status_code=201,
    response_model=UploadResponse,
    responses={
        201: {"model": UploadResponse, "description": "Files accepted, processing started"},
        400: {"model": ErrorResponse, "description": "No files or non-CSV file"},
        409: {"model": ErrorResponse, "description": "File already imported"},
        413: {"model": ErrorResponse, "description": "File too large or too many files"},
    },
    summary="Upload blocklist CSV files",
)
async def upload_files(
    files: Optional[List[UploadFile]] = File(default=None, description="CSV files"),
    config: ConfigManager = Depends(get_config_instance),
    db: DatabaseSessionProvider = Depends(get_db_instance),
    pipeline: CsvIngestionPipeline = Depends(get_pipeline),
):
    """Accept CSV uploads and start background ingestion.

    Files are streamed to disk; an import job is created per file and the
    response is returned before processing finishes.
    """
    settings = config.ingestion
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.max_files:
        raise HTTPException(
            status_code=413,
            detail=f"Too many files. Maximum is {settings.max_files} per upload",
        )

    filenames = []
    for file in files:
        filename = Path(file.filename or "").name
        if not filename.lower().endswith(".csv"):
            raise HTTPException(status_code=400, detail="Only CSV files are supported")
        if filename in filenames:
            raise HTTPException(status_code=409, detail=f"File '{filename}' was uploaded twice")
        filenames.append(filename)

    def _find_existing() -> Optional[str]:
        with db.session_scope() as session:
            jobs = ImportJobRepository(session)
            return next((name for name in filenames if jobs.get_by_filename(name)), None)

    existing = await run_in_threadpool(_find_existing)
    if existing:
        raise HTTPException(status_code=409, detail=f"File '{existing}' has already been imported")

    temp_dir = _upload_directory(config)
    max_size_bytes = settings.max_upload_size_mb * 1024 * 1024
    staged: List[Tuple[str, Path, int]] = []

    try:
        for file, filename in zip(files, filenames):
            temp_path = temp_dir / f"{uuid.uuid4()}.csv"

            # Validate path is within temp_dir (prevent path traversal)
            if not temp_path.resolve().is_relative_to(temp_dir.resolve()):
                raise HTTPException(status_code=400, detail="Invalid file path")

            staged.append((filename, temp_path, 0))
            size = await _stream_to_disk(file, temp_path, max_size_bytes, settings.max_upload_size_mb)
            staged[-1] = (filename, temp_path, size)

        def _create_jobs() -> List[ImportJobResponse]:
            with db.session_scope() as session:
                jobs = ImportJobRepository(session)
                created = [
                    jobs.create(filename, ImportFileType.CSV, size)
                    for filename, _, size in staged
                ]
                session.flush()
                return [ImportJobResponse.from_job(job) for job in created]

        imports = await run_in_threadpool(_create_jobs)

    except (HTTPException, DuplicateEntityError):
        _remove_temp_files([path for _, path, _ in staged])
        raise

    for job, (_, temp_path, _) in zip(imports, staged):
        _import_executor.submit(_process_import, pipeline, temp_path, uuid.UUID(job.id))
        logger.info("Queued import %s for %s", job.id, sanitize_for_logging(job.filename))

    return UploadResponse(
        message="Files uploaded successfully. Processing started.",
        imports=imports,
    )


@app.get(
    "/imports/recent",
    response_model=List[ImportJobResponse],
    summary="Recent imports",
    description="The 10 newest import jobs",
)
def recent_imports(db: DatabaseSessionProvider = Depends(get_db_instance)):
    with db.session_scope() as session:
        jobs = ImportJobRepository(session).list_recent(RECENT_IMPORTS_LIMIT)
        return [ImportJobResponse.from_job(job) for job in jobs]


@app.get(
    "/imports/{import_id}",
    response_model=ImportJobResponse,
    responses={404: {"model": ErrorResponse, "description": "Import job not found"}},
    summary="Import job status",
)
def get_import(import_id: str, db: DatabaseSessionProvider = Depends(get_db_instance)):
    with db.session_scope() as session:
        job = ImportJobRepository(session).get_by_id_or_raise(import_id)
        return ImportJobResponse.from_job(job)


# ============================================
# SEARCH
# ============================================

@app.post(
    "/search",
    response_model=List[Dict[str, Any]],
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Search backend failure"},
    },
    summary="Fuzzy name search",
)
async def search(
    request: SearchRequest,
    engine: FuzzySearchEngine = Depends(get_search_engine),
):
    """Ranked fuzzy search: index documents plus similarityPercentage, best first."""
    hits = await run_in_threadpool(
        engine.search, request.search_term, request.search_type, request.data_source
    )
    return [hit.to_dict() for hit in hits]


@app.get(
    "/search/status",
    response_model=DatabaseStatusResponse,
    responses={500: {"model": ErrorResponse, "description": "Search backend failure"}},
    summary="Index status",
)
async def search_status(engine: FuzzySearchEngine = Depends(get_search_engine)):
    status = await run_in_threadpool(engine.database_status)
    return DatabaseStatusResponse(
        total_records=status["totalRecords"],
        last_updated=str(status["lastUpdated"]),
    )


@app.get("/data-source", response_model=DataSourceResponse, summary="Configured data source")
async def data_source(config: ConfigManager = Depends(get_config_instance)):
    return DataSourceResponse(data_source=config.search.data_source)


# ============================================
# FEED SYNC AND HEALTH
# ============================================

@app.post(
    "/feed/sync",
    response_model=FeedSyncResponse,
    responses={
        409: {"model": ErrorResponse, "description": "A sync is already running"},
        502: {"model": ErrorResponse, "description": "Feed synchronization failed"},
    },
    summary="Trigger a feed synchronization",
)
async def trigger_feed_sync(scheduler: FeedScheduler = Depends(get_scheduler)):
    """Run one guarded sync; overlapping triggers are rejected."""
    if scheduler.is_running or _sync_lock.locked():
        raise HTTPException(status_code=409, detail="Feed synchronization already in progress")

    async with _sync_lock:
        loop = asyncio.get_event_loop()
        ran = await loop.run_in_executor(_executor, scheduler.run_once)
        if not ran:
            raise HTTPException(status_code=409, detail="Feed synchronization already in progress")
        if scheduler.last_error is not None:
            raise HTTPException(status_code=502, detail="Feed synchronization failed")
        result = scheduler.last_result

    return FeedSyncResponse(
        message="Feed synchronization completed",
        result=result.to_dict() if result is not None else None,
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Store and index reachability. Always returns HTTP 200.",
)
async def health_check():
    database_ok = False
    latency_ms = None
    index_ok = False
    indexed = None

    if _db is not None and _db.initialized:
        db_status = await run_in_threadpool(check_health, _db.session_factory)
        database_ok = db_status.healthy
        latency_ms = round(db_status.latency_ms, 2)
    if _search_index is not None:
        index_ok = await run_in_threadpool(_search_index.health_check)
        if index_ok:
            indexed = await run_in_threadpool(_search_index.count)

    uptime = None
    if _startup_time is not None:
        uptime = round((datetime.now(timezone.utc) - _startup_time).total_seconds(), 1)

    return HealthResponse(
        status="healthy" if database_ok and index_ok else "degraded",
        version=API_VERSION,
        uptime_seconds=uptime,
        database=database_ok,
        database_latency_ms=latency_ms,
        search_index=index_ok,
        indexed_records=indexed,
    )


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape endpoint."""
    body, content_type = render_metrics()
    return Response(content=body, media_type=content_type)


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
