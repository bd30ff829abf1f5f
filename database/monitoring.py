"""
Operation Monitoring for the Blocklist Screening Service

Prometheus metrics and slow-operation logging for the ingestion, feed
synchronization and search paths, plus a store health probe that reports
latency.

Usage:
    from database.monitoring import operation_timer, record_ingested_rows

    with operation_timer("csv_ingest"):
        pipeline.ingest(path, job)
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

SLOW_OPERATION_THRESHOLD_MS = 5000.0
NOTICE_THRESHOLD_MS = 1000.0


# ============================================
# PROMETHEUS METRICS
# ============================================

operation_duration = Histogram(
    'blocklist_operation_duration_seconds',
    'Duration of ingestion, sync and search operations in seconds',
    ['operation', 'status'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0)
)

ingested_rows_total = Counter(
    'blocklist_ingested_rows_total',
    'Rows seen by the ingestion pipelines',
    ['path', 'outcome']
)

indexing_failures_total = Counter(
    'blocklist_indexing_failures_total',
    'Documents the search index failed to accept',
    ['kind']
)


def record_ingested_rows(path: str, outcome: str, count: int = 1) -> None:
    """Count rows by ingestion path (csv, feed) and outcome."""
    if count > 0:
        ingested_rows_total.labels(path=path, outcome=outcome).inc(count)


def record_indexing_failure(kind: str, count: int = 1) -> None:
    if count > 0:
        indexing_failures_total.labels(kind=kind).inc(count)


def render_metrics() -> Tuple[bytes, str]:
    """Prometheus text exposition of the default registry and its content type"""
    return generate_latest(), CONTENT_TYPE_LATEST


# ============================================
# OPERATION TIMER
# ============================================

@contextmanager
def operation_timer(operation: str):
    """
    Time an operation, observe it in Prometheus and log it when slow.

    Args:
        operation: Name of the operation (e.g., 'csv_ingest', 'feed_sync', 'search')
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000
        operation_duration.labels(operation=operation, status=status).observe(duration)

        if duration_ms > SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"SLOW OPERATION: {operation} took {duration_ms:.2f}ms "
                f"(threshold: {SLOW_OPERATION_THRESHOLD_MS}ms)"
            )
        elif duration_ms > NOTICE_THRESHOLD_MS and status == "success":
            logger.info(f"Operation {operation} took {duration_ms:.2f}ms")


def timed_operation(operation: str):
    """
    Decorator form of operation_timer.

    Usage:
        @timed_operation("feed_sync")
        def sync_from_feed(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with operation_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator


# ============================================
# HEALTH CHECK
# ============================================

@dataclass
class HealthStatus:
    """Primary store health status."""
    healthy: bool
    latency_ms: float
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def check_health(session_factory) -> HealthStatus:
    """
    Probe the store with a trivial query.

    Args:
        session_factory: SQLAlchemy session factory

    Returns:
        HealthStatus; the error is the exception class name only
    """
    start_time = time.perf_counter()
    session = session_factory()
    try:
        session.execute(text("SELECT 1"))
        return HealthStatus(healthy=True, latency_ms=(time.perf_counter() - start_time) * 1000)
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return HealthStatus(
            healthy=False,
            latency_ms=(time.perf_counter() - start_time) * 1000,
            error=type(e).__name__
        )
    finally:
        session.close()
