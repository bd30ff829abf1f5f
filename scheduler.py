#!/usr/bin/env python3
"""
Feed Synchronization Scheduler

Runs the remote feed synchronization immediately on start and then on a
fixed interval (15 hours by default) on an APScheduler background
scheduler. Runs are single-flight: a trigger arriving while a sync is in
progress is skipped.

Usage:
    python scheduler.py [--once] [--reindex] [--interval SECONDS]
"""

import sys
import time
import argparse
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 15 * 60 * 60
FEED_SYNC_JOB_ID = "feed_sync"


class FeedScheduler:
    """Periodic, single-flight driver for a sync callable."""

    def __init__(
        self,
        sync_callable: Callable[[], Any],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    ):
        """
        Args:
            sync_callable: Function running one synchronization
            interval_seconds: Delay between scheduled runs
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.sync_callable = sync_callable
        self.interval_seconds = interval_seconds
        self.last_result: Any = None
        self.last_error: Optional[BaseException] = None
        self._run_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def is_running(self) -> bool:
        """True while a sync is in progress"""
        return self._run_lock.locked()

    @property
    def started(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def run_once(self) -> bool:
        """
        Execute one guarded synchronization.

        Scheduled ticks and manual triggers both come through here.

        Returns:
            False when skipped because another run is in progress, else True
            (also when the run itself failed; the failure is logged)
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Feed sync already in progress, skipping this trigger")
            return False

        try:
            logger.info("Feed sync started")
            self.last_result = self.sync_callable()
            self.last_error = None
            logger.info("Feed sync finished")
        except Exception as e:
            self.last_error = e
            logger.error(f"Feed sync failed: {type(e).__name__}: {e}")
        finally:
            self._run_lock.release()
        return True

    def start(self) -> None:
        """Start the background scheduler (first run happens immediately)."""
        if self.started:
            logger.warning("Scheduler already started")
            return

        self._scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=FEED_SYNC_JOB_ID,
            name="UN feed synchronization",
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Scheduler started (interval={self.interval_seconds}s)")

    def stop(self, wait: bool = True) -> None:
        """Shut the scheduler down, optionally waiting for a running sync."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            self._scheduler = None
        logger.info("Scheduler stopped")

    def next_run_time(self) -> Optional[datetime]:
        if not self.started:
            return None
        job = self._scheduler.get_job(FEED_SYNC_JOB_ID)
        return job.next_run_time if job is not None else None

def build_feed_sync(config=None):
    """Wire store, downloader and indexer into a FeedSynchronizer."""
    from database.connection import init_db
    from downloader import FeedDownloader
    from feed_sync import FeedSynchronizer
    from indexer import Indexer
    from search_index import create_search_index

    config = config or get_config()
    db = init_db(config)
    indexer = Indexer(create_search_index(config))
    indexer.ensure_index()
    return FeedSynchronizer(db, FeedDownloader(config), indexer)


def main():
    parser = argparse.ArgumentParser(description="Synchronize the blocklist with the UN consolidated list")
    parser.add_argument("--once", action="store_true", help="Run a single sync and exit")
    parser.add_argument("--reindex", action="store_true", help="Rebuild the search index from the store and exit")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between syncs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    config = get_config()
    setup_logging(config)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    interval = args.interval or config.data.sync_interval_hours * 3600

    try:
        synchronizer = build_feed_sync(config)
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if args.reindex:
        with synchronizer.db_provider.session_scope() as session:
            totals = synchronizer.indexer.reindex_all(session)
        logger.info(f"Reindexed: {totals}")
        return 0

    scheduler = FeedScheduler(synchronizer.sync_from_feed, interval)

    if args.once:
        scheduler.run_once()
        if scheduler.last_error is not None:
            return 1
        logger.info(f"Result: {scheduler.last_result.to_dict()}")
        return 0

    scheduler.start()
    try:
        while scheduler.started:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        scheduler.stop(wait=True)
        from database.connection import close_db
        close_db()
    return 0


if __name__ == "__main__":
    sys.exit(main())
