"""
Tests for the periodic feed sync scheduler
"""

import threading

import pytest

from scheduler import FEED_SYNC_JOB_ID, FeedScheduler


class TestFeedScheduler:

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            FeedScheduler(lambda: None, interval_seconds=0)

    def test_run_once_stores_result(self):
        scheduler = FeedScheduler(lambda: 'done', interval_seconds=60)
        assert scheduler.run_once() is True
        assert scheduler.last_result == 'done'
        assert scheduler.last_error is None
        assert not scheduler.is_running

    def test_failure_is_logged_not_raised(self, caplog):
        def failing():
            raise RuntimeError("feed unreachable")

        scheduler = FeedScheduler(failing, interval_seconds=60)
        assert scheduler.run_once() is True
        assert isinstance(scheduler.last_error, RuntimeError)
        assert "feed unreachable" in caplog.text

    def test_overlapping_trigger_is_skipped(self):
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def blocking():
            calls.append(1)
            entered.set()
            release.wait(5)

        scheduler = FeedScheduler(blocking, interval_seconds=60)
        worker = threading.Thread(target=scheduler.run_once)
        worker.start()
        assert entered.wait(5)

        assert scheduler.is_running
        assert scheduler.run_once() is False

        release.set()
        worker.join(5)
        assert len(calls) == 1
        assert not scheduler.is_running

    def test_start_runs_immediately_and_stops(self):
        ran = threading.Event()
        scheduler = FeedScheduler(ran.set, interval_seconds=3600)

        scheduler.start()
        try:
            assert ran.wait(5)
            assert scheduler.started
        finally:
            scheduler.stop()
        assert not scheduler.started
        assert scheduler.next_run_time() is None

    def test_job_is_single_instance_and_coalesced(self):
        release = threading.Event()
        scheduler = FeedScheduler(lambda: release.wait(5), interval_seconds=3600)

        scheduler.start()
        try:
            job = scheduler._scheduler.get_job(FEED_SYNC_JOB_ID)
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.trigger.interval.total_seconds() == 3600
        finally:
            release.set()
            scheduler.stop()

    def test_start_twice_keeps_one_scheduler(self):
        scheduler = FeedScheduler(lambda: None, interval_seconds=3600)
        scheduler.start()
        try:
            first = scheduler._scheduler
            scheduler.start()
            assert scheduler._scheduler is first
        finally:
            scheduler.stop()

    def test_error_clears_after_success(self):
        outcomes = [RuntimeError("first"), 'ok']

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        scheduler = FeedScheduler(flaky, interval_seconds=60)
        scheduler.run_once()
        assert scheduler.last_error is not None
        scheduler.run_once()
        assert scheduler.last_error is None
        assert scheduler.last_result == 'ok'
