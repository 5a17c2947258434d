"""
Tests for ImportScheduler: job lifecycle, execution and recovery.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from catalogworker.exceptions import (
    DownloadError,
    InvalidCronExpression,
    InvalidJobTransition,
    JobNotFoundError,
)
from catalogworker.importer.catalog import InMemoryCatalogStore
from catalogworker.importer.executor import ImportResult, RowError
from catalogworker.importer.fetcher import CsvFetcher
from catalogworker.importer.orchestrator import ImportOrchestrator
from catalogworker.scheduling.cron import next_run_time
from catalogworker.scheduling.models import (
    ExecutionStatus,
    ImportStatus,
    ScheduledImportJob,
    ScheduleImportRequest,
    UpdateScheduledImportRequest,
)
from catalogworker.scheduling.notifications import IMPORT_COMPLETED, IMPORT_FAILED
from catalogworker.scheduling.scheduler import ImportScheduler
from catalogworker.scheduling.store import InMemoryJobStore
from catalogworker.scheduling.timers import TimerRegistry

OWNER = 1
HOURLY = "0 * * * *"
CSV_URL = "https://files.example.com/products.csv"


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class BlockingImporter:
    """Importer whose run stays in flight until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def import_from_csv(self, csv_url, owner_id):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return ImportResult(imported=1, total_processed=1)


class FlakyStore(InMemoryJobStore):
    """Store that fails once when a run counter is written."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def update_job(self, job_id, **changes):
        if "success_count" in changes and self.failures:
            self.failures -= 1
            raise ConnectionError("database went away")
        return await super().update_job(job_id, **changes)


def make_result():
    return ImportResult(
        imported=2,
        total_processed=3,
        errors=[RowError(row=3, identifier="Row 3", message="Failed to import product 'Row 3': boom")],
        execution_time=15,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def importer():
    importer = AsyncMock()
    importer.import_from_csv.return_value = make_result()
    return importer


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def scheduler(store, importer, notifier, clock):
    return ImportScheduler(
        store=store,
        importer=importer,
        timers=TimerRegistry(),
        notifier=notifier,
        clock=clock,
    )


def request(cron=HOURLY, url=CSV_URL):
    return ScheduleImportRequest(cron_expression=cron, csv_url=url, name="Hourly products")


class TestSchedule:
    """Test creating scheduled imports."""

    @pytest.mark.asyncio
    async def test_schedule_arms_and_activates(self, scheduler, store, clock):
        job = await scheduler.schedule(request(), OWNER)

        assert job.status == ImportStatus.ACTIVE
        assert job.is_active
        assert job.next_run == clock.now + timedelta(hours=1)
        assert scheduler.timers.is_armed(job.id)
        assert (await store.get_job(job.id)).status == ImportStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_empty_timer_registry_is_kept(self, store, importer, clock):
        """A fresh registry with a custom timezone is used, not replaced."""
        timers = TimerRegistry(timezone="Europe/Berlin")
        scheduler = ImportScheduler(store, importer, timers=timers, clock=clock)

        job = await scheduler.schedule(request(cron="0 0 * * *"), OWNER)

        assert scheduler.timers is timers
        assert scheduler.timezone == "Europe/Berlin"
        assert timers.is_armed(job.id)
        assert job.next_run == datetime(2024, 1, 1, 23, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_invalid_cron_is_rejected(self, scheduler, store):
        with pytest.raises(InvalidCronExpression):
            await scheduler.schedule(request(cron="every hour"), OWNER)

        assert await store.list_jobs() == []
        assert len(scheduler.timers) == 0

    def test_non_http_url_is_rejected(self):
        with pytest.raises(ValueError):
            request(url="ftp://files.example.com/p.csv")


class TestLifecycle:
    """Test pause/resume/cancel/delete/update."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, scheduler, clock):
        job = await scheduler.schedule(request(), OWNER)

        assert await scheduler.pause(job.id, OWNER) is True
        paused = await scheduler.get_job(job.id, OWNER)
        assert paused.status == ImportStatus.PAUSED
        assert not paused.is_active
        assert not scheduler.timers.is_armed(job.id)

        # Pausing again is a no-op
        assert await scheduler.pause(job.id, OWNER) is True

        clock.advance(hours=3, minutes=20)
        assert await scheduler.resume(job.id, OWNER) is True

        resumed = await scheduler.get_job(job.id, OWNER)
        assert resumed.status == ImportStatus.ACTIVE
        assert resumed.is_active
        assert resumed.next_run == datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
        assert scheduler.timers.is_armed(job.id)

    @pytest.mark.asyncio
    async def test_resume_active_job_is_noop(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        assert await scheduler.resume(job.id, OWNER) is True
        assert (await scheduler.get_job(job.id, OWNER)).status == ImportStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancel_is_terminal(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        assert await scheduler.cancel(job.id, OWNER) is True
        assert await scheduler.cancel(job.id, OWNER) is True

        cancelled = await scheduler.get_job(job.id, OWNER)
        assert cancelled.status == ImportStatus.CANCELLED
        assert not cancelled.is_active
        assert not scheduler.timers.is_armed(job.id)

        with pytest.raises(InvalidJobTransition):
            await scheduler.resume(job.id, OWNER)
        with pytest.raises(InvalidJobTransition):
            await scheduler.pause(job.id, OWNER)

    @pytest.mark.asyncio
    async def test_delete_removes_job_and_history(self, scheduler, store):
        job = await scheduler.schedule(request(), OWNER)
        await scheduler.execute(job.id)

        assert await scheduler.delete(job.id, OWNER) is True

        assert await store.get_job(job.id) is None
        assert (await store.list_executions(job.id))[1] == 0
        assert not scheduler.timers.is_armed(job.id)
        assert await scheduler.delete(job.id, OWNER) is False

    @pytest.mark.asyncio
    async def test_delete_cancelled_job(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)
        await scheduler.cancel(job.id, OWNER)

        assert await scheduler.delete(job.id, OWNER) is True

    @pytest.mark.asyncio
    async def test_other_owner_cannot_touch_job(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        assert await scheduler.pause(job.id, 2) is False
        assert await scheduler.resume(job.id, 2) is False
        assert await scheduler.cancel(job.id, 2) is False
        assert await scheduler.delete(job.id, 2) is False
        assert await scheduler.get_job(job.id, 2) is None
        assert await scheduler.list_jobs(2) == []
        with pytest.raises(JobNotFoundError):
            await scheduler.update(job.id, UpdateScheduledImportRequest(name="x"), 2)
        with pytest.raises(JobNotFoundError):
            await scheduler.get_execution_logs(job.id, 2)

    @pytest.mark.asyncio
    async def test_missing_job(self, scheduler):
        assert await scheduler.pause("missing", OWNER) is False
        with pytest.raises(JobNotFoundError, match="Scheduled import with ID missing not found"):
            await scheduler.get_execution_stats("missing", OWNER)

    @pytest.mark.asyncio
    async def test_update_cron_recomputes_next_run(self, scheduler, clock):
        job = await scheduler.schedule(request(), OWNER)

        updated = await scheduler.update(
            job.id, UpdateScheduledImportRequest(cron_expression="30 * * * *"), OWNER
        )

        assert updated.cron_expression == "30 * * * *"
        assert updated.next_run == clock.now + timedelta(minutes=30)
        assert scheduler.timers.get(job.id).cron_expression == "30 * * * *"

    @pytest.mark.asyncio
    async def test_update_keeps_unset_fields(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        updated = await scheduler.update(
            job.id, UpdateScheduledImportRequest(description="Nightly feed"), OWNER
        )

        assert updated.description == "Nightly feed"
        assert updated.name == "Hourly products"
        assert updated.csv_url == CSV_URL

    @pytest.mark.asyncio
    async def test_update_paused_job_stays_disarmed(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)
        await scheduler.pause(job.id, OWNER)

        updated = await scheduler.update(
            job.id, UpdateScheduledImportRequest(cron_expression="*/10 * * * *"), OWNER
        )

        assert updated.status == ImportStatus.PAUSED
        assert not scheduler.timers.is_armed(job.id)

    @pytest.mark.asyncio
    async def test_update_invalid_cron(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        with pytest.raises(InvalidCronExpression):
            await scheduler.update(
                job.id, UpdateScheduledImportRequest(cron_expression="* *"), OWNER
            )

        assert (await scheduler.get_job(job.id, OWNER)).cron_expression == HOURLY


class TestExecute:
    """Test running a scheduled import."""

    @pytest.mark.asyncio
    async def test_successful_run(self, scheduler, importer, notifier, clock):
        job = await scheduler.schedule(request(), OWNER)
        started = clock.now

        log = await scheduler.execute(job.id)

        importer.import_from_csv.assert_awaited_once_with(CSV_URL, OWNER)
        assert log.status == ExecutionStatus.COMPLETED
        assert (log.items_processed, log.items_imported, log.items_failed) == (3, 2, 1)
        assert log.error_details is None
        assert log.execution_summary == {
            "imported": 2,
            "total_processed": 3,
            "errors": ["Failed to import product 'Row 3': boom"],
            "error_count": 1,
            "execution_time": 15,
            "success_rate": 66.67,
            "success": True,
        }

        after = await scheduler.get_job(job.id, OWNER)
        assert after.status == ImportStatus.ACTIVE
        assert after.success_count == 1
        assert after.error_count == 0
        assert after.last_run == started
        assert after.next_run > started

        event = notifier.publish.await_args.args[0]
        assert event.kind == IMPORT_COMPLETED
        assert event.owner_id == OWNER
        assert event.payload["imported"] == 2
        assert event.payload["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_failed_run_keeps_schedule(self, scheduler, importer, notifier):
        importer.import_from_csv.side_effect = DownloadError(
            "Failed to download CSV: HTTP 404", status_code=404
        )
        job = await scheduler.schedule(request(), OWNER)

        log = await scheduler.execute(job.id)

        assert log.status == ExecutionStatus.FAILED
        assert log.error_message == "Failed to download CSV: HTTP 404"
        assert log.error_details["name"] == "DownloadError"
        assert "DownloadError" in log.error_details["stack"]
        assert log.execution_summary == {
            "success": False,
            "error": "Failed to download CSV: HTTP 404",
        }

        after = await scheduler.get_job(job.id, OWNER)
        assert after.status == ImportStatus.ACTIVE
        assert after.is_active
        assert after.error_count == 1
        assert after.success_count == 0
        assert scheduler.timers.is_armed(job.id)
        assert notifier.publish.await_args.args[0].kind == IMPORT_FAILED

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_change_outcome(self, scheduler, notifier):
        notifier.publish.side_effect = RuntimeError("mail server down")
        job = await scheduler.schedule(request(), OWNER)

        log = await scheduler.execute(job.id)

        assert log.status == ExecutionStatus.COMPLETED
        assert (await scheduler.get_job(job.id, OWNER)).success_count == 1

    @pytest.mark.asyncio
    async def test_inactive_job_is_skipped(self, scheduler, importer):
        job = await scheduler.schedule(request(), OWNER)
        await scheduler.pause(job.id, OWNER)

        assert await scheduler.execute(job.id) is None
        assert await scheduler.execute("missing") is None
        importer.import_from_csv.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, store, clock):
        importer = BlockingImporter()
        scheduler = ImportScheduler(store, importer, timers=TimerRegistry(), clock=clock)
        job = await scheduler.schedule(request(), OWNER)

        first = asyncio.create_task(scheduler.execute(job.id))
        await importer.started.wait()

        assert (await scheduler.get_job(job.id, OWNER)).status == ImportStatus.PROCESSING
        assert await scheduler.execute(job.id) is None

        importer.release.set()
        log = await first

        assert log.status == ExecutionStatus.COMPLETED
        assert importer.calls == 1
        assert (await scheduler.get_job(job.id, OWNER)).status == ImportStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_pause_during_run_is_preserved(self, store, clock):
        importer = BlockingImporter()
        scheduler = ImportScheduler(store, importer, timers=TimerRegistry(), clock=clock)
        job = await scheduler.schedule(request(), OWNER)

        first = asyncio.create_task(scheduler.execute(job.id))
        await importer.started.wait()
        await scheduler.pause(job.id, OWNER)
        importer.release.set()
        await first

        after = await scheduler.get_job(job.id, OWNER)
        assert after.status == ImportStatus.PAUSED
        assert not after.is_active
        assert after.success_count == 1
        assert not scheduler.timers.is_armed(job.id)

    @pytest.mark.asyncio
    async def test_resume_during_run_returns_to_active(self, store, clock):
        importer = BlockingImporter()
        scheduler = ImportScheduler(store, importer, timers=TimerRegistry(), clock=clock)
        job = await scheduler.schedule(request(), OWNER)

        first = asyncio.create_task(scheduler.execute(job.id))
        await importer.started.wait()
        await scheduler.pause(job.id, OWNER)
        assert await scheduler.resume(job.id, OWNER)

        during = await scheduler.get_job(job.id, OWNER)
        assert during.status == ImportStatus.PROCESSING
        assert during.is_active

        importer.release.set()
        log = await first

        after = await scheduler.get_job(job.id, OWNER)
        assert log.status == ExecutionStatus.COMPLETED
        assert after.status == ImportStatus.ACTIVE
        assert after.is_active
        assert after.success_count == 1
        assert scheduler.timers.is_armed(job.id)

    @pytest.mark.asyncio
    async def test_store_error_does_not_wedge_job(self, importer, clock):
        """A failed bookkeeping write leaves the job runnable."""
        store = FlakyStore()
        scheduler = ImportScheduler(store, importer, timers=TimerRegistry(), clock=clock)
        job = await scheduler.schedule(request(), OWNER)

        with pytest.raises(ConnectionError):
            await scheduler.execute(job.id)

        assert (await store.get_job(job.id)).status == ImportStatus.ACTIVE

        log = await scheduler.execute(job.id)

        assert log.status == ExecutionStatus.COMPLETED
        assert importer.import_from_csv.await_count == 2
        assert (await store.get_job(job.id)).success_count == 1

    @pytest.mark.asyncio
    async def test_stale_processing_status_still_runs(self, scheduler, store, importer):
        job = await store.create_job(
            ScheduledImportJob(
                cron_expression=HOURLY,
                csv_url=CSV_URL,
                owner_id=OWNER,
                status=ImportStatus.PROCESSING,
            )
        )

        log = await scheduler.execute(job.id)

        assert log.status == ExecutionStatus.COMPLETED
        importer.import_from_csv.assert_awaited_once()
        assert (await store.get_job(job.id)).status == ImportStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_end_to_end_csv_import(self, store, clock):
        csv_text = "name,sku,category,Color\nWidget,W-1,Gadgets,Red\nGizmo,G-1,Gadgets,Blue\n"
        catalog = InMemoryCatalogStore()
        fetcher = CsvFetcher(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text=csv_text))
        )
        scheduler = ImportScheduler(
            store,
            ImportOrchestrator(catalog, fetcher=fetcher),
            timers=TimerRegistry(),
            clock=clock,
        )
        job = await scheduler.schedule(request(), OWNER)

        log = await scheduler.execute(job.id)

        assert log.status == ExecutionStatus.COMPLETED
        assert (log.items_processed, log.items_imported, log.items_failed) == (2, 2, 0)
        assert list(catalog.categories) == [(OWNER, "Gadgets")]
        assert catalog.attributes[(OWNER, "Color")].type == "STRING"
        assert len(catalog.products) == 2


class TestHistory:
    """Test execution log pagination and statistics."""

    @pytest.mark.asyncio
    async def test_execution_logs_paginated(self, scheduler, clock):
        job = await scheduler.schedule(request(), OWNER)
        ids = []
        for _ in range(3):
            ids.append((await scheduler.execute(job.id)).id)
            clock.advance(hours=1)

        first = await scheduler.get_execution_logs(job.id, OWNER, page=1, limit=2)
        second = await scheduler.get_execution_logs(job.id, OWNER, page=2, limit=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert [log.id for log in first.logs] == [ids[2], ids[1]]
        assert [log.id for log in second.logs] == [ids[0]]
        assert second.page == 2

    @pytest.mark.asyncio
    async def test_execution_stats(self, scheduler, importer):
        importer.import_from_csv.side_effect = [
            make_result(),
            DownloadError("Failed to download CSV: HTTP 500", status_code=500),
            make_result(),
        ]
        job = await scheduler.schedule(request(), OWNER)
        for _ in range(3):
            await scheduler.execute(job.id)

        stats = await scheduler.get_execution_stats(job.id, OWNER)

        assert stats.total_executions == 3
        assert stats.successful_executions == 2
        assert stats.failed_executions == 1
        assert stats.total_items_processed == 6
        assert stats.total_items_imported == 4
        assert stats.total_items_failed == 2
        assert stats.last_execution.status == ExecutionStatus.COMPLETED
        assert stats.average_execution_time == 0.0

        counters = await scheduler.get_job(job.id, OWNER)
        assert (counters.success_count, counters.error_count) == (2, 1)

    @pytest.mark.asyncio
    async def test_stats_without_history(self, scheduler):
        job = await scheduler.schedule(request(), OWNER)

        stats = await scheduler.get_execution_stats(job.id, OWNER)

        assert stats.total_executions == 0
        assert stats.last_execution is None
        assert stats.average_execution_time is None


class TestRecovery:
    """Test startup recovery."""

    @pytest.mark.asyncio
    async def test_start_rearms_active_jobs(self, scheduler, store, clock):
        stale = await store.create_job(
            ScheduledImportJob(
                cron_expression=HOURLY,
                csv_url=CSV_URL,
                owner_id=OWNER,
                status=ImportStatus.PROCESSING,
            )
        )
        paused = await store.create_job(
            ScheduledImportJob(
                cron_expression=HOURLY,
                csv_url=CSV_URL,
                owner_id=OWNER,
                status=ImportStatus.PAUSED,
                is_active=False,
            )
        )
        await store.create_job(
            ScheduledImportJob(
                cron_expression="not a cron",
                csv_url=CSV_URL,
                owner_id=OWNER,
                status=ImportStatus.ACTIVE,
            )
        )

        try:
            restored = await scheduler.start()

            assert restored == 1
            assert scheduler.timers.running
            assert scheduler.timers.armed_jobs() == [stale.id]

            recovered = await store.get_job(stale.id)
            assert recovered.status == ImportStatus.ACTIVE
            assert recovered.next_run == clock.now + timedelta(hours=1)
            assert (await store.get_job(paused.id)).status == ImportStatus.PAUSED
        finally:
            await scheduler.stop()

        assert len(scheduler.timers) == 0

    @pytest.mark.asyncio
    async def test_next_run_after_recent_run(self, scheduler, store, clock):
        """next_run is strictly after the last run even if the clock lags."""
        last_run = clock.now + timedelta(minutes=30)
        job = await store.create_job(
            ScheduledImportJob(
                cron_expression=HOURLY,
                csv_url=CSV_URL,
                owner_id=OWNER,
                status=ImportStatus.ACTIVE,
                last_run=last_run,
            )
        )

        try:
            await scheduler.start()
        finally:
            await scheduler.stop()

        recovered = await store.get_job(job.id)
        assert recovered.next_run == next_run_time(HOURLY, last_run)
