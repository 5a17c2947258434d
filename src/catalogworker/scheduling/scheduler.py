"""
Scheduler for cron-driven CSV imports.

Owns the lifecycle of scheduled import jobs:
1. schedule/update/pause/resume/cancel/delete, scoped to the owning user
2. arm and disarm the job's cron timer in the TimerRegistry
3. execute a run when the timer fires and record it in an ExecutionLog
4. re-arm every active job on startup

A failed run never pauses its schedule; it only bumps error_count.
"""

from __future__ import annotations

import logging
import math
import traceback
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Set

from ..config import ImportConfig
from ..exceptions import InvalidCronExpression, InvalidJobTransition, JobNotFoundError
from ..importer.executor import ImportResult
from .cron import next_run_time, validate_cron
from .models import (
    ExecutionLog,
    ExecutionLogPage,
    ExecutionStats,
    ExecutionStatus,
    ImportStatus,
    ScheduledImportJob,
    ScheduleImportRequest,
    UpdateScheduledImportRequest,
    can_transition,
    utcnow,
)
from .notifications import (
    IMPORT_COMPLETED,
    IMPORT_FAILED,
    ImportEvent,
    LoggingNotifier,
    Notifier,
)
from .store import JobStore
from .timers import TimerRegistry

logger = logging.getLogger(__name__)


class CsvImporter(Protocol):
    async def import_from_csv(self, csv_url: str, owner_id: int) -> ImportResult:
        ...


class ImportScheduler:
    """Lifecycle manager and executor for scheduled CSV imports."""

    def __init__(
        self,
        store: JobStore,
        importer: CsvImporter,
        timers: Optional[TimerRegistry] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[ImportConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.importer = importer
        self.timers = timers if timers is not None else TimerRegistry()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.config = config if config is not None else ImportConfig()
        self._clock = clock
        # Jobs with an execution in flight in this process
        self._running: Set[str] = set()

    @property
    def timezone(self) -> str:
        return self.timers.timezone

    # =========================================================================
    # Service lifecycle
    # =========================================================================

    async def start(self) -> int:
        """Re-arm every active job and start the timers.

        Returns:
            Number of restored jobs.
        """
        restored = 0
        for job in await self.store.list_jobs(active_only=True):
            if job.status == ImportStatus.CANCELLED:
                logger.warning(f"Skipping cancelled import {job.id} marked active")
                continue
            try:
                await self._arm(job)
                restored += 1
            except InvalidCronExpression as e:
                logger.error(f"Failed to restore scheduled import {job.id}: {e}")

        self.timers.start()
        logger.info(f"Restored {restored} scheduled import jobs")
        return restored

    async def stop(self) -> None:
        """Stop all timers. In-flight runs are left to finish."""
        logger.info("Import scheduler stopping, disarming all timers")
        self.timers.shutdown()

    # =========================================================================
    # Job control
    # =========================================================================

    async def schedule(
        self, request: ScheduleImportRequest, owner_id: int
    ) -> ScheduledImportJob:
        """Create a scheduled import and arm its timer.

        Raises:
            InvalidCronExpression: if the cron expression is malformed.
        """
        validate_cron(request.cron_expression)

        job = ScheduledImportJob(
            name=request.name,
            description=request.description,
            cron_expression=request.cron_expression,
            csv_url=request.csv_url,
            status=ImportStatus.PENDING,
            is_active=True,
            next_run=self._next_run(request.cron_expression),
            owner_id=owner_id,
        )
        job = await self.store.create_job(job)
        job = await self._arm(job)

        logger.info(
            f"Scheduled import job {job.id} with cron: {job.cron_expression}, "
            f"next run at {job.next_run}"
        )
        return job

    async def update(
        self,
        job_id: str,
        request: UpdateScheduledImportRequest,
        owner_id: int,
    ) -> ScheduledImportJob:
        """Apply a partial update.

        Raises:
            JobNotFoundError: if the job is missing or owned by someone else.
            InvalidCronExpression: if a new cron expression is malformed.
        """
        job = await self._get_owned(job_id, owner_id)
        if job is None:
            raise JobNotFoundError(job_id)

        changes = request.model_dump(exclude_unset=True)
        for required in ("cron_expression", "csv_url"):
            if changes.get(required, "") is None:
                del changes[required]

        new_cron = changes.get("cron_expression")
        if new_cron is not None:
            validate_cron(new_cron)
            if new_cron != job.cron_expression:
                changes["next_run"] = self._next_run(new_cron, job.last_run)

        if changes:
            job = await self.store.update_job(job_id, **changes)

        self.timers.disarm(job_id)
        if job.is_armable:
            job = await self._arm(job)

        logger.info(f"Updated scheduled import job {job_id}")
        return job

    async def pause(self, job_id: str, owner_id: int) -> bool:
        """Stop the timer and mark the job paused. False if not found."""
        job = await self._get_owned(job_id, owner_id)
        if job is None:
            return False

        if job.status == ImportStatus.PAUSED:
            return True
        self._check_transition(job, ImportStatus.PAUSED)

        self.timers.disarm(job_id)
        await self.store.update_job(job_id, status=ImportStatus.PAUSED, is_active=False)
        logger.info(f"Paused import job {job_id}")
        return True

    async def resume(self, job_id: str, owner_id: int) -> bool:
        """Re-arm a paused job; its next run is computed from now. False if not found.

        Raises:
            InvalidJobTransition: if the job was cancelled.
        """
        job = await self._get_owned(job_id, owner_id)
        if job is None:
            return False

        if job.is_armable and self.timers.is_armed(job_id):
            return True
        if job.status != ImportStatus.PROCESSING:
            self._check_transition(job, ImportStatus.ACTIVE)

        job = await self.store.update_job(job_id, is_active=True)
        await self._arm(job)
        logger.info(f"Resumed import job {job_id}")
        return True

    async def cancel(self, job_id: str, owner_id: int) -> bool:
        """Stop the job for good. False if not found."""
        job = await self._get_owned(job_id, owner_id)
        if job is None:
            return False

        if job.status == ImportStatus.CANCELLED:
            return True
        self._check_transition(job, ImportStatus.CANCELLED)

        self.timers.disarm(job_id)
        await self.store.update_job(
            job_id, status=ImportStatus.CANCELLED, is_active=False
        )
        logger.info(f"Cancelled import job {job_id}")
        return True

    async def delete(self, job_id: str, owner_id: int) -> bool:
        """Delete the job and its execution history. False if not found."""
        job = await self._get_owned(job_id, owner_id)
        if job is None:
            return False

        self.timers.disarm(job_id)
        if job_id in self._running:
            logger.warning(
                f"Deleting import job {job_id} while it runs; "
                "its current execution will not be recorded"
            )
        await self.store.delete_job(job_id)
        logger.info(f"Deleted import job {job_id}")
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_job(self, job_id: str, owner_id: int) -> Optional[ScheduledImportJob]:
        return await self._get_owned(job_id, owner_id)

    async def list_jobs(self, owner_id: int) -> List[ScheduledImportJob]:
        return await self.store.list_jobs(owner_id=owner_id)

    async def get_execution_logs(
        self,
        job_id: str,
        owner_id: int,
        page: int = 1,
        limit: int = 20,
    ) -> ExecutionLogPage:
        """Paginated execution history, newest first."""
        if await self._get_owned(job_id, owner_id) is None:
            raise JobNotFoundError(job_id)

        page = max(page, 1)
        limit = max(limit, 1)
        logs, total = await self.store.list_executions(
            job_id, offset=(page - 1) * limit, limit=limit
        )
        return ExecutionLogPage(
            logs=logs,
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    async def get_execution_stats(self, job_id: str, owner_id: int) -> ExecutionStats:
        """Aggregate counts and timing over the whole execution history."""
        if await self._get_owned(job_id, owner_id) is None:
            raise JobNotFoundError(job_id)

        logs, total = await self.store.list_executions(job_id)
        durations = [log.duration_ms for log in logs if log.duration_ms is not None]

        return ExecutionStats(
            total_executions=total,
            successful_executions=sum(
                1 for log in logs if log.status == ExecutionStatus.COMPLETED
            ),
            failed_executions=sum(
                1 for log in logs if log.status == ExecutionStatus.FAILED
            ),
            total_items_processed=sum(log.items_processed for log in logs),
            total_items_imported=sum(log.items_imported for log in logs),
            total_items_failed=sum(log.items_failed for log in logs),
            last_execution=logs[0] if logs else None,
            average_execution_time=(
                sum(durations) / len(durations) if durations else None
            ),
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, job_id: str) -> Optional[ExecutionLog]:
        """Run one import for ``job_id`` (timer callback).

        Returns:
            The finalized ExecutionLog, or None if the run was skipped.
        """
        if job_id in self._running:
            logger.warning(f"Import job {job_id} is still running, skipping this run")
            return None

        self._running.add(job_id)
        try:
            return await self._execute(job_id)
        finally:
            self._running.discard(job_id)

    async def _execute(self, job_id: str) -> Optional[ExecutionLog]:
        job = await self.store.get_job(job_id)
        if job is None:
            logger.error(f"Scheduled import {job_id} not found")
            return None
        if not job.is_active:
            logger.warning(f"Scheduled import {job_id} is not active, skipping execution")
            return None
        if job.status == ImportStatus.PROCESSING:
            # No run is in flight in this process, so the status is left over
            # from a run whose bookkeeping failed
            logger.warning(f"Scheduled import {job_id} has a stale processing status, running anyway")

        started = self._clock()
        execution = await self.store.create_execution(
            ExecutionLog(job_id=job.id, owner_id=job.owner_id, start_time=started)
        )
        await self.store.update_job(
            job_id, status=ImportStatus.PROCESSING, last_run=started
        )
        logger.info(f"Executing import job {job_id} (execution {execution.id})")

        try:
            result = await self.importer.import_from_csv(job.csv_url, job.owner_id)
        except Exception as e:
            logger.exception(f"Import job {job_id} failed: {e}")
            finished = self._clock()
            changes = {
                "status": ExecutionStatus.FAILED,
                "end_time": finished,
                "error_message": str(e),
                "error_details": {
                    "name": type(e).__name__,
                    "message": str(e),
                    "stack": traceback.format_exc(),
                },
                "execution_summary": {"success": False, "error": str(e)},
            }
            event = ImportEvent(
                kind=IMPORT_FAILED,
                owner_id=job.owner_id,
                job_id=job_id,
                csv_url=job.csv_url,
                payload={
                    "error": str(e),
                    "execution_time": _elapsed_ms(started, finished),
                },
            )
            counter = "error_count"
        else:
            changes = {
                "status": ExecutionStatus.COMPLETED,
                "end_time": self._clock(),
                "items_processed": result.total_processed,
                "items_imported": result.imported,
                "items_failed": len(result.errors),
                "execution_summary": self._summary(result),
            }
            event = ImportEvent(
                kind=IMPORT_COMPLETED,
                owner_id=job.owner_id,
                job_id=job_id,
                csv_url=job.csv_url,
                payload={
                    "imported": result.imported,
                    "errors": result.error_messages(
                        self.config.notification_error_sample
                    ),
                    "total_errors": len(result.errors),
                    "total_processed": result.total_processed,
                    "success_rate": result.success_rate,
                    "execution_time": result.execution_time,
                },
            )
            counter = "success_count"
            logger.info(
                f"Import job {job_id} completed in {result.execution_time}ms. "
                f"Processed: {result.total_processed}, Imported: {result.imported}, "
                f"Errors: {len(result.errors)}"
            )

        if await self.store.get_job(job_id) is None:
            logger.warning(f"Import job {job_id} was deleted during execution {execution.id}")
            return None

        try:
            execution = await self.store.finalize_execution(execution.id, **changes)
            await self._finish_run(job_id, counter, started)
        except Exception:
            logger.exception(f"Failed to record execution {execution.id} of import job {job_id}")
            await self._release(job_id)
            raise
        await self._publish(event)
        return execution

    def _summary(self, result: ImportResult) -> dict:
        return {
            "imported": result.imported,
            "total_processed": result.total_processed,
            # Bounded so a huge broken CSV does not bloat the log record
            "errors": result.error_messages(self.config.error_sample_size),
            "error_count": len(result.errors),
            "execution_time": result.execution_time,
            "success_rate": result.success_rate,
            "success": True,
        }

    async def _finish_run(self, job_id: str, counter: str, started: datetime) -> None:
        """Bump the run counter, return to active and schedule the next run."""
        job = await self.store.get_job(job_id)
        if job is None:
            return

        changes: dict[str, Any] = {counter: getattr(job, counter) + 1}
        # A pause/cancel issued mid-run wins over the automatic return to active
        if job.status == ImportStatus.PROCESSING:
            changes["status"] = ImportStatus.ACTIVE
        if job.is_active:
            changes["next_run"] = self._next_run(job.cron_expression, started)
        await self.store.update_job(job_id, **changes)

    async def _release(self, job_id: str) -> None:
        """Return a job left in processing to active after failed bookkeeping."""
        try:
            job = await self.store.get_job(job_id)
            if job is not None and job.status == ImportStatus.PROCESSING:
                await self.store.update_job(job_id, status=ImportStatus.ACTIVE)
        except Exception as e:
            logger.error(f"Could not reset status of import job {job_id}: {e}")

    async def _publish(self, event: ImportEvent) -> None:
        try:
            await self.notifier.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event.kind} for import {event.job_id}: {e}")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_owned(self, job_id: str, owner_id: int) -> Optional[ScheduledImportJob]:
        job = await self.store.get_job(job_id)
        if job is None or job.owner_id != owner_id:
            return None
        return job

    async def _arm(self, job: ScheduledImportJob) -> ScheduledImportJob:
        self.timers.arm(job.id, job.cron_expression, self.execute)

        changes: dict[str, Any] = {
            "next_run": self._next_run(job.cron_expression, job.last_run)
        }
        if job.status != ImportStatus.ACTIVE:
            self._check_transition(job, ImportStatus.ACTIVE)
            # A run still in flight returns the job to active when it finishes
            changes["status"] = (
                ImportStatus.PROCESSING if job.id in self._running else ImportStatus.ACTIVE
            )
        return await self.store.update_job(job.id, **changes)

    def _next_run(self, cron_expression: str, last_run: Optional[datetime] = None) -> datetime:
        after = self._clock()
        if last_run is not None and last_run > after:
            after = last_run
        return next_run_time(cron_expression, after, self.timezone)

    @staticmethod
    def _check_transition(job: ScheduledImportJob, target: ImportStatus) -> None:
        if not can_transition(job.status, target):
            raise InvalidJobTransition(
                f"Scheduled import {job.id} cannot move from "
                f"{job.status.value} to {target.value}"
            )


def _elapsed_ms(started: datetime, finished: datetime) -> int:
    return int((finished - started).total_seconds() * 1000)


__all__ = ["ImportScheduler", "CsvImporter"]
