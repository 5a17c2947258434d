"""
Timer registry for scheduled imports.

Owns the mapping job id -> armed cron timer. Timers are APScheduler jobs on an
AsyncIOScheduler, so they fire on the running event loop. A job id has at most
one live timer: arming again replaces the previous one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .cron import build_trigger

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str], Awaitable[Any]]


@dataclass
class TimerHandle:
    """An armed timer for one job."""

    job_id: str
    cron_expression: str
    job: Job

    @property
    def next_fire_time(self) -> Optional[datetime]:
        # Not computed until the scheduler has started
        return getattr(self.job, "next_run_time", None)


class TimerRegistry:
    """Armed timers, keyed by scheduled import id."""

    def __init__(
        self,
        scheduler: Optional[AsyncIOScheduler] = None,
        timezone: str = "UTC",
    ):
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._handles: Dict[str, TimerHandle] = {}

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start firing timers. Must be called from inside the event loop."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Timer registry started with {len(self._handles)} timer(s)")

    def shutdown(self) -> None:
        """Disarm everything and stop the scheduler."""
        self.disarm_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Timer registry stopped")

    def arm(
        self, job_id: str, cron_expression: str, callback: TimerCallback
    ) -> TimerHandle:
        """Arm (or re-arm) the cron timer for ``job_id``."""
        trigger = build_trigger(cron_expression, self.timezone)
        self.disarm(job_id)

        job = self.scheduler.add_job(
            callback,
            trigger=trigger,
            args=[job_id],
            id=job_id,
            name=f"Scheduled import {job_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        handle = TimerHandle(job_id=job_id, cron_expression=cron_expression, job=job)
        self._handles[job_id] = handle
        logger.debug(f"Armed timer for import {job_id} ({cron_expression})")
        return handle

    def disarm(self, job_id: str) -> bool:
        """Stop the timer for ``job_id``. Returns False if none was armed."""
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        logger.debug(f"Disarmed timer for import {job_id}")
        return True

    def disarm_all(self) -> None:
        for job_id in list(self._handles):
            self.disarm(job_id)

    def get(self, job_id: str) -> Optional[TimerHandle]:
        return self._handles.get(job_id)

    def is_armed(self, job_id: str) -> bool:
        return job_id in self._handles

    def armed_jobs(self) -> List[str]:
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._handles


__all__ = ["TimerHandle", "TimerRegistry"]
