"""
Job store.

Persists scheduled import jobs and their execution logs. The scheduler only
talks to the ``JobStore`` protocol; ``InMemoryJobStore`` keeps everything in
process (state is lost on restart) and ``PostgresJobStore`` in
``catalogworker.scheduling.postgres`` survives restarts.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..exceptions import ExecutionAlreadyFinalized
from .models import ExecutionLog, ScheduledImportJob, utcnow

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def create_job(self, job: ScheduledImportJob) -> ScheduledImportJob:
        ...

    async def get_job(self, job_id: str) -> Optional[ScheduledImportJob]:
        ...

    async def list_jobs(
        self, owner_id: Optional[int] = None, active_only: bool = False
    ) -> List[ScheduledImportJob]:
        """Jobs, newest first, optionally filtered by owner and is_active."""
        ...

    async def update_job(self, job_id: str, **changes: Any) -> ScheduledImportJob:
        """Apply ``changes`` and bump updated_at. Raises KeyError if missing."""
        ...

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job and its execution logs."""
        ...

    async def create_execution(self, log: ExecutionLog) -> ExecutionLog:
        """Persist a new execution log and assign its id."""
        ...

    async def finalize_execution(self, execution_id: int, **changes: Any) -> ExecutionLog:
        """Close an execution log.

        Raises:
            ExecutionAlreadyFinalized: if end_time is already set.
        """
        ...

    async def list_executions(
        self, job_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[ExecutionLog], int]:
        """Execution logs newest first, plus the total count."""
        ...


class InMemoryJobStore:
    """Process-local JobStore."""

    def __init__(self):
        self._jobs: Dict[str, ScheduledImportJob] = {}
        self._executions: Dict[int, ExecutionLog] = {}
        self._execution_ids = itertools.count(1)

    async def create_job(self, job: ScheduledImportJob) -> ScheduledImportJob:
        self._jobs[job.id] = job.model_copy()
        return job.model_copy()

    async def get_job(self, job_id: str) -> Optional[ScheduledImportJob]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def list_jobs(
        self, owner_id: Optional[int] = None, active_only: bool = False
    ) -> List[ScheduledImportJob]:
        jobs = [
            job.model_copy()
            for job in self._jobs.values()
            if (owner_id is None or job.owner_id == owner_id)
            and (not active_only or job.is_active)
        ]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def update_job(self, job_id: str, **changes: Any) -> ScheduledImportJob:
        job = self._jobs[job_id]
        changes.setdefault("updated_at", utcnow())
        updated = job.model_copy(update=changes)
        self._jobs[job_id] = updated
        return updated.model_copy()

    async def delete_job(self, job_id: str) -> bool:
        if self._jobs.pop(job_id, None) is None:
            return False
        for execution_id in [
            e.id for e in self._executions.values() if e.job_id == job_id
        ]:
            del self._executions[execution_id]
        return True

    async def create_execution(self, log: ExecutionLog) -> ExecutionLog:
        stored = log.model_copy(update={"id": next(self._execution_ids)})
        self._executions[stored.id] = stored
        return stored.model_copy()

    async def finalize_execution(self, execution_id: int, **changes: Any) -> ExecutionLog:
        log = self._executions[execution_id]
        if log.is_finalized:
            raise ExecutionAlreadyFinalized(
                f"Execution {execution_id} was already finalized"
            )
        changes.setdefault("end_time", utcnow())
        changes.setdefault("updated_at", utcnow())
        finalized = log.model_copy(update=changes)
        self._executions[execution_id] = finalized
        return finalized.model_copy()

    async def list_executions(
        self, job_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[ExecutionLog], int]:
        logs = sorted(
            (e for e in self._executions.values() if e.job_id == job_id),
            key=lambda e: e.id,
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return [e.model_copy() for e in logs[offset:end]], len(logs)


__all__ = ["JobStore", "InMemoryJobStore"]
