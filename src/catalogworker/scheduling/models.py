"""Scheduled import jobs, execution logs and request models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportStatus(str, Enum):
    """Lifecycle status of a scheduled import job."""

    PENDING = "pending"
    ACTIVE = "active"
    PROCESSING = "processing"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Status of a single execution."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: Dict[ImportStatus, FrozenSet[ImportStatus]] = {
    ImportStatus.PENDING: frozenset(
        [ImportStatus.ACTIVE, ImportStatus.PAUSED, ImportStatus.CANCELLED]
    ),
    ImportStatus.ACTIVE: frozenset(
        [ImportStatus.PROCESSING, ImportStatus.PAUSED, ImportStatus.CANCELLED]
    ),
    ImportStatus.PROCESSING: frozenset(
        [ImportStatus.ACTIVE, ImportStatus.PAUSED, ImportStatus.CANCELLED]
    ),
    ImportStatus.PAUSED: frozenset([ImportStatus.ACTIVE, ImportStatus.CANCELLED]),
    ImportStatus.CANCELLED: frozenset(),
}


def can_transition(current: ImportStatus, target: ImportStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _validate_http_url(value: str) -> str:
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"csv_url must be an http(s) URL, got {value!r}")
    return value


class ScheduledImportJob(BaseModel):
    """A CSV import bound to a cron expression."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: Optional[str] = None
    description: Optional[str] = None
    cron_expression: str
    csv_url: str
    status: ImportStatus = ImportStatus.PENDING
    is_active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    success_count: int = 0
    error_count: int = 0
    owner_id: int
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_armable(self) -> bool:
        """True when the job should have a live timer."""
        return self.is_active and self.status in (
            ImportStatus.ACTIVE,
            ImportStatus.PROCESSING,
        )


class ExecutionLog(BaseModel):
    """Record of one run of a scheduled import."""

    id: Optional[int] = None
    job_id: str
    owner_id: int
    status: ExecutionStatus = ExecutionStatus.PROCESSING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    items_processed: int = 0
    items_imported: int = 0
    items_failed: int = 0
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    execution_summary: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)


class ExecutionLogPage(BaseModel):
    logs: List[ExecutionLog]
    total: int
    page: int
    total_pages: int


class ExecutionStats(BaseModel):
    """Aggregate statistics over a job's execution history."""

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    total_items_processed: int = 0
    total_items_imported: int = 0
    total_items_failed: int = 0
    last_execution: Optional[ExecutionLog] = None
    average_execution_time: Optional[float] = None  # ms


class ScheduleImportRequest(BaseModel):
    """Request to create a scheduled import."""

    cron_expression: str = Field(min_length=1)
    csv_url: str
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("csv_url")
    @classmethod
    def check_url(cls, value: str) -> str:
        return _validate_http_url(value)


class UpdateScheduledImportRequest(BaseModel):
    """Partial update of a scheduled import. Unset fields are left alone."""

    cron_expression: Optional[str] = None
    csv_url: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("csv_url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_http_url(value)


__all__ = [
    "utcnow",
    "ImportStatus",
    "ExecutionStatus",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "ScheduledImportJob",
    "ExecutionLog",
    "ExecutionLogPage",
    "ExecutionStats",
    "ScheduleImportRequest",
    "UpdateScheduledImportRequest",
]
