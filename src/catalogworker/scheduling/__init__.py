"""
Scheduled import jobs.

Components:
- models: job and execution log records, status enums and transitions
- cron: cron validation, APScheduler triggers, next-run computation
- timers: registry of armed cron timers
- store: JobStore protocol and in-memory store
- postgres: PostgreSQL job store
- notifications: run-completion events
- scheduler: job lifecycle, execution and startup recovery
"""

from .cron import build_trigger, next_run_time, validate_cron
from .models import (
    ExecutionLog,
    ExecutionLogPage,
    ExecutionStats,
    ExecutionStatus,
    ImportStatus,
    ScheduledImportJob,
    ScheduleImportRequest,
    UpdateScheduledImportRequest,
)
from .notifications import ImportEvent, LoggingNotifier, Notifier
from .scheduler import ImportScheduler
from .store import InMemoryJobStore, JobStore
from .timers import TimerRegistry

__all__ = [
    "build_trigger",
    "next_run_time",
    "validate_cron",
    "ExecutionLog",
    "ExecutionLogPage",
    "ExecutionStats",
    "ExecutionStatus",
    "ImportStatus",
    "ScheduledImportJob",
    "ScheduleImportRequest",
    "UpdateScheduledImportRequest",
    "ImportEvent",
    "LoggingNotifier",
    "Notifier",
    "ImportScheduler",
    "InMemoryJobStore",
    "JobStore",
    "TimerRegistry",
]
