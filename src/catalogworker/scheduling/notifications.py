"""
Run-completion events.

The scheduler publishes one ImportEvent after each execution is finalized.
Delivery belongs to an external notification subsystem; ``LoggingNotifier``
is the default sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from .models import utcnow

logger = logging.getLogger(__name__)

IMPORT_COMPLETED = "import.completed"
IMPORT_FAILED = "import.failed"


@dataclass
class ImportEvent:
    kind: str
    owner_id: int
    job_id: Optional[str]
    csv_url: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "owner_id": self.owner_id,
            "job_id": self.job_id,
            "csv_url": self.csv_url,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class Notifier(Protocol):
    async def publish(self, event: ImportEvent) -> None:
        ...


class LoggingNotifier:
    """Writes events to the log instead of delivering them."""

    async def publish(self, event: ImportEvent) -> None:
        level = logging.WARNING if event.kind == IMPORT_FAILED else logging.INFO
        logger.log(level, f"Import event {event.kind} for owner {event.owner_id}: {event.payload}")


__all__ = [
    "IMPORT_COMPLETED",
    "IMPORT_FAILED",
    "ImportEvent",
    "Notifier",
    "LoggingNotifier",
]
