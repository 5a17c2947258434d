"""PostgreSQL-backed JobStore (psycopg 3, async)."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..exceptions import ExecutionAlreadyFinalized
from .models import ExecutionLog, ScheduledImportJob, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS scheduled_imports (
    id TEXT PRIMARY KEY,
    name TEXT,
    description TEXT,
    cron_expression TEXT NOT NULL,
    csv_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    last_run TIMESTAMPTZ,
    next_run TIMESTAMPTZ,
    error_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    owner_id INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS scheduled_imports_owner_status_idx
    ON scheduled_imports (owner_id, status);
CREATE INDEX IF NOT EXISTS scheduled_imports_active_next_run_idx
    ON scheduled_imports (is_active, next_run);

CREATE TABLE IF NOT EXISTS import_execution_logs (
    id SERIAL PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES scheduled_imports (id) ON DELETE CASCADE,
    owner_id INTEGER NOT NULL,
    status TEXT NOT NULL,
    start_time TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    end_time TIMESTAMPTZ,
    items_processed INTEGER NOT NULL DEFAULT 0,
    items_imported INTEGER NOT NULL DEFAULT 0,
    items_failed INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    error_details JSONB,
    execution_summary JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS import_execution_logs_job_created_idx
    ON import_execution_logs (job_id, created_at);
"""

JOB_COLUMNS = tuple(ScheduledImportJob.model_fields)
EXECUTION_COLUMNS = tuple(ExecutionLog.model_fields)
_JSON_COLUMNS = frozenset(["error_details", "execution_summary"])


def _to_db(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return Jsonb(value)
    if isinstance(value, Enum):
        return value.value
    return value


def job_from_row(row: Dict[str, Any]) -> ScheduledImportJob:
    return ScheduledImportJob.model_validate(row)


def execution_from_row(row: Dict[str, Any]) -> ExecutionLog:
    return ExecutionLog.model_validate(row)


def _set_clause(changes: Dict[str, Any]) -> sql.Composed:
    return sql.SQL(", ").join(
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column))
        for column in changes
    )


class PostgresJobStore:
    """JobStore persisting to PostgreSQL.

    Opens a connection per operation, like the rest of the worker's DB access.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url

    async def _connect(self) -> psycopg.AsyncConnection:
        return await psycopg.AsyncConnection.connect(
            self.database_url, row_factory=dict_row
        )

    async def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with await self._connect() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Job store schema ready")

    async def create_job(self, job: ScheduledImportJob) -> ScheduledImportJob:
        values = {c: _to_db(c, getattr(job, c)) for c in JOB_COLUMNS}
        query = sql.SQL("INSERT INTO scheduled_imports ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(", ").join(map(sql.Identifier, values)),
            sql.SQL(", ").join(map(sql.Placeholder, values)),
        )
        async with await self._connect() as conn:
            cur = await conn.execute(query, values)
            return job_from_row(await cur.fetchone())

    async def get_job(self, job_id: str) -> Optional[ScheduledImportJob]:
        async with await self._connect() as conn:
            cur = await conn.execute(
                "SELECT * FROM scheduled_imports WHERE id = %s", (job_id,)
            )
            row = await cur.fetchone()
            return job_from_row(row) if row else None

    async def list_jobs(
        self, owner_id: Optional[int] = None, active_only: bool = False
    ) -> List[ScheduledImportJob]:
        async with await self._connect() as conn:
            cur = await conn.execute(
                """
                SELECT * FROM scheduled_imports
                WHERE (%(owner_id)s::integer IS NULL OR owner_id = %(owner_id)s)
                  AND (NOT %(active_only)s OR is_active)
                ORDER BY created_at DESC
                """,
                {"owner_id": owner_id, "active_only": active_only},
            )
            return [job_from_row(row) for row in await cur.fetchall()]

    async def update_job(self, job_id: str, **changes: Any) -> ScheduledImportJob:
        changes.setdefault("updated_at", utcnow())
        values = {c: _to_db(c, v) for c, v in changes.items()}
        query = sql.SQL("UPDATE scheduled_imports SET {} WHERE id = {} RETURNING *").format(
            _set_clause(values), sql.Placeholder("__id")
        )
        async with await self._connect() as conn:
            cur = await conn.execute(query, {**values, "__id": job_id})
            row = await cur.fetchone()
            if row is None:
                raise KeyError(job_id)
            return job_from_row(row)

    async def delete_job(self, job_id: str) -> bool:
        async with await self._connect() as conn:
            cur = await conn.execute(
                "DELETE FROM scheduled_imports WHERE id = %s", (job_id,)
            )
            return cur.rowcount > 0

    async def create_execution(self, log: ExecutionLog) -> ExecutionLog:
        values = {
            c: _to_db(c, getattr(log, c)) for c in EXECUTION_COLUMNS if c != "id"
        }
        query = sql.SQL(
            "INSERT INTO import_execution_logs ({}) VALUES ({}) RETURNING *"
        ).format(
            sql.SQL(", ").join(map(sql.Identifier, values)),
            sql.SQL(", ").join(map(sql.Placeholder, values)),
        )
        async with await self._connect() as conn:
            cur = await conn.execute(query, values)
            return execution_from_row(await cur.fetchone())

    async def finalize_execution(self, execution_id: int, **changes: Any) -> ExecutionLog:
        changes.setdefault("end_time", utcnow())
        changes.setdefault("updated_at", utcnow())
        values = {c: _to_db(c, v) for c, v in changes.items()}
        # end_time IS NULL makes finalization one-shot
        query = sql.SQL(
            "UPDATE import_execution_logs SET {} "
            "WHERE id = {} AND end_time IS NULL RETURNING *"
        ).format(_set_clause(values), sql.Placeholder("__id"))
        async with await self._connect() as conn:
            cur = await conn.execute(query, {**values, "__id": execution_id})
            row = await cur.fetchone()
            if row is None:
                raise ExecutionAlreadyFinalized(
                    f"Execution {execution_id} was already finalized or does not exist"
                )
            return execution_from_row(row)

    async def list_executions(
        self, job_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[ExecutionLog], int]:
        async with await self._connect() as conn:
            cur = await conn.execute(
                """
                SELECT * FROM import_execution_logs
                WHERE job_id = %s
                ORDER BY id DESC
                OFFSET %s LIMIT %s
                """,
                (job_id, offset, limit),
            )
            logs = [execution_from_row(row) for row in await cur.fetchall()]
            cur = await conn.execute(
                "SELECT COUNT(*) AS total FROM import_execution_logs WHERE job_id = %s",
                (job_id,),
            )
            total = (await cur.fetchone())["total"]
            return logs, total


__all__ = ["PostgresJobStore", "SCHEMA_SQL", "job_from_row", "execution_from_row"]
