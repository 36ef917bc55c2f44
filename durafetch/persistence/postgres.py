"""PostgreSQL implementation of the workflow store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import asyncpg

from ..contracts import (
    AttemptRecord,
    WorkflowInput,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from ..errors import DuplicateInstanceError, InstanceNotFoundError
from .repository import WorkflowStore, check_append, check_transition

_INSTANCE_COLUMNS = (
    "instance_id, workflow_type, status, created_at, input, result, wake_at"
)


class PostgresWorkflowStore(WorkflowStore):
    """Persist workflow state using PostgreSQL.

    Mutual exclusion between executors, possibly in different processes, is
    enforced with a session-level advisory lock keyed by the instance id.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                instance_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                input JSONB NOT NULL,
                result JSONB,
                wake_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt_history (
                instance_id TEXT NOT NULL REFERENCES workflow_instances(instance_id),
                attempt_number INTEGER NOT NULL,
                status_code INTEGER NOT NULL,
                content TEXT,
                error TEXT,
                timestamp TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (instance_id, attempt_number)
            )
            """
        )

    async def _locked_status(
        self, conn: asyncpg.Connection, instance_id: str
    ) -> WorkflowStatus:
        status = await conn.fetchval(
            "SELECT status FROM workflow_instances WHERE instance_id = $1 FOR UPDATE",
            instance_id,
        )
        if status is None:
            raise InstanceNotFoundError(instance_id)
        return WorkflowStatus(status)

    @staticmethod
    def _instance(row: asyncpg.Record, attempts: list[AttemptRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_type=row["workflow_type"],
            status=WorkflowStatus(row["status"]),
            created_at=row["created_at"],
            input=WorkflowInput.model_validate_json(row["input"]),
            result=(
                WorkflowResult.model_validate_json(row["result"])
                if row["result"]
                else None
            ),
            wake_at=row["wake_at"],
            attempts=attempts,
        )

    # ------------------------------------------------------------------
    async def create(
        self, instance_id: str, workflow_type: str, input: WorkflowInput
    ) -> WorkflowInstance:
        instance = WorkflowInstance(
            instance_id=instance_id, workflow_type=workflow_type, input=input
        )
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, NULL, NULL)",
                instance.instance_id,
                instance.workflow_type,
                instance.status.value,
                instance.created_at,
                instance.input.model_dump_json(),
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateInstanceError(
                f"Instance already exists: {instance_id}"
            ) from exc
        finally:
            await conn.close()
        return instance

    async def append(self, instance_id: str, record: AttemptRecord) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await self._locked_status(conn, instance_id)
                count = await conn.fetchval(
                    "SELECT COUNT(*) FROM attempt_history WHERE instance_id = $1",
                    instance_id,
                )
                check_append(instance_id, status, count, record)
                await conn.execute(
                    "INSERT INTO attempt_history "
                    "(instance_id, attempt_number, status_code, content, error, timestamp) "
                    "VALUES ($1, $2, $3, $4, $5, $6)",
                    instance_id,
                    record.attempt_number,
                    record.status_code,
                    record.content,
                    record.error,
                    record.timestamp,
                )
                await conn.execute(
                    "UPDATE workflow_instances SET wake_at = NULL WHERE instance_id = $1",
                    instance_id,
                )
        finally:
            await conn.close()

    async def _history(
        self, conn: asyncpg.Connection, instance_id: str
    ) -> list[AttemptRecord]:
        rows = await conn.fetch(
            "SELECT attempt_number, status_code, content, error, timestamp "
            "FROM attempt_history WHERE instance_id = $1 ORDER BY attempt_number",
            instance_id,
        )
        return [AttemptRecord(**dict(r)) for r in rows]

    async def get_history(self, instance_id: str) -> list[AttemptRecord]:
        conn = await self._connect()
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM workflow_instances WHERE instance_id = $1", instance_id
            )
            if not exists:
                raise InstanceNotFoundError(instance_id)
            return await self._history(conn, instance_id)
        finally:
            await conn.close()

    async def set_terminal(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                current = await self._locked_status(conn, instance_id)
                check_transition(instance_id, current, status)
                await conn.execute(
                    "UPDATE workflow_instances "
                    "SET status = $1, result = $2, wake_at = NULL WHERE instance_id = $3",
                    status.value,
                    result.model_dump_json(),
                    instance_id,
                )
        finally:
            await conn.close()

    async def set_wake(self, instance_id: str, fire_at: Optional[datetime]) -> None:
        conn = await self._connect()
        try:
            outcome = await conn.execute(
                "UPDATE workflow_instances SET wake_at = $1 WHERE instance_id = $2",
                fire_at,
                instance_id,
            )
        finally:
            await conn.close()
        if outcome.endswith(" 0"):
            raise InstanceNotFoundError(instance_id)

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE instance_id = $1",
                instance_id,
            )
            if not row:
                return None
            attempts = await self._history(conn, instance_id)
        finally:
            await conn.close()
        return self._instance(row, attempts)

    async def list_instances(
        self, status: WorkflowStatus | None = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch(
                    f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances ORDER BY created_at"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
                    "WHERE status = $1 ORDER BY created_at",
                    status.value,
                )
        finally:
            await conn.close()
        return [self._instance(r, []) for r in rows]

    @asynccontextmanager
    async def lock(self, instance_id: str) -> AsyncIterator[None]:
        conn = await self._connect()
        try:
            await conn.execute("SELECT pg_advisory_lock(hashtext($1))", instance_id)
            try:
                yield
            finally:
                await conn.execute(
                    "SELECT pg_advisory_unlock(hashtext($1))", instance_id
                )
        finally:
            await conn.close()

