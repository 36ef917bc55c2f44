"""SQLite implementation of the workflow store."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from ..contracts import (
    AttemptRecord,
    WorkflowInput,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from ..errors import DuplicateInstanceError, InstanceNotFoundError
from .repository import InstanceLocks, WorkflowStore, check_append, check_transition

_INSTANCE_COLUMNS = (
    "instance_id, workflow_type, status, created_at, input, result, wake_at"
)

logger = logging.getLogger(__name__)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowStore(WorkflowStore):
    """Persist workflow state using SQLite.

    Execution rights are a lease row in ``instance_leases`` so that store
    objects in other processes on the same file are excluded too. The holder
    renews the lease while it runs; a lease left behind by a crashed process
    expires after ``lease_ttl`` seconds.
    """

    def __init__(
        self, db_path: str | Path, lease_ttl: float = 30.0, lease_poll: float = 0.2
    ):
        self.db_path = str(db_path)
        self.lease_ttl = lease_ttl
        self.lease_poll = lease_poll
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._db_lock = threading.Lock()
        self._locks = InstanceLocks()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._db_lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_instances (
                    instance_id TEXT PRIMARY KEY,
                    workflow_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    input TEXT NOT NULL,
                    result TEXT,
                    wake_at TEXT
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS attempt_history (
                    instance_id TEXT NOT NULL,
                    attempt_number INTEGER NOT NULL,
                    status_code INTEGER NOT NULL,
                    content TEXT,
                    error TEXT,
                    timestamp TEXT NOT NULL,
                    PRIMARY KEY (instance_id, attempt_number)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS instance_leases (
                    instance_id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    lease_until REAL NOT NULL
                )
                """
            )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._db_lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._db_lock:
            return self._conn.execute(query, params).fetchall()

    def _status_of(self, instance_id: str) -> WorkflowStatus:
        row = self._conn.execute(
            "SELECT status FROM workflow_instances WHERE instance_id = ?",
            (instance_id,),
        ).fetchone()
        if row is None:
            raise InstanceNotFoundError(instance_id)
        return WorkflowStatus(row["status"])

    def _create(self, instance: WorkflowInstance) -> None:
        with self._db_lock, self._conn:
            try:
                self._conn.execute(
                    f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, NULL, NULL)",
                    (
                        instance.instance_id,
                        instance.workflow_type,
                        instance.status.value,
                        instance.created_at.isoformat(),
                        instance.input.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateInstanceError(
                    f"Instance already exists: {instance.instance_id}"
                ) from exc

    def _append(self, instance_id: str, record: AttemptRecord) -> None:
        with self._db_lock, self._conn:
            status = self._status_of(instance_id)
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM attempt_history WHERE instance_id = ?",
                (instance_id,),
            ).fetchone()
            check_append(instance_id, status, count, record)
            self._conn.execute(
                "INSERT INTO attempt_history "
                "(instance_id, attempt_number, status_code, content, error, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    instance_id,
                    record.attempt_number,
                    record.status_code,
                    record.content,
                    record.error,
                    record.timestamp.isoformat(),
                ),
            )
            self._conn.execute(
                "UPDATE workflow_instances SET wake_at = NULL WHERE instance_id = ?",
                (instance_id,),
            )

    def _set_terminal(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> None:
        with self._db_lock, self._conn:
            check_transition(instance_id, self._status_of(instance_id), status)
            self._conn.execute(
                "UPDATE workflow_instances SET status = ?, result = ?, wake_at = NULL "
                "WHERE instance_id = ?",
                (status.value, result.model_dump_json(), instance_id),
            )

    def _set_wake(self, instance_id: str, fire_at: Optional[datetime]) -> None:
        with self._db_lock, self._conn:
            cur = self._conn.execute(
                "UPDATE workflow_instances SET wake_at = ? WHERE instance_id = ?",
                (fire_at.isoformat() if fire_at else None, instance_id),
            )
            if cur.rowcount == 0:
                raise InstanceNotFoundError(instance_id)

    def _claim_lease(self, instance_id: str, owner: str) -> bool:
        with self._db_lock:
            # IMMEDIATE takes the file write lock before the lease row is read.
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                now = time.time()
                row = self._conn.execute(
                    "SELECT owner, lease_until FROM instance_leases WHERE instance_id = ?",
                    (instance_id,),
                ).fetchone()
                if row is not None and row["owner"] != owner and row["lease_until"] > now:
                    self._conn.rollback()
                    return False
                self._conn.execute(
                    "INSERT OR REPLACE INTO instance_leases (instance_id, owner, lease_until) "
                    "VALUES (?, ?, ?)",
                    (instance_id, owner, now + self.lease_ttl),
                )
            except BaseException:
                self._conn.rollback()
                raise
            self._conn.commit()
            return True

    def _renew_lease(self, instance_id: str, owner: str) -> bool:
        with self._db_lock, self._conn:
            cur = self._conn.execute(
                "UPDATE instance_leases SET lease_until = ? "
                "WHERE instance_id = ? AND owner = ?",
                (time.time() + self.lease_ttl, instance_id, owner),
            )
            return cur.rowcount == 1

    def _release_lease(self, instance_id: str, owner: str) -> None:
        with self._db_lock, self._conn:
            self._conn.execute(
                "DELETE FROM instance_leases WHERE instance_id = ? AND owner = ?",
                (instance_id, owner),
            )

    @staticmethod
    def _record(row: sqlite3.Row) -> AttemptRecord:
        return AttemptRecord(
            attempt_number=row["attempt_number"],
            status_code=row["status_code"],
            content=row["content"],
            error=row["error"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    @staticmethod
    def _instance(row: sqlite3.Row, attempts: list[AttemptRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_type=row["workflow_type"],
            status=WorkflowStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            input=WorkflowInput.model_validate_json(row["input"]),
            result=(
                WorkflowResult.model_validate(json.loads(row["result"]))
                if row["result"]
                else None
            ),
            wake_at=_dt(row["wake_at"]),
            attempts=attempts,
        )

    def _history(self, instance_id: str) -> list[AttemptRecord]:
        rows = self._fetchall(
            "SELECT attempt_number, status_code, content, error, timestamp "
            "FROM attempt_history WHERE instance_id = ? ORDER BY attempt_number",
            instance_id,
        )
        return [self._record(r) for r in rows]

    # ------------------------------------------------------------------
    # Store API
    async def create(
        self, instance_id: str, workflow_type: str, input: WorkflowInput
    ) -> WorkflowInstance:
        instance = WorkflowInstance(
            instance_id=instance_id, workflow_type=workflow_type, input=input
        )
        await asyncio.to_thread(self._create, instance)
        return instance

    async def append(self, instance_id: str, record: AttemptRecord) -> None:
        await asyncio.to_thread(self._append, instance_id, record)

    async def get_history(self, instance_id: str) -> list[AttemptRecord]:
        exists = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM workflow_instances WHERE instance_id = ?",
            instance_id,
        )
        if not exists:
            raise InstanceNotFoundError(instance_id)
        return await asyncio.to_thread(self._history, instance_id)

    async def set_terminal(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> None:
        await asyncio.to_thread(self._set_terminal, instance_id, status, result)

    async def set_wake(self, instance_id: str, fire_at: Optional[datetime]) -> None:
        await asyncio.to_thread(self._set_wake, instance_id, fire_at)

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE instance_id = ?",
            instance_id,
        )
        if not row:
            return None
        attempts = await asyncio.to_thread(self._history, instance_id)
        return self._instance(row, attempts)

    async def list_instances(
        self, status: WorkflowStatus | None = None
    ) -> list[WorkflowInstance]:
        query = f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY created_at", *params)
        return [self._instance(row, []) for row in rows]

    @asynccontextmanager
    async def lock(self, instance_id: str) -> AsyncIterator[None]:
        async with self._locks.lock(instance_id):
            owner = uuid.uuid4().hex
            while not await asyncio.to_thread(self._claim_lease, instance_id, owner):
                await asyncio.sleep(self.lease_poll)
            keeper = asyncio.create_task(self._keep_lease(instance_id, owner))
            try:
                yield
            finally:
                keeper.cancel()
                await asyncio.to_thread(self._release_lease, instance_id, owner)

    async def _keep_lease(self, instance_id: str, owner: str) -> None:
        while True:
            await asyncio.sleep(self.lease_ttl / 3)
            if not await asyncio.to_thread(self._renew_lease, instance_id, owner):
                logger.warning(f"Lease on {instance_id} was lost by {owner}")
                return
