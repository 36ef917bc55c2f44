"""Store abstraction for workflow state persistence."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol

from ..contracts import (
    AttemptRecord,
    WorkflowInput,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from ..errors import HistoryConflictError, InvalidTransitionError


class WorkflowStore(Protocol):
    """Protocol for workflow state persistence backends.

    Every write must be durable when the coroutine returns; the orchestrator
    relies on that before it makes the next decision.
    """

    async def create(
        self, instance_id: str, workflow_type: str, input: WorkflowInput
    ) -> WorkflowInstance:
        """Persist a new ``running`` instance."""

    async def append(self, instance_id: str, record: AttemptRecord) -> None:
        """Append the next attempt record and clear any pending wake deadline."""

    async def get_history(self, instance_id: str) -> list[AttemptRecord]:
        """Return attempt records ordered by attempt number."""

    async def set_terminal(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> None:
        """Record the terminal status and result."""

    async def set_wake(self, instance_id: str, fire_at: Optional[datetime]) -> None:
        """Persist (or clear) the next timer deadline."""

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the instance, including its history."""

    async def list_instances(
        self, status: WorkflowStatus | None = None
    ) -> list[WorkflowInstance]:
        """Return persisted instances, optionally filtered by status.

        Listed instances carry no attempt history (``attempts`` is empty);
        use :meth:`get` or :meth:`get_history` for that.
        """

    def lock(self, instance_id: str) -> AsyncContextManager[None]:
        """Hold exclusive execution rights for ``instance_id``."""


class InstanceLocks:
    """Per-instance asyncio locks for single-process backends.

    An entry lives only while some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(self, instance_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(instance_id, asyncio.Lock())
        self._users[instance_id] = self._users.get(instance_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[instance_id] -= 1
            if not self._users[instance_id]:
                del self._users[instance_id]
                del self._locks[instance_id]


def check_append(
    instance_id: str, status: WorkflowStatus, history_len: int, record: AttemptRecord
) -> None:
    """Validate that ``record`` may be appended to an instance's history."""
    if status.is_terminal:
        raise InvalidTransitionError(
            f"Cannot append attempt to {status.value} instance {instance_id}"
        )
    expected = history_len + 1
    if record.attempt_number != expected:
        raise HistoryConflictError(
            f"Instance {instance_id} expects attempt {expected}, "
            f"got {record.attempt_number}"
        )


def check_transition(
    instance_id: str, current: WorkflowStatus, target: WorkflowStatus
) -> None:
    if current.is_terminal or not target.is_terminal:
        raise InvalidTransitionError(
            f"Illegal transition {current.value} -> {target.value} for {instance_id}"
        )
