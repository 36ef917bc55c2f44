"""In-memory implementation of the workflow store."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Dict, Optional

from ..contracts import (
    AttemptRecord,
    WorkflowInput,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from ..errors import DuplicateInstanceError, InstanceNotFoundError
from .repository import InstanceLocks, WorkflowStore, check_append, check_transition


class InMemoryWorkflowStore(WorkflowStore):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._locks = InstanceLocks()

    def _require(self, instance_id: str) -> WorkflowInstance:
        wf = self._instances.get(instance_id)
        if wf is None:
            raise InstanceNotFoundError(instance_id)
        return wf

    # ------------------------------------------------------------------
    async def create(
        self, instance_id: str, workflow_type: str, input: WorkflowInput
    ) -> WorkflowInstance:
        if instance_id in self._instances:
            raise DuplicateInstanceError(f"Instance already exists: {instance_id}")
        wf = WorkflowInstance(
            instance_id=instance_id, workflow_type=workflow_type, input=input
        )
        self._instances[instance_id] = wf
        return wf.model_copy(deep=True)

    async def append(self, instance_id: str, record: AttemptRecord) -> None:
        wf = self._require(instance_id)
        check_append(instance_id, wf.status, len(wf.attempts), record)
        wf.attempts.append(record)
        wf.wake_at = None

    async def get_history(self, instance_id: str) -> list[AttemptRecord]:
        return list(self._require(instance_id).attempts)

    async def set_terminal(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> None:
        wf = self._require(instance_id)
        check_transition(instance_id, wf.status, status)
        wf.status = status
        wf.result = result
        wf.wake_at = None

    async def set_wake(self, instance_id: str, fire_at: Optional[datetime]) -> None:
        self._require(instance_id).wake_at = fire_at

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._instances.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_instances(
        self, status: WorkflowStatus | None = None
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(update={"attempts": []}, deep=True)
            for wf in self._instances.values()
            if status is None or wf.status == status
        ]

    def lock(self, instance_id: str) -> AsyncContextManager[None]:
        return self._locks.lock(instance_id)
