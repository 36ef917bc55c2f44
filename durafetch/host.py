"""In-process scheduler that runs orchestrations as asyncio tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from .contracts import WorkflowResult, WorkflowStatus
from .orchestrator import Orchestrator
from .persistence import WorkflowStore
from .timers import TimerService

logger = logging.getLogger(__name__)


class WorkflowHost:
    """Runs at most one orchestration task per instance in this process."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: WorkflowStore,
        timers: TimerService | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._timers = timers or TimerService(store)
        self._tasks: Dict[str, asyncio.Task[WorkflowResult]] = {}

    def schedule(self, instance_id: str) -> asyncio.Task[WorkflowResult]:
        """Start executing ``instance_id`` unless it is already running here."""
        existing = self._tasks.get(instance_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(
            self._run(instance_id), name=f"durafetch:{instance_id}"
        )
        self._tasks[instance_id] = task
        task.add_done_callback(lambda t: self._forget(instance_id, t))
        return task

    def task_for(self, instance_id: str) -> Optional[asyncio.Task[WorkflowResult]]:
        return self._tasks.get(instance_id)

    def _forget(self, instance_id: str, task: asyncio.Task[WorkflowResult]) -> None:
        if self._tasks.get(instance_id) is task:
            del self._tasks[instance_id]
        if not task.cancelled():
            # Already logged in ``_run``; retrieving it marks it handled.
            task.exception()

    async def _run(self, instance_id: str) -> WorkflowResult:
        try:
            return await self._orchestrator.run(instance_id)
        except asyncio.CancelledError:
            logger.info(
                f"Workflow {instance_id} suspended; it resumes from its last "
                "checkpoint on recovery"
            )
            raise
        except Exception:
            logger.exception(
                f"Workflow {instance_id} aborted; it resumes from its last "
                "checkpoint on recovery"
            )
            raise

    async def recover(self) -> list[str]:
        """Resume every persisted ``running`` instance.

        Returns:
            Instance ids that were scheduled.
        """
        for instance_id, fire_at in await self._timers.pending_wakes():
            logger.info(f"Re-arming timer for {instance_id} at {fire_at.isoformat()}")

        running = await self._store.list_instances(WorkflowStatus.RUNNING)
        for wf in running:
            self.schedule(wf.instance_id)
        logger.info(f"Recovered {len(running)} running workflow(s)")
        return [wf.instance_id for wf in running]

    async def join(self) -> None:
        """Wait for every task currently scheduled on this host."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks; persisted state stays at its last checkpoint."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
