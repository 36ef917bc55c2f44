"""Durable timers for workflow backoff delays."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Protocol

from .contracts import WorkflowStatus, utcnow
from .persistence import WorkflowStore

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of time and suspension for the orchestrator."""

    def now(self) -> datetime:
        """Current UTC time."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""


class SystemClock:
    """Wall-clock time with ``asyncio.sleep`` suspension."""

    def now(self) -> datetime:
        return utcnow()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class TimerService:
    """Schedules wake-ups whose deadlines live in the workflow store.

    A deadline is persisted before the caller suspends, so a restarted
    process can re-arm the timer from the store instead of from memory.
    """

    def __init__(self, store: WorkflowStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def schedule_wake(self, instance_id: str, fire_at: datetime) -> None:
        """Persist ``fire_at`` as the next wake deadline of ``instance_id``."""
        await self._store.set_wake(instance_id, fire_at)
        logger.debug(f"Timer for {instance_id} armed at {fire_at.isoformat()}")

    async def wait_until(self, instance_id: str, fire_at: datetime) -> None:
        """Suspend until the clock reaches ``fire_at``.

        Only the time left until ``fire_at`` is slept. ``fire_at`` is measured
        from the recorded attempt timestamp, so the backoff bound holds in
        logical time: consecutive attempts are at least the backoff apart, but
        the wall-clock suspension is shorter by however long the store writes
        after the attempt took.

        Cancellation propagates to the caller and leaves the persisted
        deadline in place for recovery.
        """
        remaining = (fire_at - self._clock.now()).total_seconds()
        if remaining > 0:
            await self._clock.sleep(remaining)
        await self._store.set_wake(instance_id, None)
        logger.debug(f"Timer for {instance_id} fired")

    async def pending_wakes(self) -> list[tuple[str, datetime]]:
        """Return ``(instance_id, fire_at)`` for running instances with a deadline."""
        instances = await self._store.list_instances(WorkflowStatus.RUNNING)
        return sorted(
            ((wf.instance_id, wf.wake_at) for wf in instances if wf.wake_at),
            key=lambda item: item[1],
        )
