"""Deterministic replay loop for the ``fetch_fixed_http`` workflow."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping

from .activity import HttpCallActivity
from .contracts import AttemptRecord, WorkflowInstance, WorkflowResult, WorkflowStatus
from .errors import InstanceNotFoundError
from .persistence import WorkflowStore
from .timers import Clock, SystemClock, TimerService

logger = logging.getLogger(__name__)


class ReplaySafeLogger(logging.LoggerAdapter):
    """Logger adapter that stays silent while recorded history is replayed."""

    def __init__(self, base: logging.Logger, instance_id: str) -> None:
        super().__init__(base, {"instance_id": instance_id})
        self.is_replaying = False

    def isEnabledFor(self, level: int) -> bool:
        return not self.is_replaying and self.logger.isEnabledFor(level)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['instance_id']}] {msg}", kwargs


class Orchestrator:
    """Drives one workflow instance to a terminal result.

    Each attempt is appended to the store before the retry decision is made,
    and recorded attempts are replayed rather than re-executed. Timer
    deadlines derive from recorded timestamps, so a replayed run computes the
    same deadlines as the original one.
    """

    def __init__(
        self,
        store: WorkflowStore,
        activity: HttpCallActivity | None = None,
        timers: TimerService | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._activity = activity or HttpCallActivity()
        self._timers = timers or TimerService(store, self._clock)

    async def run(self, instance_id: str) -> WorkflowResult:
        """Replay persisted history for ``instance_id``, then continue live."""
        async with self._store.lock(instance_id):
            instance = await self._store.get(instance_id)
            if instance is None:
                raise InstanceNotFoundError(instance_id)
            if instance.status.is_terminal and instance.result is not None:
                return instance.result
            return await self._execute(instance)

    async def _execute(self, instance: WorkflowInstance) -> WorkflowResult:
        instance_id = instance.instance_id
        request = instance.input.request
        policy = instance.input.retry
        history = await self._store.get_history(instance_id)

        log = ReplaySafeLogger(logger, instance_id)
        log.is_replaying = bool(history)
        log.info(
            f"{instance.workflow_type} orchestration starting. Target = {request.uri}"
        )

        attempt = 0
        while True:
            attempt += 1
            if attempt <= len(history):
                record = history[attempt - 1]
            else:
                log.is_replaying = False
                log.info(f"Attempt {attempt} calling {request.uri}")
                response = await self._activity.call(request)
                record = AttemptRecord(
                    attempt_number=attempt,
                    status_code=response.status_code,
                    content=response.content,
                    error=response.error,
                    timestamp=self._clock.now(),
                )
                await self._store.append(instance_id, record)

            if record.succeeded:
                log.info(f"HTTP call succeeded with {record.status_code}")
                return await self._finish(
                    instance_id, WorkflowStatus.COMPLETED, record.to_result()
                )

            log.warning(
                f"HTTP call returned {record.status_code}."
                + (f" ({record.error})" if record.error else "")
            )

            if attempt >= policy.max_attempts:
                log.warning("Max attempts reached. Returning last response.")
                return await self._finish(
                    instance_id, WorkflowStatus.FAILED, record.to_result()
                )

            if attempt < len(history):
                # The next attempt is already recorded, so this timer has fired.
                continue

            fire_at = record.timestamp + policy.backoff_for(attempt)
            log.is_replaying = False
            log.info(f"Backing off until {fire_at.isoformat()}")
            await self._timers.schedule_wake(instance_id, fire_at)
            await self._timers.wait_until(instance_id, fire_at)

    async def _finish(
        self, instance_id: str, status: WorkflowStatus, result: WorkflowResult
    ) -> WorkflowResult:
        await self._store.set_terminal(instance_id, status, result)
        logger.info(f"Workflow {instance_id} {status.value} with {result.status_code}")
        return result
