"""Ingress for starting workflows and querying their status."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional, Union

from .activity import HttpCallActivity
from .config import DurafetchConfig, load_config
from .contracts import (
    HttpRequestSpec,
    PendingStatus,
    RetryPolicy,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from .errors import InstanceNotFoundError
from .host import WorkflowHost
from .orchestrator import Orchestrator
from .persistence import WorkflowStore, get_store
from .registry import FETCH_FIXED_HTTP, WorkflowRegistry
from .timers import Clock, SystemClock, TimerService

logger = logging.getLogger(__name__)

STATUS_PATH = "/workflows/instances/{instance_id}"

WaitOutcome = Union[WorkflowResult, PendingStatus]


class WorkflowClient:
    """Starts workflow instances and reports on their progress."""

    def __init__(
        self,
        host: WorkflowHost,
        store: WorkflowStore,
        registry: WorkflowRegistry,
        config: Optional[DurafetchConfig] = None,
        base_url: str = "",
    ) -> None:
        self.host = host
        self._store = store
        self._registry = registry
        self._config = config or DurafetchConfig()
        self.base_url = base_url.rstrip("/")

    def status_url(self, instance_id: str, base_url: Optional[str] = None) -> str:
        base = self.base_url if base_url is None else base_url.rstrip("/")
        return base + STATUS_PATH.format(instance_id=instance_id)

    async def start(
        self,
        workflow_type: str = FETCH_FIXED_HTTP,
        request: Optional[HttpRequestSpec] = None,
        retry: Optional[RetryPolicy] = None,
        instance_id: Optional[str] = None,
    ) -> str:
        """Create a ``running`` instance, schedule it and return its id.

        Raises:
            UnknownWorkflowError: If ``workflow_type`` is not registered.
            DuplicateInstanceError: If ``instance_id`` is already taken.
        """
        definition = self._registry.get(workflow_type)
        instance_id = instance_id or uuid.uuid4().hex
        await self._store.create(
            instance_id, workflow_type, definition.build_input(request, retry)
        )
        self.host.schedule(instance_id)
        logger.info(f"Started {workflow_type} orchestration. InstanceId = {instance_id}")
        return instance_id

    async def get_status(self, instance_id: str) -> WorkflowInstance:
        instance = await self._store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def wait_or_status(
        self, instance_id: str, timeout: Optional[float] = None
    ) -> WaitOutcome:
        """Wait up to ``timeout`` seconds for a terminal result.

        The workflow keeps running when the window elapses; a
        :class:`PendingStatus` is returned so the caller can poll later.
        """
        timeout = self._config.wait_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            instance = await self.get_status(instance_id)
            if instance.status.is_terminal and instance.result is not None:
                return instance.result

            remaining = deadline - loop.time()
            if remaining <= 0:
                return PendingStatus(
                    instance_id=instance_id,
                    status=instance.status,
                    status_url=self.status_url(instance_id),
                )

            task = self.host.task_for(instance_id)
            if task is not None and not task.done():
                # asyncio.wait never cancels the task it watches.
                await asyncio.wait({task}, timeout=remaining)
            else:
                await asyncio.sleep(min(self._config.poll_interval, remaining))

    async def start_and_wait(
        self,
        workflow_type: str = FETCH_FIXED_HTTP,
        wait: Optional[float] = None,
        request: Optional[HttpRequestSpec] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> tuple[str, WaitOutcome]:
        """Start a workflow, optionally waiting up to ``wait`` seconds for it.

        With ``wait=None`` this is fire-and-forget and always returns a
        :class:`PendingStatus`.
        """
        instance_id = await self.start(workflow_type, request=request, retry=retry)
        if wait is None:
            return instance_id, PendingStatus(
                instance_id=instance_id,
                status=WorkflowStatus.RUNNING,
                status_url=self.status_url(instance_id),
            )
        return instance_id, await self.wait_or_status(instance_id, wait)


def build_client(
    config: Optional[DurafetchConfig] = None,
    store: Optional[WorkflowStore] = None,
    activity: Optional[HttpCallActivity] = None,
    clock: Optional[Clock] = None,
    base_url: str = "",
) -> WorkflowClient:
    """Wire store, orchestrator, host and registry into a client."""
    config = config or load_config()
    store = store or get_store(config=config)
    clock = clock or SystemClock()
    timers = TimerService(store, clock)
    orchestrator = Orchestrator(
        store,
        activity=activity or HttpCallActivity(timeout=config.request_timeout),
        timers=timers,
        clock=clock,
    )
    host = WorkflowHost(orchestrator, store, timers)
    return WorkflowClient(
        host, store, WorkflowRegistry.from_config(config), config, base_url=base_url
    )
