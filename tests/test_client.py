"""Ingress client: start, status, bounded waits and recovery."""

import asyncio

import pytest

from conftest import FakeClock, GatedActivity, ScriptedActivity, StalledClock
from durafetch import build_client
from durafetch.config import DurafetchConfig
from durafetch.contracts import PendingStatus, WorkflowResult, WorkflowStatus
from durafetch.errors import InstanceNotFoundError, UnknownWorkflowError
from durafetch.persistence import InMemoryWorkflowStore, SQLiteWorkflowStore


def _client(activity, store=None, clock=None, **config):
    return build_client(
        config=DurafetchConfig(**config),
        store=store or InMemoryWorkflowStore(),
        activity=activity,
        clock=clock or FakeClock(),
    )


@pytest.mark.asyncio
async def test_start_returns_running_instance_and_completes():
    client = _client(ScriptedActivity([(500, "a"), (200, "b")]))

    instance_id = await client.start()
    wf = await client.get_status(instance_id)
    assert wf.workflow_type == "fetch_fixed_http"
    assert wf.status == WorkflowStatus.RUNNING

    await client.host.join()
    wf = await client.get_status(instance_id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.result == WorkflowResult(status_code=200, content="b")


@pytest.mark.asyncio
async def test_instance_ids_are_unique():
    client = _client(ScriptedActivity([(200, "x")] * 3))
    ids = {await client.start() for _ in range(3)}
    await client.host.join()
    assert len(ids) == 3


@pytest.mark.asyncio
async def test_wait_returns_result_when_done_in_time():
    client = _client(ScriptedActivity([(500, "a"), (500, "b"), (200, "c")]))
    instance_id = await client.start()

    outcome = await client.wait_or_status(instance_id, timeout=5)
    assert outcome == WorkflowResult(status_code=200, content="c")


@pytest.mark.asyncio
async def test_wait_times_out_with_pending_then_poll_sees_result():
    activity = GatedActivity(status=200, content="late")
    client = _client(activity)
    instance_id = await client.start()

    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome = await client.wait_or_status(instance_id, timeout=0.05)
    assert loop.time() - started < 1.0

    assert isinstance(outcome, PendingStatus)
    assert outcome.instance_id == instance_id
    assert outcome.status == WorkflowStatus.RUNNING
    assert outcome.status_url == f"/workflows/instances/{instance_id}"

    # The workflow kept running through the timeout.
    activity.release.set()
    await client.host.join()
    assert await client.wait_or_status(instance_id, timeout=1) == WorkflowResult(
        status_code=200, content="late"
    )
    assert activity.calls == 1


@pytest.mark.asyncio
async def test_wait_polls_store_when_run_elsewhere(tmp_path):
    store = SQLiteWorkflowStore(tmp_path / "wf.db")
    client = _client(ScriptedActivity([(200, "ok")]), store=store, poll_interval=0.01)
    instance_id = await client.start()
    await client.host.join()

    observer = _client(ScriptedActivity([]), store=store)
    assert observer.host.task_for(instance_id) is None
    assert await observer.wait_or_status(instance_id, timeout=0.1) == WorkflowResult(
        status_code=200, content="ok"
    )


@pytest.mark.asyncio
async def test_start_and_wait_without_timeout_is_fire_and_forget():
    activity = GatedActivity()
    client = _client(activity)

    instance_id, outcome = await client.start_and_wait(wait=None)
    assert isinstance(outcome, PendingStatus)
    assert outcome.status == WorkflowStatus.RUNNING

    activity.release.set()
    await client.host.join()
    assert (await client.get_status(instance_id)).status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_start_and_wait_with_timeout_returns_result():
    client = _client(ScriptedActivity([(200, "now")]))
    _, outcome = await client.start_and_wait(wait=5)
    assert outcome == WorkflowResult(status_code=200, content="now")


@pytest.mark.asyncio
async def test_unknown_workflow_type_and_instance():
    client = _client(ScriptedActivity([]))
    with pytest.raises(UnknownWorkflowError):
        await client.start("does_not_exist")
    with pytest.raises(InstanceNotFoundError):
        await client.get_status("missing")
    with pytest.raises(InstanceNotFoundError):
        await client.wait_or_status("missing", timeout=0)


@pytest.mark.asyncio
async def test_shutdown_then_recover_resumes_from_checkpoint(tmp_path):
    path = tmp_path / "wf.db"
    first_activity = ScriptedActivity([(500, "first")])
    stalled = StalledClock()
    first = _client(first_activity, store=SQLiteWorkflowStore(path), clock=stalled)

    instance_id = await first.start()
    for _ in range(200):
        if stalled.slept:
            break
        await asyncio.sleep(0.01)
    await first.host.shutdown()

    wf = await first.get_status(instance_id)
    assert wf.status == WorkflowStatus.RUNNING
    assert wf.wake_at is not None

    second_activity = ScriptedActivity([(200, "second")])
    second = _client(second_activity, store=SQLiteWorkflowStore(path))
    assert await second.host.recover() == [instance_id]
    await second.host.join()

    wf = await second.get_status(instance_id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.result == WorkflowResult(status_code=200, content="second")
    assert first_activity.calls == 1
    assert second_activity.calls == 1
