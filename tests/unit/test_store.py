"""Workflow store behaviour shared by the in-process backends."""

import asyncio

import pytest

from conftest import make_input
from durafetch.contracts import AttemptRecord, WorkflowResult, WorkflowStatus
from durafetch.errors import (
    DuplicateInstanceError,
    HistoryConflictError,
    InstanceNotFoundError,
    InvalidTransitionError,
)
from durafetch.persistence import InMemoryWorkflowStore, SQLiteWorkflowStore
from durafetch.persistence.repository import InstanceLocks


@pytest.fixture(params=["inmemory", "sqlite"])
def store(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryWorkflowStore()
    return SQLiteWorkflowStore(tmp_path / "wf.db")


def _record(n, status, clock, content=None):
    return AttemptRecord(
        attempt_number=n, status_code=status, content=content, timestamp=clock.now()
    )


@pytest.mark.asyncio
async def test_store_crud(store, clock):
    wf = await store.create("wf-1", "fetch_fixed_http", make_input())
    assert wf.status == WorkflowStatus.RUNNING

    await store.append("wf-1", _record(1, 500, clock, "oops"))
    await store.append("wf-1", _record(2, 200, clock, "ok"))
    await store.set_terminal(
        "wf-1", WorkflowStatus.COMPLETED, WorkflowResult(status_code=200, content="ok")
    )

    loaded = await store.get("wf-1")
    assert loaded is not None
    assert loaded.status == WorkflowStatus.COMPLETED
    assert loaded.result == WorkflowResult(status_code=200, content="ok")
    assert loaded.input == make_input()
    assert [a.attempt_number for a in loaded.attempts] == [1, 2]
    assert loaded.attempts[0].content == "oops"
    assert loaded.attempts[0].timestamp == clock.now()

    history = await store.get_history("wf-1")
    assert [a.status_code for a in history] == [500, 200]

    all_wfs = await store.list_instances()
    assert [w.instance_id for w in all_wfs] == ["wf-1"]
    assert all_wfs[0].attempts == []
    assert await store.list_instances(WorkflowStatus.RUNNING) == []


@pytest.mark.asyncio
async def test_duplicate_instance_rejected(store):
    await store.create("wf-1", "fetch_fixed_http", make_input())
    with pytest.raises(DuplicateInstanceError):
        await store.create("wf-1", "fetch_fixed_http", make_input())


@pytest.mark.asyncio
async def test_attempts_must_be_strictly_sequential(store, clock):
    await store.create("wf-1", "fetch_fixed_http", make_input())
    with pytest.raises(HistoryConflictError):
        await store.append("wf-1", _record(2, 500, clock))

    await store.append("wf-1", _record(1, 500, clock))
    with pytest.raises(HistoryConflictError):
        await store.append("wf-1", _record(1, 500, clock))
    assert len(await store.get_history("wf-1")) == 1


@pytest.mark.asyncio
async def test_terminal_status_never_changes(store, clock):
    await store.create("wf-1", "fetch_fixed_http", make_input())
    result = WorkflowResult(status_code=500, content="x")

    with pytest.raises(InvalidTransitionError):
        await store.set_terminal("wf-1", WorkflowStatus.RUNNING, result)

    await store.set_terminal("wf-1", WorkflowStatus.FAILED, result)
    with pytest.raises(InvalidTransitionError):
        await store.set_terminal("wf-1", WorkflowStatus.COMPLETED, result)
    with pytest.raises(InvalidTransitionError):
        await store.append("wf-1", _record(1, 200, clock))

    loaded = await store.get("wf-1")
    assert loaded.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_wake_deadline_cleared_by_next_attempt(store, clock):
    await store.create("wf-1", "fetch_fixed_http", make_input())
    await store.append("wf-1", _record(1, 500, clock))
    await store.set_wake("wf-1", clock.now())
    assert (await store.get("wf-1")).wake_at == clock.now()

    await store.append("wf-1", _record(2, 500, clock))
    assert (await store.get("wf-1")).wake_at is None


@pytest.mark.asyncio
async def test_unknown_instance(store, clock):
    assert await store.get("missing") is None
    with pytest.raises(InstanceNotFoundError):
        await store.get_history("missing")
    with pytest.raises(InstanceNotFoundError):
        await store.append("missing", _record(1, 200, clock))
    with pytest.raises(InstanceNotFoundError):
        await store.set_wake("missing", None)


@pytest.mark.asyncio
async def test_sqlite_state_survives_reopen(tmp_path, clock):
    path = tmp_path / "wf.db"
    first = SQLiteWorkflowStore(path)
    await first.create("wf-1", "fetch_fixed_http", make_input())
    await first.append("wf-1", _record(1, 502, clock, "bad gateway"))
    await first.set_wake("wf-1", clock.now())
    first.close()

    reopened = SQLiteWorkflowStore(path)
    wf = await reopened.get("wf-1")
    assert wf.status == WorkflowStatus.RUNNING
    assert wf.wake_at == clock.now()
    assert wf.attempts[0].status_code == 502
    assert wf.attempts[0].content == "bad gateway"


@pytest.mark.asyncio
async def test_instance_locks_forget_released_instances():
    locks = InstanceLocks()
    order = []

    async def hold(tag):
        async with locks.lock("wf-1"):
            order.append(tag)
            await asyncio.sleep(0.01)

    await asyncio.gather(hold("a"), hold("b"), hold("c"))
    assert order == ["a", "b", "c"]
    assert len(locks) == 0

    async with locks.lock("wf-2"):
        assert len(locks) == 1
    assert len(locks) == 0
