"""Shared fakes for durafetch tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from durafetch.activity import ActivityResponse
from durafetch.contracts import HttpRequestSpec, RetryPolicy, WorkflowInput
from durafetch.persistence import reset_store

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Logical clock: ``sleep`` advances time instantly and records the delay."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start
        self.slept: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.current += timedelta(seconds=seconds)
        await asyncio.sleep(0)


class StalledClock(FakeClock):
    """Clock whose sleeps never finish, for simulating a host going down."""

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        await asyncio.Event().wait()


class ScriptedActivity:
    """Returns the scripted ``(status, content)`` pairs in order."""

    def __init__(self, responses: Iterable[tuple[int, Optional[str]]]) -> None:
        self.responses = list(responses)
        self.calls = 0

    async def call(self, spec: HttpRequestSpec) -> ActivityResponse:
        self.calls += 1
        status, content = self.responses[self.calls - 1]
        return ActivityResponse(status_code=status, content=content)


class ExplodingActivity:
    """Fails the test if the orchestrator issues any call."""

    calls = 0

    async def call(self, spec: HttpRequestSpec) -> ActivityResponse:
        raise AssertionError("activity must not be called during replay")


class GatedActivity:
    """Blocks every call until ``release`` is set."""

    def __init__(self, status: int = 200, content: str = "done") -> None:
        self.release = asyncio.Event()
        self.calls = 0
        self._status = status
        self._content = content

    async def call(self, spec: HttpRequestSpec) -> ActivityResponse:
        self.calls += 1
        await self.release.wait()
        return ActivityResponse(status_code=self._status, content=self._content)


def make_input(max_attempts: int = 3, initial_backoff: float = 5.0, **retry) -> WorkflowInput:
    return WorkflowInput(
        request=HttpRequestSpec(uri="https://example.test/"),
        retry=RetryPolicy(
            max_attempts=max_attempts, initial_backoff=initial_backoff, **retry
        ),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _fresh_store(monkeypatch, tmp_path):
    """Isolate each test from config files, env and the cached store."""
    monkeypatch.setenv("DURAFETCH_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("DURAFETCH_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DURAFETCH_TARGET_URI", raising=False)
    reset_store()
    yield
    reset_store()
