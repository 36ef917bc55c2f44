"""Core data contracts for durafetch workflows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Status code recorded when no HTTP response was received at all.
TRANSPORT_FAILURE_STATUS = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_success(status_code: int) -> bool:
    """Return ``True`` for 2xx status codes."""
    return 200 <= status_code < 300


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not WorkflowStatus.RUNNING


class HttpRequestSpec(BaseModel):
    """Describes the fixed outbound request a workflow performs."""

    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    uri: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    content_type: Optional[str] = None


class RetryPolicy(BaseModel):
    """Bounded-attempt exponential backoff settings."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_backoff: float = Field(default=5.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_backoff: Optional[float] = Field(default=None, gt=0)

    def backoff_for(self, attempt_number: int) -> timedelta:
        """Delay to wait after ``attempt_number`` fails, before the next one."""
        seconds = self.initial_backoff * self.backoff_multiplier ** (attempt_number - 1)
        if self.max_backoff is not None:
            seconds = min(seconds, self.max_backoff)
        return timedelta(seconds=seconds)


class WorkflowInput(BaseModel):
    """Configuration handed to a workflow instance at start time."""

    model_config = ConfigDict(frozen=True)

    request: HttpRequestSpec
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


class WorkflowResult(BaseModel):
    """Terminal output of a workflow: last HTTP status and body."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    content: Optional[str] = None


class AttemptRecord(BaseModel):
    """One entry of the replay history, appended once per HTTP attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1)
    status_code: int
    content: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime

    @property
    def succeeded(self) -> bool:
        return is_success(self.status_code)

    def to_result(self) -> WorkflowResult:
        return WorkflowResult(status_code=self.status_code, content=self.content)


class WorkflowInstance(BaseModel):
    """Persisted state of one workflow execution."""

    instance_id: str
    workflow_type: str
    status: WorkflowStatus = WorkflowStatus.RUNNING
    created_at: datetime = Field(default_factory=utcnow)
    input: WorkflowInput
    result: Optional[WorkflowResult] = None
    wake_at: Optional[datetime] = None
    attempts: List[AttemptRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowInstance":
        return cls.model_validate_json(data)


class PendingStatus(BaseModel):
    """Returned by bounded waits that did not see a terminal state."""

    instance_id: str
    status: WorkflowStatus
    status_url: Optional[str] = None
