"""durafetch: durable HTTP-call-with-retry workflows."""

from .activity import ActivityResponse, HttpCallActivity
from .client import WorkflowClient, build_client
from .config import DurafetchConfig, load_config
from .contracts import (
    AttemptRecord,
    HttpRequestSpec,
    PendingStatus,
    RetryPolicy,
    WorkflowInput,
    WorkflowInstance,
    WorkflowResult,
    WorkflowStatus,
)
from .host import WorkflowHost
from .orchestrator import Orchestrator
from .persistence import get_store
from .registry import FETCH_FIXED_HTTP, WorkflowRegistry
from .timers import SystemClock, TimerService

__version__ = "0.1.0"
__all__ = [
    "ActivityResponse",
    "AttemptRecord",
    "DurafetchConfig",
    "FETCH_FIXED_HTTP",
    "HttpCallActivity",
    "HttpRequestSpec",
    "Orchestrator",
    "PendingStatus",
    "RetryPolicy",
    "SystemClock",
    "TimerService",
    "WorkflowClient",
    "WorkflowHost",
    "WorkflowInput",
    "WorkflowInstance",
    "WorkflowRegistry",
    "WorkflowResult",
    "WorkflowStatus",
    "build_client",
    "get_store",
    "load_config",
]
