"""Registered workflow definitions."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel

from .config import DurafetchConfig
from .contracts import HttpRequestSpec, RetryPolicy, WorkflowInput
from .errors import UnknownWorkflowError

FETCH_FIXED_HTTP = "fetch_fixed_http"


class WorkflowDefinition(BaseModel):
    """Default request and retry policy of a workflow type."""

    name: str
    request: HttpRequestSpec
    retry: RetryPolicy = RetryPolicy()

    def build_input(
        self,
        request: Optional[HttpRequestSpec] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> WorkflowInput:
        return WorkflowInput(request=request or self.request, retry=retry or self.retry)


class WorkflowRegistry:
    """Maps workflow type names to their definitions."""

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def register(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.name] = definition

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownWorkflowError(f"Unknown workflow type: {name}") from None

    def names(self) -> list[str]:
        return sorted(self._definitions)

    @classmethod
    def from_config(cls, config: DurafetchConfig) -> "WorkflowRegistry":
        """Registry holding ``fetch_fixed_http`` bound to the configured target."""
        registry = cls()
        registry.register(
            WorkflowDefinition(
                name=FETCH_FIXED_HTTP,
                request=config.target.to_request(),
                retry=config.retry.to_policy(),
            )
        )
        return registry
