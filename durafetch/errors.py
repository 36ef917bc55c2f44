"""Exception types raised by durafetch."""

from __future__ import annotations


class DurafetchError(Exception):
    """Base class for all durafetch errors."""


class InstanceNotFoundError(DurafetchError, KeyError):
    """No workflow instance exists for the given id."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(instance_id)
        self.instance_id = instance_id

    def __str__(self) -> str:
        return f"Workflow instance not found: {self.instance_id}"


class DuplicateInstanceError(DurafetchError):
    """An instance with the same id already exists."""


class HistoryConflictError(DurafetchError):
    """An attempt record does not extend the persisted history in order."""


class InvalidTransitionError(DurafetchError):
    """A status change that is not ``running -> completed|failed``."""


class UnknownWorkflowError(DurafetchError, LookupError):
    """The requested workflow type is not registered."""
