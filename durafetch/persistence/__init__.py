"""Persistence layer for durafetch workflows."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import DurafetchConfig, load_config
from .inmemory import InMemoryWorkflowStore
from .repository import WorkflowStore
from .sqlite import SQLiteWorkflowStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowStore = None  # type: ignore

_MEMORY = "memory://"

_stores: Dict[str, WorkflowStore] = {}


def _open_store(database_url: Optional[str]) -> WorkflowStore:
    if not database_url:
        return InMemoryWorkflowStore()
    if database_url.startswith("sqlite://"):
        return SQLiteWorkflowStore(database_url.replace("sqlite://", "", 1))
    if database_url.startswith(("postgres://", "postgresql://")):
        if PostgresWorkflowStore is None:
            raise RuntimeError("Postgres support not available, install durafetch[postgres]")
        return PostgresWorkflowStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_store(
    database_url: Optional[str] = None, config: Optional[DurafetchConfig] = None
) -> WorkflowStore:
    """Return the workflow store for a database URL.

    Without an explicit ``database_url`` the URL comes from ``config`` or,
    failing that, from :func:`load_config`, which already applies the
    ``DURAFETCH_DATABASE_URL``/``DATABASE_URL`` overrides. Stores are cached
    per URL, so a client and the CLI commands in one process share a
    backend. With no database configured an in-memory store is used.
    """

    if database_url is None:
        database_url = (config or load_config()).database_url
    key = database_url or _MEMORY
    store = _stores.get(key)
    if store is None:
        store = _stores[key] = _open_store(database_url)
    return store


def reset_store() -> None:
    """Close and forget every cached store."""
    for store in _stores.values():
        if isinstance(store, SQLiteWorkflowStore):
            store.close()
    _stores.clear()


__all__ = [
    "WorkflowStore",
    "SQLiteWorkflowStore",
    "PostgresWorkflowStore",
    "InMemoryWorkflowStore",
    "get_store",
    "reset_store",
]
