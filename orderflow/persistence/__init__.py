"""Storage for workflow definitions and order progress records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OrderflowConfig, load_config
from .inmemory import InMemoryRepository
from .repository import OrderflowRepository, ProgressRepository, WorkflowDefinitionRepository
from .sqlite import SQLiteRepository

DATABASE_URL_ENV_VARS = ("ORDERFLOW_DATABASE_URL", "DATABASE_URL")
POSTGRES_SCHEMES = ("postgres://", "postgresql://")

_repository_instance: OrderflowRepository | None = None


def _resolve_database_url(
    database_url: Optional[str], config: OrderflowConfig
) -> Optional[str]:
    if database_url:
        return database_url
    for name in DATABASE_URL_ENV_VARS:
        value = os.getenv(name)
        if value:
            return value
    return config.database_url


def open_repository(database_url: Optional[str]) -> OrderflowRepository:
    """Open the backend a URL points at; no URL means in-memory storage."""
    if not database_url:
        return InMemoryRepository()
    if database_url.startswith("sqlite://"):
        return SQLiteRepository(database_url[len("sqlite://"):])
    if database_url.startswith(POSTGRES_SCHEMES):
        from .postgres import PostgresRepository

        return PostgresRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[OrderflowConfig] = None
) -> OrderflowRepository:
    """Return the process-wide repository, opening it on first use.

    Passing ``database_url`` or ``config`` always opens a fresh repository and
    makes it the shared one. Otherwise the URL comes from
    ``ORDERFLOW_DATABASE_URL``, ``DATABASE_URL`` or the loaded config.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = _resolve_database_url(database_url, config or load_config())
    _repository_instance = open_repository(url)
    return _repository_instance


__all__ = [
    "OrderflowRepository",
    "ProgressRepository",
    "WorkflowDefinitionRepository",
    "InMemoryRepository",
    "SQLiteRepository",
    "get_repository",
    "open_repository",
]
