"""Subscription store layer.

This package is the single source of truth for tracked vehicles, their
detection baselines and pending updates, and per-device push endpoints.
"""

from __future__ import annotations

from motwatch.exceptions import ConfigError
from motwatch.store.base import SubscriptionStore
from motwatch.store.memory import MemoryStore


async def open_store(database_url: str) -> SubscriptionStore:
    """Open the store named by *database_url*.

    ``memory://`` selects the in-process store; ``postgres://`` and
    ``postgresql://`` DSNs select the PostgreSQL store.
    """
    if database_url.startswith("memory://"):
        return MemoryStore()
    if database_url.startswith(("postgres://", "postgresql://")):
        from motwatch.store.postgres import PostgresStore

        return await PostgresStore.connect(database_url)
    raise ConfigError(f"Unsupported database URL scheme: {database_url.split('://', 1)[0]!r}")


__all__ = ["MemoryStore", "SubscriptionStore", "open_store"]
