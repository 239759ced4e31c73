"""
schemabridge/adapters/__init__.py
---------------------------------
Adapter registry. Engines are looked up by their short name::

    source = create_adapter("sqlite", read_only=True)
    target = create_adapter("mysql")
"""
from __future__ import annotations

from typing import Any

from schemabridge.adapters.base import (
    DatabaseAdapter,
    InsertResult,
    ReadOnlyAdapter,
    Row,
    StreamOptions,
)
from schemabridge.adapters.mysql import MySQLAdapter
from schemabridge.adapters.sqlite import ReadOnlySQLiteAdapter, SQLiteAdapter

_REGISTRY: dict[str, type[DatabaseAdapter]] = {
    "mysql": MySQLAdapter,
    "sqlite": SQLiteAdapter,
}
_READ_ONLY: dict[str, type[DatabaseAdapter]] = {
    "sqlite": ReadOnlySQLiteAdapter,
}


def available_adapters() -> list[str]:
    return sorted(_REGISTRY)


def create_adapter(name: str, read_only: bool = False, **kwargs: Any) -> DatabaseAdapter:
    """Instantiate the adapter registered under *name* (case-insensitive)."""
    key = name.lower()
    registry = _READ_ONLY if read_only else _REGISTRY
    try:
        cls = registry[key]
    except KeyError:
        if key in _REGISTRY:
            raise ValueError(f"Adapter '{name}' has no read-only variant.") from None
        raise ValueError(
            f"Unknown adapter '{name}'. Available: {', '.join(available_adapters())}"
        ) from None
    return cls(**kwargs)


__all__ = [
    "DatabaseAdapter",
    "InsertResult",
    "MySQLAdapter",
    "ReadOnlyAdapter",
    "ReadOnlySQLiteAdapter",
    "Row",
    "SQLiteAdapter",
    "StreamOptions",
    "available_adapters",
    "create_adapter",
]
