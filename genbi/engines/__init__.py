"""
Engine adapters: one class per database kind behind a common protocol.
"""

from typing import Any, Dict, Optional

from ..models import EngineKind
from .base import EngineAdapter, PooledEngine, RawResult
from .mysql import MySQLAdapter
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

ADAPTERS = {
    EngineKind.SQLITE: SQLiteAdapter,
    EngineKind.MYSQL: MySQLAdapter,
    EngineKind.POSTGRES: PostgresAdapter,
}


def create_adapter(
    engine: EngineKind,
    params: Dict[str, Any],
    secret: Optional[str] = None,
    pool_size: int = 5,
    pool_timeout: float = 30.0,
    pool_recycle: int = 1800,
) -> EngineAdapter:
    """Build the adapter for ``engine``; no connection is made until ``open``."""
    adapter_class = ADAPTERS[EngineKind.parse(engine)]
    return adapter_class(
        params,
        secret=secret,
        pool_size=pool_size,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )


__all__ = [
    "EngineAdapter",
    "PooledEngine",
    "RawResult",
    "SQLiteAdapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "create_adapter",
]
