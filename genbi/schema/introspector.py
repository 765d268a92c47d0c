import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from .. import errors
from ..connections.registry import ConnectionRegistry
from ..engines import EngineAdapter
from ..models import ColumnInfo, SchemaSnapshot, TableInfo


class SchemaIntrospector:
    """Reads table and column metadata from live connections and caches it per connection.

    Snapshots never expire on their own. They are dropped when the registry
    reports a connection change, or replaced on an explicit refresh.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self._cache: Dict[str, SchemaSnapshot] = {}
        self._lock = threading.Lock()
        registry.subscribe(self.invalidate)

    def introspect(self, connection_id: str, refresh: bool = False) -> SchemaSnapshot:
        """
        Snapshot the schema of a registered connection.

        Args:
            connection_id: Registered connection id
            refresh: Ignore any cached snapshot

        Returns:
            SchemaSnapshot with tables and columns in catalog order

        Raises:
            NotFoundError: Unknown connection
            IntrospectionError: The catalog query failed
        """
        if not refresh:
            with self._lock:
                cached = self._cache.get(connection_id)
            if cached is not None:
                return cached
        adapter = self.registry.resolve(connection_id)
        return self.snapshot_for(adapter, connection_id, refresh=True)

    def snapshot_for(self, adapter: EngineAdapter, cache_key: str, refresh: bool = False) -> SchemaSnapshot:
        if not refresh:
            with self._lock:
                cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        snapshot = self._read_catalog(adapter)
        with self._lock:
            self._cache[cache_key] = snapshot
        self.logger.info(f"Schema snapshot for {cache_key}: {len(snapshot.tables)} tables")
        return snapshot

    def invalidate(self, connection_id: str) -> None:
        with self._lock:
            if self._cache.pop(connection_id, None) is not None:
                self.logger.debug(f"Invalidated schema snapshot for {connection_id}")

    def cached(self, connection_id: str) -> Optional[SchemaSnapshot]:
        with self._lock:
            return self._cache.get(connection_id)

    def _read_catalog(self, adapter: EngineAdapter) -> SchemaSnapshot:
        try:
            rows = adapter.fetch_catalog()
        except errors.IntrospectionError:
            raise
        except (errors.ConnectionError, errors.PoolTimeoutError) as e:
            raise errors.IntrospectionError(f"Could not read schema: {e.message}")
        except SQLAlchemyError as e:
            self.logger.error(f"Catalog query failed: {type(e).__name__}")
            raise errors.IntrospectionError(f"Catalog query failed: {type(e).__name__}")

        tables: "OrderedDict[str, list]" = OrderedDict()
        for table, column, declared_type, nullable in rows:
            tables.setdefault(table, []).append(ColumnInfo(column, declared_type, nullable))
        return SchemaSnapshot(
            tables=tuple(TableInfo(name, tuple(columns)) for name, columns in tables.items())
        )
