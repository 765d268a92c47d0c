import logging
import os
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import URL

from .. import errors
from ..models import EngineKind
from .base import PLAIN, CatalogRow, PooledEngine, RawResult, run_read_only


class SQLiteAdapter:
    """SQLite file databases, opened in read-only URI mode."""

    kind = EngineKind.SQLITE

    def __init__(
        self,
        params: Dict[str, Any],
        secret: Optional[str] = None,
        pool_size: int = 5,
        pool_timeout: float = 30.0,
        pool_recycle: int = 1800,
    ):
        self.logger = logging.getLogger(__name__)
        path = params.get("path") or params.get("database")
        if not path:
            raise errors.ValidationError("SQLite database path is required")
        self.path = os.path.abspath(os.path.expanduser(str(path)))
        url = URL.create(
            "sqlite+pysqlite",
            database=f"file:{self.path}",
            query={"mode": "ro", "uri": "true"},
        )
        self._pool = PooledEngine(
            url,
            pool_size=pool_size,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            connect_args={"check_same_thread": False},
            on_connect=self._on_connect,
        )

    @staticmethod
    def _on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA query_only = ON")
        cursor.close()

    @staticmethod
    def _interrupt(dbapi_conn):
        dbapi_conn.interrupt()

    @staticmethod
    def _is_timeout(error) -> bool:
        return "interrupted" in str(error.orig).lower()

    def open(self) -> None:
        if not os.path.exists(self.path):
            # sqlite would otherwise report a bare "unable to open database file"
            raise errors.ConnectionError(f"SQLite database file not found: {self.path}")
        self._pool.open()

    def ping(self) -> None:
        self.open()
        self._pool.ping()

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_rows: int = 1000,
    ) -> RawResult:
        self.open()
        return run_read_only(
            self._pool,
            sql,
            params,
            max_rows=max_rows,
            timeout=timeout,
            cancel=self._interrupt,
            is_timeout=self._is_timeout,
        )

    def fetch_catalog(self) -> List[CatalogRow]:
        self.open()
        rows: List[CatalogRow] = []
        with self._pool.connect() as conn:
            tables = [
                r[0]
                for r in conn.exec_driver_sql(
                    "SELECT name FROM sqlite_master "
                    "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
                    "ORDER BY name",
                    execution_options=PLAIN,
                )
            ]
            for table in tables:
                quoted = table.replace('"', '""')
                info = conn.exec_driver_sql(f'PRAGMA table_info("{quoted}")', execution_options=PLAIN)
                for _cid, name, declared_type, notnull, _default, _pk in info:
                    rows.append((table, name, declared_type or "", not notnull))
            conn.rollback()
        self.logger.info(f"Read SQLite catalog: {len(tables)} tables")
        return rows

    def close(self) -> None:
        self._pool.dispose()
