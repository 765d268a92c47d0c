import logging
from typing import Any, Dict, List, Optional

from .. import errors
from ..models import EngineKind
from .base import PLAIN, CatalogRow, PooledEngine, RawResult, network_url, run_read_only


QUERY_CANCELED = "57014"

CATALOG_SQL = """
SELECT table_name, column_name, data_type, is_nullable
FROM information_schema.columns
WHERE table_schema = current_schema()
ORDER BY table_name, ordinal_position
"""


class PostgresAdapter:
    """PostgreSQL through psycopg2; every session defaults to read-only transactions."""

    kind = EngineKind.POSTGRES

    def __init__(
        self,
        params: Dict[str, Any],
        secret: Optional[str] = None,
        pool_size: int = 5,
        pool_timeout: float = 30.0,
        pool_recycle: int = 1800,
    ):
        self.logger = logging.getLogger(__name__)
        url = network_url("postgresql+psycopg2", params, secret, 5432)
        self._pool = PooledEngine(
            url,
            pool_size=pool_size,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            on_connect=self._on_connect,
        )

    @staticmethod
    def _on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY")
        cursor.close()
        dbapi_conn.commit()

    @staticmethod
    def _prepare(conn, timeout: Optional[float]) -> None:
        # SET LOCAL lasts until the rollback that ends run_read_only
        if timeout:
            conn.exec_driver_sql(
                f"SET LOCAL statement_timeout = {int(timeout * 1000)}",
                execution_options=PLAIN,
            )

    @staticmethod
    def _is_timeout(error) -> bool:
        return getattr(error.orig, "pgcode", None) == QUERY_CANCELED

    def open(self) -> None:
        self._pool.open()

    def ping(self) -> None:
        self._pool.ping()

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_rows: int = 1000,
    ) -> RawResult:
        return run_read_only(
            self._pool,
            sql,
            params,
            max_rows=max_rows,
            timeout=timeout,
            prepare=self._prepare,
            is_timeout=self._is_timeout,
        )

    def fetch_catalog(self) -> List[CatalogRow]:
        with self._pool.connect() as conn:
            try:
                result = conn.exec_driver_sql(CATALOG_SQL, execution_options=PLAIN)
                rows = [
                    (table, column, data_type or "", nullable == "YES")
                    for table, column, data_type, nullable in result
                ]
                conn.rollback()
            except Exception as e:
                raise errors.IntrospectionError(f"Postgres catalog query failed: {self._pool.redact(e)}")
        self.logger.info(f"Read Postgres catalog: {len({r[0] for r in rows})} tables")
        return rows

    def close(self) -> None:
        self._pool.dispose()
