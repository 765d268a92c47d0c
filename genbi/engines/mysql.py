import logging
from typing import Any, Dict, List, Optional, Set

from pymysql.constants import FIELD_TYPE

from .. import errors
from ..models import EngineKind
from .base import PLAIN, CatalogRow, PooledEngine, RawResult, network_url, run_read_only


# ER_QUERY_TIMEOUT (MAX_EXECUTION_TIME exceeded), ER_QUERY_INTERRUPTED
TIMEOUT_CODES = {3024, 1317}

CATALOG_SQL = """
SELECT c.table_name, c.column_name, c.column_type, c.is_nullable
FROM information_schema.columns c
JOIN information_schema.tables t
  ON t.table_schema = c.table_schema AND t.table_name = c.table_name
WHERE c.table_schema = DATABASE()
  AND t.table_type IN ('BASE TABLE', 'VIEW')
ORDER BY c.table_name, c.ordinal_position
"""


class MySQLAdapter:
    """MySQL and MariaDB through PyMySQL, with a read-only session."""

    kind = EngineKind.MYSQL

    def __init__(
        self,
        params: Dict[str, Any],
        secret: Optional[str] = None,
        pool_size: int = 5,
        pool_timeout: float = 30.0,
        pool_recycle: int = 1800,
    ):
        self.logger = logging.getLogger(__name__)
        url = network_url("mysql+pymysql", params, secret, 3306, query={"charset": "utf8mb4"})
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
        cursor.execute("SET SESSION TRANSACTION READ ONLY")
        cursor.close()

    @staticmethod
    def _prepare(conn, timeout: Optional[float]) -> None:
        # MAX_EXECUTION_TIME only applies to SELECT, which is all we run
        if timeout:
            conn.exec_driver_sql(
                f"SET SESSION MAX_EXECUTION_TIME = {int(timeout * 1000)}",
                execution_options=PLAIN,
            )

    @staticmethod
    def _is_timeout(error) -> bool:
        args = getattr(error.orig, "args", ())
        return bool(args) and args[0] in TIMEOUT_CODES

    @staticmethod
    def _describe_booleans(description) -> Set[int]:
        """TINYINT(1) is how MySQL spells BOOLEAN."""
        return {
            index
            for index, column in enumerate(description)
            if column[1] == FIELD_TYPE.TINY and column[3] == 1
        }

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
            describe_booleans=self._describe_booleans,
        )

    def fetch_catalog(self) -> List[CatalogRow]:
        with self._pool.connect() as conn:
            try:
                result = conn.exec_driver_sql(CATALOG_SQL, execution_options=PLAIN)
                rows = [
                    (table, column, column_type or "", str(nullable).upper() == "YES")
                    for table, column, column_type, nullable in result
                ]
                conn.rollback()
            except Exception as e:
                raise errors.IntrospectionError(f"MySQL catalog query failed: {self._pool.redact(e)}")
        self.logger.info(f"Read MySQL catalog: {len({r[0] for r in rows})} tables")
        return rows

    def close(self) -> None:
        self._pool.dispose()
