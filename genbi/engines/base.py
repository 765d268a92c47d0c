import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Set, Tuple

from sqlalchemy import create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.pool import QueuePool

from .. import errors
from ..connections.secrets import redact
from ..models import EngineKind


# (table, column, declared type, nullable) in table then ordinal order
CatalogRow = Tuple[str, str, str, bool]

PLAIN = {"no_parameters": True}


@dataclass
class RawResult:
    """Rows exactly as the driver returned them, before normalization."""

    columns: List[str]
    rows: List[Tuple[Any, ...]]
    truncated: bool = False
    boolean_columns: Set[int] = field(default_factory=set)


class EngineAdapter(Protocol):
    """Capability surface every engine variant provides."""

    kind: EngineKind

    def open(self) -> None:
        """Create the connection pool (idempotent)."""

    def ping(self) -> None:
        """Round-trip a trivial statement; raise ConnectionError on failure."""

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_rows: int = 1000,
    ) -> RawResult:
        """Run one read-only statement and fetch at most ``max_rows`` rows."""

    def fetch_catalog(self) -> List[CatalogRow]:
        """Enumerate tables and columns through engine catalog queries."""

    def close(self) -> None:
        """Dispose the pool; checked-out connections are closed on return."""


class PooledEngine:
    """Bounded SQLAlchemy pool shared by the engine adapters."""

    def __init__(
        self,
        url: URL,
        pool_size: int = 5,
        pool_timeout: float = 30.0,
        pool_recycle: int = 1800,
        connect_args: Optional[Dict[str, Any]] = None,
        on_connect: Optional[Callable[[Any, Any], None]] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url
        self.pool_size = pool_size
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.connect_args = connect_args or {}
        self.on_connect = on_connect
        self.engine: Optional[Engine] = None
        self._lock = threading.Lock()
        # QueuePool waits a fixed pool_timeout; this gate lets each checkout wait less
        self._slots = threading.BoundedSemaphore(pool_size)

    @property
    def display_url(self) -> str:
        return self.url.render_as_string(hide_password=True)

    def redact(self, message: Any) -> str:
        return redact(str(message), [self.url.password] if self.url.password else [])

    def open(self) -> Engine:
        with self._lock:
            if self.engine is None:
                self.engine = create_engine(
                    self.url,
                    poolclass=QueuePool,
                    pool_size=self.pool_size,
                    max_overflow=0,
                    pool_timeout=self.pool_timeout,
                    pool_recycle=self.pool_recycle,
                    pool_pre_ping=True,
                    hide_parameters=True,
                    connect_args=self.connect_args,
                )
                if self.on_connect is not None:
                    event.listen(self.engine, "connect", self.on_connect)
                self.logger.info(f"Created connection pool for {self.display_url} (size={self.pool_size})")
            return self.engine

    @contextmanager
    def connect(self, timeout: Optional[float] = None) -> Iterator[Connection]:
        """Check out a connection; one that fails mid-use is discarded, not pooled.

        Args:
            timeout: Request timeout; the checkout waits at most
                ``min(pool_timeout, timeout)`` for a free connection
        """
        wait = self.pool_timeout if not timeout else min(self.pool_timeout, timeout)
        engine = self.open()
        if not self._slots.acquire(timeout=wait):
            raise errors.PoolTimeoutError(
                f"No pooled connection became available within {wait}s"
            )
        try:
            try:
                conn = engine.connect()
            except sa_exc.TimeoutError:
                raise errors.PoolTimeoutError(
                    f"No pooled connection became available within {wait}s"
                )
            except sa_exc.DBAPIError as e:
                raise errors.ConnectionError(
                    f"Failed to connect to {self.display_url}: {self.redact(e.orig)}"
                )
            try:
                yield conn
            except BaseException:
                conn.invalidate()
                raise
            finally:
                conn.close()
        finally:
            self._slots.release()

    def ping(self) -> None:
        with self.connect() as conn:
            try:
                conn.exec_driver_sql("SELECT 1", execution_options=PLAIN).scalar()
                conn.rollback()
            except sa_exc.DBAPIError as e:
                raise errors.ConnectionError(
                    f"Ping failed for {self.display_url}: {self.redact(e.orig)}"
                )

    def dispose(self) -> None:
        with self._lock:
            if self.engine is not None:
                self.engine.dispose()
                self.engine = None
                self.logger.info(f"Disposed connection pool for {self.display_url}")


def run_read_only(
    pool: PooledEngine,
    sql: str,
    params: Optional[Dict[str, Any]],
    max_rows: int,
    timeout: Optional[float],
    prepare: Optional[Callable[[Connection, Optional[float]], None]] = None,
    cancel: Optional[Callable[[Any], None]] = None,
    is_timeout: Callable[[sa_exc.DBAPIError], bool] = lambda e: False,
    describe_booleans: Optional[Callable[[Any], Set[int]]] = None,
) -> RawResult:
    """Execute one statement on a pooled connection.

    Args:
        pool: Pool to check the connection out of
        sql: Statement text; ``:pN`` placeholders when params are given
        params: Bind values keyed by placeholder name
        max_rows: Row cap; one extra row is fetched to detect truncation
        timeout: Seconds before the statement is cancelled
        prepare: Engine hook run before the statement (session limits)
        cancel: Client-side cancellation for engines without a server limit
        is_timeout: Recognizes the engine's "statement cancelled" errors
        describe_booleans: Maps a cursor description to boolean column indexes

    Returns:
        RawResult with driver-native values
    """
    fired = threading.Event()
    timer = None
    with pool.connect(timeout) as conn:
        try:
            if prepare is not None:
                prepare(conn, timeout)
            if cancel is not None and timeout:
                dbapi_conn = conn.connection.dbapi_connection

                def _cancel():
                    fired.set()
                    cancel(dbapi_conn)

                timer = threading.Timer(timeout, _cancel)
                timer.daemon = True
                timer.start()

            if params:
                result = conn.execute(text(sql), params)
            else:
                result = conn.exec_driver_sql(sql, execution_options=PLAIN)

            cursor = getattr(result, "cursor", None)
            description = cursor.description if cursor is not None else None
            columns = list(result.keys())
            rows = [tuple(row) for row in result.fetchmany(max_rows + 1)]
            result.close()
        except sa_exc.DBAPIError as e:
            if fired.is_set() or is_timeout(e):
                raise errors.TimeoutError(f"Statement cancelled after {timeout}s") from e
            raise errors.ExecutionError(pool.redact(e.orig)) from e
        finally:
            if timer is not None:
                timer.cancel()

        if fired.is_set():
            # the interrupt may land after the last fetch; never pool that connection
            conn.invalidate()
        else:
            conn.rollback()

    booleans = describe_booleans(description) if describe_booleans and description else set()
    return RawResult(
        columns=columns,
        rows=rows[:max_rows],
        truncated=len(rows) > max_rows,
        boolean_columns=booleans,
    )


def network_url(
    drivername: str,
    params: Dict[str, Any],
    secret: Optional[str],
    default_port: int,
    query: Optional[Dict[str, str]] = None,
) -> URL:
    """Build a driver URL from either a ``url`` parameter or discrete fields."""
    if params.get("url"):
        url = make_url(params["url"]).set(drivername=drivername)
    else:
        url = URL.create(
            drivername,
            username=params.get("user"),
            host=params.get("host"),
            port=int(params.get("port") or default_port),
            database=params.get("database"),
            query=query or {},
        )
    if secret is not None:
        url = url.set(password=secret)
    return url
