import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..config import Settings, settings as default_settings
from ..engines import EngineAdapter
from ..errors import ValidationError
from ..models import ResultSet, SchemaSnapshot, TranslatedQuery
from ..translation.guard import SQLGuard
from .cache import ResultCache
from .normalize import build_result_set, schema_boolean_columns


@dataclass(frozen=True)
class ExecutionOptions:
    max_rows: int = 1000
    timeout: Optional[float] = 30.0

    @classmethod
    def from_settings(cls, config: Settings) -> "ExecutionOptions":
        return cls(max_rows=config.max_rows, timeout=config.query_timeout)


class QueryExecutor:
    """Runs translated statements through an engine adapter and normalizes the rows."""

    def __init__(self, guard: Optional[SQLGuard] = None, config: Optional[Settings] = None):
        self.logger = logging.getLogger(__name__)
        self.guard = guard or SQLGuard()
        self.config = config or default_settings
        self.cache = ResultCache(self.config.result_cache_size, self.config.result_cache_ttl)

    def execute(
        self,
        translated: TranslatedQuery,
        adapter: EngineAdapter,
        options: Optional[ExecutionOptions] = None,
        schema: Optional[SchemaSnapshot] = None,
        cache_key: Optional[str] = None,
        refresh_cache: bool = False,
    ) -> ResultSet:
        """
        Execute one translated statement.

        Args:
            translated: Statement produced by the translator (or loaded from a saved query)
            adapter: Open adapter for the target connection
            options: Row cap and timeout; settings defaults when omitted
            schema: Used only to recognize boolean columns stored as integers
            cache_key: Connection identity for the result cache; no caching when omitted
            refresh_cache: Skip the cached entry but store the fresh result

        Returns:
            ResultSet in the statement's column order

        Raises:
            ValidationError: Engine kind mismatch or a non-positive row cap
            UnsafeQueryError: The statement no longer passes the guard
            TimeoutError: The statement was cancelled
            ExecutionError: The engine rejected the statement
        """
        options = options or ExecutionOptions.from_settings(self.config)
        if options.max_rows < 1:
            raise ValidationError("max_rows must be at least 1")
        if translated.engine != adapter.kind:
            raise ValidationError(
                f"Query was translated for {translated.engine.value} "
                f"but the connection is {adapter.kind.value}"
            )

        # stored statements are re-checked too; they may predate a guard change
        sql = self.guard.check(translated.sql, translated.engine)

        params = translated.bind_params() or None
        key = None
        if cache_key is not None:
            key = self.cache.key(cache_key, sql, params, options.max_rows)
            if not refresh_cache:
                cached = self.cache.get(key)
                if cached is not None:
                    self.logger.info(f"Result cache hit for {cache_key}")
                    return cached

        started = time.monotonic()
        raw = adapter.query(
            sql,
            params=params,
            timeout=options.timeout,
            max_rows=options.max_rows,
        )
        elapsed = time.monotonic() - started

        booleans = set(raw.boolean_columns) | schema_boolean_columns(raw.columns, schema)
        result = build_result_set(raw.columns, raw.rows, raw.truncated, booleans)
        self.logger.info(
            f"Executed on {adapter.kind.value} in {elapsed:.3f}s: "
            f"{result.row_count} rows{' (truncated)' if result.truncated else ''}"
        )
        if key is not None:
            self.cache.put(key, result)
        return result

    def invalidate(self, connection_id: str) -> None:
        """Forget cached results for a connection that changed or went away."""
        self.cache.invalidate(connection_id)
