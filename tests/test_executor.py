import sqlite3
import time
from datetime import date, datetime
from decimal import Decimal

import pytest

from genbi.engines import SQLiteAdapter
from genbi.engines.base import run_read_only
from genbi.errors import ExecutionError, PoolTimeoutError, TimeoutError, UnsafeQueryError, ValidationError
from genbi.execution import ExecutionOptions, QueryExecutor, ResultCache, build_result_set, result_set_from_rows
from genbi.models import EngineKind, SemanticType, TranslatedQuery


@pytest.fixture
def adapter(sample_db):
    adapter = SQLiteAdapter({"path": sample_db})
    adapter.open()
    yield adapter
    adapter.close()


@pytest.fixture
def executor(test_settings):
    return QueryExecutor(config=test_settings)


def query(sql, engine=EngineKind.SQLITE):
    return TranslatedQuery(text="test", engine=engine, sql=sql)


RUNAWAY_SQL = (
    "WITH RECURSIVE seq(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM seq) "
    "SELECT COUNT(*) FROM seq"
)


def add_user(path, name):
    conn = sqlite3.connect(path)
    conn.execute("INSERT INTO users (name, email, age, active) VALUES (?, ?, 50, 1)", (name, f"{name}@example.com"))
    conn.commit()
    conn.close()


def test_rows_keep_column_order(executor, adapter):
    result = executor.execute(query("SELECT name, age FROM users WHERE age > 30 ORDER BY age DESC"), adapter)
    assert result.column_names == ["name", "age"]
    assert [row["age"] for row in result.rows] == [40, 35]
    assert [c.semantic_type for c in result.columns] == [SemanticType.STRING, SemanticType.NUMBER]
    assert result.truncated is False


def test_row_cap_marks_truncation(executor, adapter):
    result = executor.execute(query("SELECT * FROM users"), adapter, ExecutionOptions(max_rows=2))
    assert result.row_count == 2
    assert result.truncated is True


def test_exact_row_count_is_not_truncated(executor, adapter):
    result = executor.execute(query("SELECT * FROM users"), adapter, ExecutionOptions(max_rows=4))
    assert result.row_count == 4
    assert result.truncated is False


def test_invalid_row_cap(executor, adapter):
    with pytest.raises(ValidationError):
        executor.execute(query("SELECT * FROM users"), adapter, ExecutionOptions(max_rows=0))


def test_engine_mismatch(executor, adapter):
    with pytest.raises(ValidationError):
        executor.execute(query("SELECT * FROM users", EngineKind.POSTGRES), adapter)


def test_statement_is_guarded_again(executor, adapter):
    with pytest.raises(UnsafeQueryError):
        executor.execute(query("DELETE FROM users"), adapter)


def test_engine_errors_are_typed(executor, adapter):
    with pytest.raises(ExecutionError):
        executor.execute(query("SELECT missing_column FROM users"), adapter)


def test_bound_parameters(executor, adapter):
    translated = TranslatedQuery(
        text="test", engine=EngineKind.SQLITE, sql="SELECT name FROM users WHERE age > :p1", params=(34,)
    )
    result = executor.execute(translated, adapter)
    assert sorted(row["name"] for row in result.rows) == ["Alice Brown", "Bob Johnson"]


def test_boolean_columns_from_schema(executor, adapter, users_schema):
    result = executor.execute(query("SELECT name, active FROM users ORDER BY id"), adapter, schema=users_schema)
    assert [row["active"] for row in result.rows] == [True, False, True, True]
    assert result.columns[1].semantic_type == SemanticType.BOOLEAN


def test_connection_stays_read_only(adapter):
    # the adapter bypasses the guard here; the engine itself must refuse
    with pytest.raises(ExecutionError):
        run_read_only(adapter._pool, "DELETE FROM users", None, max_rows=1, timeout=None)


def test_build_result_set_normalizes_values():
    result = build_result_set(
        ["id", "id", "price", "day", "at"],
        [(1, 2, Decimal("9.50"), date(2024, 1, 2), datetime(2024, 1, 2, 3, 4, 5))],
    )
    assert result.column_names == ["id", "id_1", "price", "day", "at"]
    row = result.rows[0]
    assert row["price"] == 9.5
    assert row["day"] == "2024-01-02"
    assert row["at"] == "2024-01-02T03:04:05"
    assert result.columns[3].semantic_type == SemanticType.DATE


def test_result_set_from_rows():
    result = result_set_from_rows([{"name": "a", "value": 1}, {"name": "b", "value": 2}])
    assert result.column_names == ["name", "value"]
    assert [c.semantic_type for c in result.columns] == [SemanticType.STRING, SemanticType.NUMBER]


def test_statement_timeout_discards_connection(executor, adapter):
    with pytest.raises(TimeoutError):
        executor.execute(query(RUNAWAY_SQL), adapter, ExecutionOptions(timeout=0.3))

    # the interrupted connection was invalidated; the pool still serves queries
    result = executor.execute(query("SELECT 1 AS ok"), adapter)
    assert list(result.rows) == [{"ok": 1}]


def test_exhausted_pool_times_out(executor, sample_db):
    adapter = SQLiteAdapter({"path": sample_db}, pool_size=1, pool_timeout=0.2)
    adapter.open()
    try:
        with adapter._pool.connect():
            with pytest.raises(PoolTimeoutError):
                executor.execute(query("SELECT 1 AS ok"), adapter)
        assert executor.execute(query("SELECT 1 AS ok"), adapter).row_count == 1
    finally:
        adapter.close()


def test_pool_wait_is_bounded_by_request_timeout(executor, sample_db):
    adapter = SQLiteAdapter({"path": sample_db}, pool_size=1, pool_timeout=30.0)
    adapter.open()
    try:
        with adapter._pool.connect():
            started = time.monotonic()
            with pytest.raises(PoolTimeoutError):
                executor.execute(query("SELECT 1 AS ok"), adapter, ExecutionOptions(timeout=0.2))
            assert time.monotonic() - started < 5
    finally:
        adapter.close()


def test_results_are_cached_per_connection(executor, adapter, sample_db):
    first = executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1")
    add_user(sample_db, "Carol White")

    assert executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1") is first
    assert executor.execute(query("SELECT name FROM users"), adapter).row_count == 5

    fresh = executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1", refresh_cache=True)
    assert fresh.row_count == 5
    assert executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1") is fresh


def test_cache_key_includes_row_cap_and_params(executor, adapter):
    executor.execute(query("SELECT name FROM users"), adapter, ExecutionOptions(max_rows=2), cache_key="conn-1")
    result = executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1")
    assert result.row_count == 4

    older = TranslatedQuery(text="test", engine=EngineKind.SQLITE, sql="SELECT name FROM users WHERE age > :p1", params=(34,))
    younger = TranslatedQuery(text="test", engine=EngineKind.SQLITE, sql="SELECT name FROM users WHERE age > :p1", params=(20,))
    assert executor.execute(older, adapter, cache_key="conn-1").row_count == 2
    assert executor.execute(younger, adapter, cache_key="conn-1").row_count == 4


def test_invalidate_drops_cached_results(executor, adapter, sample_db):
    executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1")
    add_user(sample_db, "Carol White")
    executor.invalidate("conn-1")
    assert executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1").row_count == 5


def test_disabled_cache_always_executes(test_settings, adapter, sample_db):
    executor = QueryExecutor(config=test_settings.model_copy(update={"result_cache_size": 0}))
    executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1")
    add_user(sample_db, "Carol White")
    assert executor.execute(query("SELECT name FROM users"), adapter, cache_key="conn-1").row_count == 5
    assert len(executor.cache) == 0


def test_result_cache_expiry_and_bound():
    result = result_set_from_rows([{"n": 1}])
    cache = ResultCache(max_size=2, ttl=0.05)
    cache.put(cache.key("a", "SELECT 1", None, 10), result)
    time.sleep(0.1)
    assert cache.get(cache.key("a", "SELECT 1", None, 10)) is None

    cache = ResultCache(max_size=2, ttl=60)
    for sql in ("SELECT 1", "SELECT 2", "SELECT 3"):
        cache.put(cache.key("a", sql, None, 10), result)
    assert len(cache) == 2
    assert cache.get(cache.key("a", "SELECT 1", None, 10)) is None
    assert cache.get(cache.key("a", "SELECT 3", None, 10)) is result
