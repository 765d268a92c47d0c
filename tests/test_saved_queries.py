import sqlite3
import threading
import time

import pytest

from genbi import errors
from genbi.models import ChartKind, SemanticType


QUESTION = "What is the total amount of sales by region?"


@pytest.fixture
def saved(service, connection):
    outcome = service.ask(QUESTION, connection_id=connection.id)
    return service.save_outcome("Sales by region", outcome, connection.id)


def test_save_and_load(service, connection, saved):
    loaded = service.get_query(saved.id)
    assert loaded.name == "Sales by region"
    assert loaded.text == QUESTION
    assert loaded.translated.sql == saved.translated.sql
    assert loaded.visualization.chart_type == ChartKind.BAR
    assert [dict(r) for r in loaded.result.rows] == [dict(r) for r in saved.result.rows]
    assert loaded.last_refreshed_at is None
    assert [q.id for q in service.list_queries()] == [saved.id]


def test_transport_shape_embeds_json(saved):
    data = saved.to_dict()
    assert isinstance(data["results"], str)
    assert isinstance(data["visualizationConfig"], str)
    assert data["chartType"] == "bar"
    assert data["databaseType"] == "sqlite"


def test_rename(service, saved):
    assert service.rename_query(saved.id, "Regional sales").name == "Regional sales"
    with pytest.raises(errors.ValidationError):
        service.rename_query(saved.id, " ")
    with pytest.raises(errors.NotFoundError):
        service.rename_query("missing", "x")


def test_refresh_is_idempotent(service, saved):
    first = service.refresh_query(saved.id)
    second = service.refresh_query(saved.id)
    assert first.last_refreshed_at is not None
    assert second.last_refreshed_at >= first.last_refreshed_at
    assert [dict(r) for r in first.result.rows] == [dict(r) for r in second.result.rows]
    assert second.translated.sql == saved.translated.sql
    assert second.name == saved.name


def test_refresh_sees_new_data(service, sample_db, saved):
    conn = sqlite3.connect(sample_db)
    conn.execute("INSERT INTO sales VALUES (6, 'West', '2024-01-06', 10.0)")
    conn.commit()
    conn.close()

    refreshed = service.refresh_query(saved.id)
    regions = [row["region"] for row in refreshed.result.rows]
    assert regions == ["East", "North", "South", "West"]
    assert service.get_query(saved.id).result.row_count == 4


def test_refresh_keeps_boolean_column_types(service, connection):
    outcome = service.ask("Show me all users older than 30", connection_id=connection.id)
    saved = service.save_outcome("Older users", outcome, connection.id)
    refreshed = service.refresh_query(saved.id)

    before = [c.semantic_type for c in saved.result.columns]
    after = [c.semantic_type for c in refreshed.result.columns]
    assert after == before
    assert refreshed.result.columns[refreshed.result.column_names.index("active")].semantic_type == SemanticType.BOOLEAN
    assert [row["active"] for row in refreshed.result.rows] == [True, True]


def test_refresh_bypasses_cached_answers(service, connection, sample_db, saved):
    conn = sqlite3.connect(sample_db)
    conn.execute("INSERT INTO sales VALUES (6, 'West', '2024-01-06', 10.0)")
    conn.commit()
    conn.close()

    # asking again within the cache lifetime returns the earlier answer
    assert service.ask(QUESTION, connection_id=connection.id).result.row_count == 3
    assert service.refresh_query(saved.id).result.row_count == 4
    # the refreshed result replaces the cached one
    assert service.ask(QUESTION, connection_id=connection.id).result.row_count == 4


def test_concurrent_refresh_is_rejected(service, saved):
    with service.saved_queries.locks.hold(saved.id):
        with pytest.raises(errors.ConflictError):
            service.refresh_query(saved.id, policy="reject")


def test_wait_policy_queues_behind_holder(service, saved):
    outcome = {}

    def refresh():
        outcome["query"] = service.refresh_query(saved.id, policy="wait")

    with service.saved_queries.locks.hold(saved.id):
        thread = threading.Thread(target=refresh)
        thread.start()
        time.sleep(0.1)
        assert "query" not in outcome
    thread.join(5)
    assert outcome["query"].last_refreshed_at is not None


def test_unknown_refresh_policy(service, saved):
    with pytest.raises(errors.ValidationError):
        service.refresh_query(saved.id, policy="sometimes")


def test_connection_in_use_cannot_be_removed(service, connection, saved):
    with pytest.raises(errors.ReferentialError) as exc:
        service.remove_connection(connection.id)
    assert exc.value.details["savedQueryIds"] == [saved.id]


def test_force_delete_leaves_dangling_query(service, connection, saved):
    refreshed = service.refresh_query(saved.id)
    assert service.remove_connection(connection.id, force=True) == 1
    dangling = service.get_query(saved.id)
    assert dangling.dangling is True
    with pytest.raises(errors.ReferentialError):
        service.refresh_query(saved.id)

    # the failed refresh leaves the stored result untouched
    after = service.get_query(saved.id)
    assert after.last_refreshed_at == refreshed.last_refreshed_at
    assert [dict(r) for r in after.result.rows] == [dict(r) for r in refreshed.result.rows]
    assert after.result.column_names == refreshed.result.column_names


def test_delete_is_idempotent(service, saved):
    assert service.delete_query(saved.id) is True
    assert service.delete_query(saved.id) is False
    with pytest.raises(errors.NotFoundError):
        service.get_query(saved.id)


def test_save_requires_known_connection(service, connection, saved):
    outcome = service.ask(QUESTION, connection_id=connection.id)
    with pytest.raises(errors.NotFoundError):
        service.save_outcome("orphan", outcome, "missing")
    with pytest.raises(errors.ValidationError):
        service.save_outcome("", outcome, connection.id)


def test_client_sql_is_guarded_on_save(service, connection):
    with pytest.raises(errors.UnsafeQueryError):
        service.save_query("bad", "drop everything", "DROP TABLE users", connection.id)

    saved = service.save_query(
        "names",
        "user names",
        "SELECT name, age FROM users",
        connection.id,
        rows=[{"name": "John Doe", "age": 30}],
    )
    assert saved.result.column_names == ["name", "age"]
    assert saved.visualization.chart_type == ChartKind.BAR
