import pytest
from sqlalchemy.exc import OperationalError

from genbi import errors
from genbi.models import EngineKind


class BrokenAdapter:
    kind = EngineKind.SQLITE

    def fetch_catalog(self):
        raise OperationalError("SELECT ...", {}, Exception("catalog unavailable"))


def test_snapshot_lists_tables_and_columns(service, connection):
    snapshot = service.get_schema(connection.id)
    assert snapshot.table_names == ["sales", "users"]

    users = snapshot.table("users")
    assert users.column_names == ["id", "name", "email", "age", "active"]
    assert users.column("name").nullable is False
    assert users.column("email").nullable is True
    assert users.column("age").declared_type == "INTEGER"


def test_snapshots_are_cached_until_refresh(service, connection):
    first = service.get_schema(connection.id)
    assert service.get_schema(connection.id) is first
    refreshed = service.get_schema(connection.id, refresh=True)
    assert refreshed is not first
    assert refreshed.fingerprint() == first.fingerprint()


def test_connection_change_invalidates(service, connection):
    service.get_schema(connection.id)
    service.update_connection(connection.id, name="renamed")
    assert service.introspector.cached(connection.id) is None


def test_catalog_failures_are_introspection_errors(service):
    with pytest.raises(errors.IntrospectionError):
        service.introspector.snapshot_for(BrokenAdapter(), "broken")


def test_unknown_connection(service):
    with pytest.raises(errors.NotFoundError):
        service.get_schema("missing")
