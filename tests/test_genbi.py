import pytest

from genbi import errors
from genbi.genbi import GenBI
from genbi.translation import RuleBasedGenerator


class StaticGenerator:
    def __init__(self, sql):
        self.sql = sql

    def generate(self, text, engine, schema):
        return self.sql


def test_rules_provider_selects_rule_generator(service):
    assert isinstance(service.translator.generator, RuleBasedGenerator)


def test_unknown_provider(test_settings):
    with pytest.raises(errors.ValidationError):
        GenBI(config=test_settings.model_copy(update={"llm_provider": "crystal-ball"}))


def test_ask_returns_everything_the_client_needs(service, connection):
    outcome = service.ask("Show me all users older than 30", connection_id=connection.id)
    data = outcome.to_dict()
    assert data["sqlQuery"] == "SELECT * FROM users WHERE age > 30"
    assert [row["name"] for row in data["results"]] == ["Bob Johnson", "Alice Brown"]
    assert [c["name"] for c in data["columns"]] == ["id", "name", "email", "age", "active"]
    assert data["results"][0]["active"] is True
    assert data["visualization"]["chartType"] == "table"


def test_missing_schema_degrades_confidence(test_settings, sample_db, monkeypatch):
    genbi = GenBI(config=test_settings, generator=StaticGenerator("SELECT name FROM users"))
    try:
        registered = genbi.register_connection("demo", "sqlite", {"path": sample_db})

        def unavailable(connection_id, refresh=False):
            raise errors.IntrospectionError("catalog unavailable")

        monkeypatch.setattr(genbi.introspector, "introspect", unavailable)
        outcome = genbi.ask("list the user names", connection_id=registered.id)
        assert outcome.translated.confidence == "low"
        assert outcome.result.row_count == 4
    finally:
        genbi.close()


def test_ask_requires_a_target(service):
    with pytest.raises(errors.ValidationError):
        service.ask("Show me all users older than 30")
