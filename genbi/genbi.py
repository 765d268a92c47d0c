"""
GenBI: orchestrator wiring connections, translation, execution,
visualization and saved queries together.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import errors
from .config import Settings, settings as default_settings
from .connections.registry import ConnectionRegistry
from .connections.secrets import SecretStore
from .execution import ExecutionOptions, QueryExecutor, result_set_from_rows
from .models import (
    ConnectionDescriptor,
    EngineKind,
    ResultSet,
    SavedQuery,
    SchemaSnapshot,
    TranslatedQuery,
    VisualizationSpec,
)
from .schema import SchemaIntrospector, SchemaSelector
from .storage import UserDataStore
from .storage.saved_queries import SavedQueryStore
from .translation import RuleBasedGenerator, SQLGenerator, SQLGuard, SQLTranslator
from .visualization import VisualizationRecommender


CONNECTION_TEST_SQL = "SELECT 1 AS connection_test"


@dataclass(frozen=True)
class QueryOutcome:
    translated: TranslatedQuery
    result: ResultSet
    visualization: VisualizationSpec

    def to_dict(self) -> Dict[str, Any]:
        result = self.result.to_dict()
        return {
            "results": result["rows"],
            "sqlQuery": self.translated.sql,
            "databaseType": self.translated.engine.value,
            "columns": result["columns"],
            "rowCount": result["rowCount"],
            "truncated": self.result.truncated,
            "confidence": self.translated.confidence,
            "visualization": self.visualization.to_dict(),
        }


class GenBI:
    """Main GenBI orchestrator."""

    def __init__(self, config: Optional[Settings] = None, generator: Optional[SQLGenerator] = None):
        """
        Initialize GenBI.

        Args:
            config: Settings to use instead of the environment-loaded defaults
            generator: SQL generator; chosen from ``llm_provider`` when omitted
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or default_settings

        self.secrets = SecretStore()
        self.store = UserDataStore(self.config.user_data_url)
        self.registry = ConnectionRegistry(self.store, self.secrets, self.config)
        self.introspector = SchemaIntrospector(self.registry)

        self.guard = SQLGuard()
        self.translator = SQLTranslator(
            generator or self._create_generator(),
            guard=self.guard,
            selector=SchemaSelector(self.config.schema_max_tables),
            config=self.config,
        )
        self.executor = QueryExecutor(self.guard, self.config)
        self.registry.subscribe(self.executor.invalidate)
        self.recommender = VisualizationRecommender(self.config)
        self.saved_queries = SavedQueryStore(
            self.store,
            self.registry,
            self.executor,
            self.recommender,
            self.config,
            introspector=self.introspector,
        )
        self.logger.info(f"GenBI initialized (generator: {type(self.translator.generator).__name__})")

    def _create_generator(self) -> SQLGenerator:
        provider = self.config.llm_provider.lower()
        if provider == "rules":
            return RuleBasedGenerator(selector=SchemaSelector(self.config.schema_max_tables))
        if provider == "ollama":
            # langchain is only imported when the LLM is actually used
            from .core.llm import OllamaSQLGenerator

            return OllamaSQLGenerator(self.config)
        raise errors.ValidationError(f"Unknown llm_provider: {self.config.llm_provider}")

    # -- connections -------------------------------------------------------

    def register_connection(self, name: str, engine: Any, params: Dict[str, Any]) -> ConnectionDescriptor:
        return self.registry.register(name, engine, params)

    def update_connection(
        self,
        connection_id: str,
        name: Optional[str] = None,
        engine: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ConnectionDescriptor:
        return self.registry.update(connection_id, name=name, engine=engine, params=params)

    def list_connections(self) -> List[ConnectionDescriptor]:
        return self.registry.list()

    def get_connection(self, connection_id: str) -> ConnectionDescriptor:
        return self.registry.get(connection_id)

    def remove_connection(self, connection_id: str, force: bool = False) -> int:
        return self.registry.remove(connection_id, force=force)

    def test_connection(
        self,
        engine: Any = None,
        params: Optional[Dict[str, Any]] = None,
        connection_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Test a connection descriptor, or re-test a registered connection.

        Re-testing a registered connection also takes a fresh schema snapshot.

        Returns:
            Dictionary with results, sqlQuery and databaseType
        """
        if connection_id:
            descriptor = self.registry.get(connection_id)
            adapter = self.registry.resolve(connection_id)
            adapter.ping()
            probe = TranslatedQuery("connection test", descriptor.engine, CONNECTION_TEST_SQL)
            result = self.executor.execute(probe, adapter, ExecutionOptions(max_rows=1, timeout=self.config.query_timeout))
            self.introspector.introspect(connection_id, refresh=True)
            rows = [dict(r) for r in result.rows]
            engine_name = descriptor.engine.value
        else:
            if engine is None or params is None:
                raise errors.ValidationError("Database type and connection details are required")
            rows = self.registry.test(engine, params)
            engine_name = EngineKind.parse(engine).value
        return {"results": rows, "sqlQuery": CONNECTION_TEST_SQL, "databaseType": engine_name}

    def get_schema(self, connection_id: str, refresh: bool = False) -> SchemaSnapshot:
        return self.introspector.introspect(connection_id, refresh=refresh)

    # -- questions ---------------------------------------------------------

    def ask(
        self,
        user_query: str,
        connection_id: Optional[str] = None,
        connection_string: Optional[str] = None,
    ) -> QueryOutcome:
        """
        Answer a question against a registered or ad hoc connection.

        Args:
            user_query: Natural language question
            connection_id: Registered connection id
            connection_string: Raw connection string, used when no id is given

        Returns:
            QueryOutcome with the translated query, results and chart suggestion
        """
        if connection_id:
            adapter = self.registry.resolve(connection_id)
            cache_key = connection_id
        elif connection_string:
            adapter, cache_key = self.registry.resolve_connection_string(connection_string)
        else:
            raise errors.ValidationError("Either connectionId or connectionString is required")

        try:
            if connection_id:
                schema = self.introspector.introspect(connection_id)
            else:
                schema = self.introspector.snapshot_for(adapter, cache_key)
        except errors.IntrospectionError as e:
            self.logger.warning(f"Schema unavailable, translating without it: {e.message}")
            schema = None

        translated = self.translator.translate(user_query, adapter.kind, schema)
        result = self.executor.execute(translated, adapter, schema=schema, cache_key=cache_key)
        visualization = self.recommender.recommend(result)
        return QueryOutcome(translated, result, visualization)

    # -- saved queries -----------------------------------------------------

    def save_outcome(self, name: str, outcome: QueryOutcome, connection_id: str) -> SavedQuery:
        return self.saved_queries.save(
            name,
            outcome.translated.text,
            outcome.translated,
            outcome.result,
            outcome.visualization,
            connection_id,
        )

    def save_query(
        self,
        name: str,
        user_query: str,
        sql: str,
        connection_id: str,
        rows: Optional[List[Dict[str, Any]]] = None,
        truncated: bool = False,
    ) -> SavedQuery:
        """Persist a query a client already ran; the SQL is guarded again before storing."""
        if not connection_id:
            raise errors.ValidationError("connectionId is required to save a query")
        descriptor = self.registry.get(connection_id)
        try:
            schema = self.introspector.introspect(connection_id)
        except errors.IntrospectionError:
            schema = None
        checked = self.guard.check(sql, descriptor.engine, schema)
        translated = TranslatedQuery(
            text=user_query,
            engine=descriptor.engine,
            sql=checked,
            confidence="high" if schema is not None else "low",
        )
        result = result_set_from_rows(rows or [], truncated=truncated)
        return self.saved_queries.save(
            name,
            user_query,
            translated,
            result,
            self.recommender.recommend(result),
            connection_id,
        )

    def list_queries(self) -> List[SavedQuery]:
        return self.saved_queries.list()

    def get_query(self, query_id: str) -> SavedQuery:
        return self.saved_queries.get(query_id)

    def rename_query(self, query_id: str, name: str) -> SavedQuery:
        return self.saved_queries.rename(query_id, name)

    def refresh_query(self, query_id: str, policy: Optional[str] = None) -> SavedQuery:
        return self.saved_queries.refresh(query_id, policy=policy)

    def delete_query(self, query_id: str) -> bool:
        return self.saved_queries.delete(query_id)

    def close(self) -> None:
        self.registry.close()
        self.store.close()
        self.logger.info("GenBI closed")
