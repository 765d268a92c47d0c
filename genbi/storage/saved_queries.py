import logging
import uuid
from dataclasses import replace
from typing import List, Optional

from .. import errors
from ..config import Settings, settings as default_settings
from ..connections.registry import ConnectionRegistry
from ..execution.executor import ExecutionOptions, QueryExecutor
from ..models import ResultSet, SchemaSnapshot, SavedQuery, TranslatedQuery, VisualizationSpec, utcnow
from ..schema.introspector import SchemaIntrospector
from ..visualization.recommender import VisualizationRecommender
from .database import UserDataStore
from .locks import KeyedLockRegistry


REFRESH_POLICIES = ("reject", "wait")


class SavedQueryStore:
    """Named queries with their last results.

    A refresh re-runs the stored statement as it was accepted at save time;
    the question is never translated again.
    """

    def __init__(
        self,
        store: UserDataStore,
        registry: ConnectionRegistry,
        executor: QueryExecutor,
        recommender: VisualizationRecommender,
        config: Optional[Settings] = None,
        locks: Optional[KeyedLockRegistry] = None,
        introspector: Optional[SchemaIntrospector] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.registry = registry
        self.executor = executor
        self.recommender = recommender
        self.config = config or default_settings
        self.locks = locks or KeyedLockRegistry()
        self.introspector = introspector

    def save(
        self,
        name: str,
        text: str,
        translated: TranslatedQuery,
        result: ResultSet,
        visualization: VisualizationSpec,
        connection_id: str,
    ) -> SavedQuery:
        if not name or not str(name).strip():
            raise errors.ValidationError("Saved query name is required")
        if not text or not str(text).strip():
            raise errors.ValidationError("Saved query text is required")
        descriptor = self.registry.get(connection_id)
        if descriptor.engine != translated.engine:
            raise errors.ValidationError(
                f"Query targets {translated.engine.value} but connection "
                f"'{descriptor.name}' is {descriptor.engine.value}"
            )

        saved = SavedQuery(
            id=str(uuid.uuid4()),
            name=str(name).strip(),
            text=str(text).strip(),
            connection_id=connection_id,
            translated=translated,
            result=result,
            visualization=visualization,
            created_at=utcnow(),
        )
        self.store.insert_query(saved)
        self.logger.info(f"Saved query '{saved.name}' ({saved.id}) on connection {connection_id}")
        return saved

    def list(self) -> List[SavedQuery]:
        return self.store.list_queries()

    def get(self, query_id: str) -> SavedQuery:
        saved = self.store.get_query(query_id)
        if saved is None:
            raise errors.NotFoundError(f"Saved query with ID {query_id} not found")
        return saved

    def rename(self, query_id: str, name: str) -> SavedQuery:
        if not name or not str(name).strip():
            raise errors.ValidationError("Saved query name is required")
        if not self.store.rename_query(query_id, str(name).strip()):
            raise errors.NotFoundError(f"Saved query with ID {query_id} not found")
        return self.get(query_id)

    def refresh(self, query_id: str, policy: Optional[str] = None) -> SavedQuery:
        """
        Re-run a saved query and store the new results.

        Args:
            query_id: Saved query id
            policy: "reject" fails fast while another refresh of the same id
                runs; "wait" queues behind it and reuses its outcome

        Returns:
            The updated SavedQuery

        Raises:
            NotFoundError: Unknown saved query
            ReferentialError: The query's connection was deleted
            ConflictError: Another refresh holds the query (reject policy)
        """
        policy = policy or self.config.refresh_conflict_policy
        if policy not in REFRESH_POLICIES:
            raise errors.ValidationError(f"Unknown refresh policy: {policy}")
        observed = self.get(query_id).last_refreshed_at

        blocking = policy == "wait"
        with self.locks.hold(query_id, blocking=blocking, timeout=self.config.refresh_wait_timeout):
            current = self.get(query_id)
            if current.last_refreshed_at != observed:
                # a refresh finished while we were queued; its result is ours
                self.logger.info(f"Saved query {query_id} was refreshed concurrently; reusing result")
                return current
            if current.dangling:
                raise errors.ReferentialError(
                    f"Saved query {query_id} references a deleted connection",
                    details={"connectionId": current.connection_id},
                )

            try:
                adapter = self.registry.resolve(current.connection_id)
            except errors.NotFoundError:
                raise errors.ReferentialError(
                    f"Saved query {query_id} references a deleted connection",
                    details={"connectionId": current.connection_id},
                )
            result = self.executor.execute(
                current.translated,
                adapter,
                ExecutionOptions.from_settings(self.config),
                schema=self._schema_for(current.connection_id),
                cache_key=current.connection_id,
                refresh_cache=True,
            )
            updated = replace(
                current,
                result=result,
                visualization=self.recommender.recommend(result),
                last_refreshed_at=utcnow(),
            )
            self.store.update_query_results(updated)

        self.logger.info(f"Refreshed saved query {query_id}: {result.row_count} rows")
        return updated

    def _schema_for(self, connection_id: str) -> Optional[SchemaSnapshot]:
        """Snapshot used to type boolean columns the same way the first run did."""
        if self.introspector is None:
            return None
        try:
            return self.introspector.introspect(connection_id)
        except errors.IntrospectionError as e:
            self.logger.warning(f"Refreshing without schema for {connection_id}: {e.message}")
            return None

    def delete(self, query_id: str) -> bool:
        deleted = self.store.delete_query(query_id)
        if deleted:
            self.logger.info(f"Deleted saved query {query_id}")
        return deleted
