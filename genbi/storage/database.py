import json
import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url

from ..models import (
    ConnectionDescriptor,
    EngineKind,
    ResultSet,
    SavedQuery,
    TranslatedQuery,
    VisualizationSpec,
)


metadata = MetaData()

saved_connections = Table(
    "saved_connections",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("engine_kind", String(16), nullable=False),
    Column("params", Text, nullable=False),
    Column("credential_ref", String(255)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

saved_queries = Table(
    "saved_queries",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("query_text", Text, nullable=False),
    Column("connection_id", String(36), index=True),
    Column("engine_kind", String(16), nullable=False),
    Column("sql_query", Text, nullable=False),
    Column("params", Text, nullable=False, default="[]"),
    Column("confidence", String(8), nullable=False, default="high"),
    Column("results", Text, nullable=False),
    Column("columns", Text, nullable=False),
    Column("truncated", Boolean, nullable=False, default=False),
    Column("visualization_config", Text, nullable=False),
    Column("chart_type", String(16), nullable=False),
    Column("dangling", Boolean, nullable=False, default=False),
    Column("created_at", String(40), nullable=False),
    Column("last_refreshed_at", String(40)),
)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class UserDataStore:
    """SQLite-backed persistence for connection descriptors and saved queries.

    Only stores and loads records; validation, locking and referential rules
    live in the registry and the saved query store.
    """

    def __init__(self, url: str):
        self.logger = logging.getLogger(__name__)
        parsed = make_url(url)
        if parsed.drivername.startswith("sqlite") and parsed.database not in (None, "", ":memory:"):
            directory = os.path.dirname(os.path.abspath(parsed.database))
            os.makedirs(directory, exist_ok=True)
        self.engine = create_engine(
            parsed,
            connect_args={"check_same_thread": False, "timeout": 30}
            if parsed.drivername.startswith("sqlite")
            else {},
        )
        # sqlite serializes writers anyway; this keeps read-modify-write cycles atomic
        self._lock = threading.RLock()
        metadata.create_all(self.engine)
        self.logger.info(f"User data store ready at {parsed.render_as_string(hide_password=True)}")

    # -- connections -------------------------------------------------------

    def insert_connection(self, descriptor: ConnectionDescriptor) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(insert(saved_connections).values(**self._connection_row(descriptor)))

    def update_connection(self, descriptor: ConnectionDescriptor) -> None:
        row = self._connection_row(descriptor)
        row.pop("id")
        with self._lock, self.engine.begin() as conn:
            conn.execute(
                update(saved_connections).where(saved_connections.c.id == descriptor.id).values(**row)
            )

    def delete_connection(self, connection_id: str) -> bool:
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(delete(saved_connections).where(saved_connections.c.id == connection_id))
            return result.rowcount > 0

    def get_connection(self, connection_id: str) -> Optional[ConnectionDescriptor]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(saved_connections).where(saved_connections.c.id == connection_id)
            ).mappings().first()
        return self._to_descriptor(row) if row else None

    def list_connections(self) -> List[ConnectionDescriptor]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(saved_connections).order_by(saved_connections.c.created_at.desc())
            ).mappings().all()
        return [self._to_descriptor(row) for row in rows]

    @staticmethod
    def _connection_row(descriptor: ConnectionDescriptor) -> Dict[str, Any]:
        return {
            "id": descriptor.id,
            "name": descriptor.name,
            "engine_kind": descriptor.engine.value,
            "params": json.dumps(descriptor.params),
            "credential_ref": descriptor.credential_ref,
            "created_at": _timestamp(descriptor.created_at),
            "updated_at": _timestamp(descriptor.updated_at),
        }

    @staticmethod
    def _to_descriptor(row) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            id=row["id"],
            name=row["name"],
            engine=EngineKind.parse(row["engine_kind"]),
            params=json.loads(row["params"]),
            credential_ref=row["credential_ref"],
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    # -- saved queries -----------------------------------------------------

    def insert_query(self, saved: SavedQuery) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(insert(saved_queries).values(**self._query_row(saved)))

    def update_query_results(self, saved: SavedQuery) -> bool:
        """Write back what a refresh changes; name and dangling flag are left alone."""
        row = self._query_row(saved)
        fields = ("results", "columns", "truncated", "visualization_config", "chart_type", "last_refreshed_at")
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(
                update(saved_queries)
                .where(saved_queries.c.id == saved.id)
                .values(**{f: row[f] for f in fields})
            )
            return result.rowcount > 0

    def rename_query(self, query_id: str, name: str) -> bool:
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(
                update(saved_queries).where(saved_queries.c.id == query_id).values(name=name)
            )
            return result.rowcount > 0

    def delete_query(self, query_id: str) -> bool:
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(delete(saved_queries).where(saved_queries.c.id == query_id))
            return result.rowcount > 0

    def get_query(self, query_id: str) -> Optional[SavedQuery]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(saved_queries).where(saved_queries.c.id == query_id)
            ).mappings().first()
        return self._to_saved_query(row) if row else None

    def list_queries(self) -> List[SavedQuery]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(saved_queries).order_by(saved_queries.c.created_at.desc())
            ).mappings().all()
        return [self._to_saved_query(row) for row in rows]

    def query_ids_for_connection(self, connection_id: str, include_dangling: bool = False) -> List[str]:
        stmt = select(saved_queries.c.id).where(saved_queries.c.connection_id == connection_id)
        if not include_dangling:
            stmt = stmt.where(saved_queries.c.dangling.is_(False))
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]

    def mark_dangling(self, connection_id: str) -> int:
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(
                update(saved_queries)
                .where(saved_queries.c.connection_id == connection_id)
                .values(dangling=True)
            )
            return result.rowcount

    @staticmethod
    def _query_row(saved: SavedQuery) -> Dict[str, Any]:
        result = saved.result.to_dict()
        return {
            "id": saved.id,
            "name": saved.name,
            "query_text": saved.text,
            "connection_id": saved.connection_id,
            "engine_kind": saved.engine.value,
            "sql_query": saved.translated.sql,
            "params": json.dumps(list(saved.translated.params), default=str),
            "confidence": saved.translated.confidence,
            "results": json.dumps(result["rows"], default=str),
            "columns": json.dumps(result["columns"]),
            "truncated": saved.result.truncated,
            "visualization_config": json.dumps(saved.visualization.to_dict()),
            "chart_type": saved.visualization.chart_type.value,
            "dangling": saved.dangling,
            "created_at": _timestamp(saved.created_at),
            "last_refreshed_at": _timestamp(saved.last_refreshed_at),
        }

    @staticmethod
    def _to_saved_query(row) -> SavedQuery:
        translated = TranslatedQuery(
            text=row["query_text"],
            engine=EngineKind.parse(row["engine_kind"]),
            sql=row["sql_query"],
            params=tuple(json.loads(row["params"] or "[]")),
            confidence=row["confidence"] or "high",
        )
        result = ResultSet.from_dict(
            {
                "columns": json.loads(row["columns"]),
                "rows": json.loads(row["results"]),
                "truncated": row["truncated"],
            }
        )
        return SavedQuery(
            id=row["id"],
            name=row["name"],
            text=row["query_text"],
            connection_id=row["connection_id"],
            translated=translated,
            result=result,
            visualization=VisualizationSpec.from_dict(json.loads(row["visualization_config"])),
            created_at=_parse_timestamp(row["created_at"]),
            last_refreshed_at=_parse_timestamp(row["last_refreshed_at"]),
            dangling=bool(row["dangling"]),
        )

    def close(self) -> None:
        self.engine.dispose()
