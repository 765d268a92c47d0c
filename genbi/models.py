"""
Domain models passed between the registry, translator, executor,
recommender and saved query store.
"""

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EngineKind(str, Enum):
    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"

    @classmethod
    def parse(cls, value: Any) -> "EngineKind":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == "postgresql":
            normalized = "postgres"
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Unsupported database type: {value!r}. Supported types: sqlite, postgres, mysql"
            )


class SemanticType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class ChartKind(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    SCATTER = "scatter"
    TABLE = "table"


@dataclass(frozen=True)
class ConnectionDescriptor:
    id: str
    name: str
    engine: EngineKind
    params: Dict[str, Any]
    credential_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Redacted representation; the credential reference never leaves the registry."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.engine.value,
            "connection": dict(self.params),
            "hasCredential": self.credential_ref is not None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    declared_type: str
    nullable: bool = True


@dataclass(frozen=True)
class TableInfo:
    name: str
    columns: Tuple[ColumnInfo, ...]

    def column(self, name: str) -> Optional[ColumnInfo]:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class SchemaSnapshot:
    tables: Tuple[TableInfo, ...]
    captured_at: datetime = field(default_factory=utcnow, compare=False)

    def table(self, name: str) -> Optional[TableInfo]:
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered:
                return table
        return None

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def subset(self, names: List[str]) -> "SchemaSnapshot":
        wanted = {n.lower() for n in names}
        return replace(self, tables=tuple(t for t in self.tables if t.name.lower() in wanted))

    def fingerprint(self) -> str:
        payload = json.dumps(self.to_dict()["tables"], sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": [
                {
                    "name": t.name,
                    "columns": [
                        {"name": c.name, "type": c.declared_type, "nullable": c.nullable}
                        for c in t.columns
                    ],
                }
                for t in self.tables
            ],
            "capturedAt": self.captured_at.isoformat(),
        }


@dataclass(frozen=True)
class TranslatedQuery:
    text: str
    engine: EngineKind
    sql: str
    params: Tuple[Any, ...] = ()
    confidence: str = "high"

    def bind_params(self) -> Dict[str, Any]:
        """Positional values keyed by their ``:p1 .. :pN`` placeholders."""
        return {f"p{i}": value for i, value in enumerate(self.params, start=1)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "engine": self.engine.value,
            "sql": self.sql,
            "params": list(self.params),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslatedQuery":
        return cls(
            text=data["text"],
            engine=EngineKind.parse(data["engine"]),
            sql=data["sql"],
            params=tuple(data.get("params") or ()),
            confidence=data.get("confidence", "high"),
        )


@dataclass(frozen=True)
class ResultColumn:
    name: str
    semantic_type: SemanticType


@dataclass(frozen=True)
class ResultSet:
    columns: Tuple[ResultColumn, ...]
    rows: Tuple[Dict[str, Any], ...]
    truncated: bool = False

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def values(self, column: str) -> List[Any]:
        return [row.get(column) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [{"name": c.name, "type": c.semantic_type.value} for c in self.columns],
            "rows": [dict(r) for r in self.rows],
            "rowCount": self.row_count,
            "truncated": self.truncated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultSet":
        return cls(
            columns=tuple(
                ResultColumn(c["name"], SemanticType(c["type"])) for c in data.get("columns", [])
            ),
            rows=tuple(dict(r) for r in data.get("rows", [])),
            truncated=bool(data.get("truncated", False)),
        )


@dataclass(frozen=True)
class VisualizationSpec:
    chart_type: ChartKind
    x_axis: Optional[str] = None
    y_axis: Tuple[str, ...] = ()
    rationale: str = "unrecognized_shape"
    recommended: Tuple[ChartKind, ...] = (ChartKind.TABLE,)

    @property
    def referenced_columns(self) -> List[str]:
        columns = [self.x_axis] if self.x_axis else []
        return columns + [c for c in self.y_axis if c not in columns]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendedChartTypes": [k.value for k in self.recommended],
            "chartType": self.chart_type.value,
            "xAxis": self.x_axis,
            "yAxis": self.y_axis[0] if self.y_axis else None,
            "series": list(self.y_axis),
            "reasoning": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisualizationSpec":
        return cls(
            chart_type=ChartKind(data.get("chartType", "table")),
            x_axis=data.get("xAxis"),
            y_axis=tuple(data.get("series") or ()),
            rationale=data.get("reasoning", "unrecognized_shape"),
            recommended=tuple(ChartKind(k) for k in data.get("recommendedChartTypes", ["table"])),
        )


@dataclass(frozen=True)
class SavedQuery:
    id: str
    name: str
    text: str
    connection_id: str
    translated: TranslatedQuery
    result: ResultSet
    visualization: VisualizationSpec
    created_at: datetime
    last_refreshed_at: Optional[datetime] = None
    dangling: bool = False

    @property
    def engine(self) -> EngineKind:
        return self.translated.engine

    def to_dict(self, embed_json: bool = True) -> Dict[str, Any]:
        """Transport shape; results and visualization config are embedded JSON strings."""
        rows = [dict(r) for r in self.result.rows]
        viz = self.visualization.to_dict()
        return {
            "id": self.id,
            "name": self.name,
            "query": self.text,
            "connectionId": self.connection_id,
            "databaseType": self.engine.value,
            "sqlQuery": self.translated.sql,
            "results": json.dumps(rows, default=str) if embed_json else rows,
            "columns": [{"name": c.name, "type": c.semantic_type.value} for c in self.result.columns],
            "truncated": self.result.truncated,
            "chartType": self.visualization.chart_type.value,
            "visualizationConfig": json.dumps(viz) if embed_json else viz,
            "createdAt": self.created_at.isoformat(),
            "lastRefreshedAt": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            "dangling": self.dangling,
        }
