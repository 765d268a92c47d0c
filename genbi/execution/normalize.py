"""
Driver values to JSON-friendly values and semantic column types.
"""

import re
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ..models import ResultColumn, ResultSet, SchemaSnapshot, SemanticType


_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

BOOLEAN_DECLARED_TYPES = ("BOOL", "BOOLEAN", "TINYINT(1)", "BIT(1)")


def normalize_value(value: Any, boolean: bool = False) -> Any:
    if value is None:
        return None
    if boolean and isinstance(value, (int, Decimal)) and not isinstance(value, bool) and value in (0, 1):
        return bool(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def semantic_type(values: Iterable[Any]) -> SemanticType:
    """Infer a column's semantic type from its first non-null value."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, bool):
            return SemanticType.BOOLEAN
        if isinstance(value, (int, float)):
            return SemanticType.NUMBER
        if isinstance(value, str) and _ISO_DATE.match(value):
            return SemanticType.DATE
        return SemanticType.STRING
    return SemanticType.STRING


def unique_names(names: Sequence[str]) -> List[str]:
    """``id, id`` -> ``id, id_1``; column order is kept."""
    seen: Dict[str, int] = {}
    taken = set(names)
    result = []
    for name in names:
        if name not in seen:
            seen[name] = 0
            result.append(name)
            continue
        suffix = seen[name]
        candidate = name
        while candidate in taken or candidate in result:
            suffix += 1
            candidate = f"{name}_{suffix}"
        seen[name] = suffix
        result.append(candidate)
    return result


def schema_boolean_columns(columns: Sequence[str], schema: Optional[SchemaSnapshot]) -> Set[int]:
    """Indexes of result columns whose name is declared boolean somewhere in the schema."""
    if schema is None:
        return set()
    declared = {
        column.name.lower()
        for table in schema.tables
        for column in table.columns
        if column.declared_type.upper().replace(" ", "") in BOOLEAN_DECLARED_TYPES
    }
    return {i for i, name in enumerate(columns) if name.lower() in declared}


def build_result_set(
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    truncated: bool = False,
    boolean_columns: Optional[Set[int]] = None,
) -> ResultSet:
    boolean_columns = boolean_columns or set()
    names = unique_names(list(columns))

    # only coerce 0/1 columns; anything else means the guess was wrong
    booleans = {
        i for i in boolean_columns
        if all(row[i] is None or row[i] in (0, 1) for row in rows)
    }
    normalized = [
        tuple(normalize_value(value, i in booleans) for i, value in enumerate(row))
        for row in rows
    ]
    result_columns = tuple(
        ResultColumn(name, semantic_type(row[i] for row in normalized))
        for i, name in enumerate(names)
    )
    return ResultSet(
        columns=result_columns,
        rows=tuple(dict(zip(names, row)) for row in normalized),
        truncated=truncated,
    )


def result_set_from_rows(rows: Sequence[Dict[str, Any]], truncated: bool = False) -> ResultSet:
    """Rebuild a ResultSet from row mappings a client sent back."""
    columns: List[str] = []
    for row in rows:
        for name in row:
            if name not in columns:
                columns.append(name)
    values = [tuple(row.get(name) for name in columns) for row in rows]
    return build_result_set(columns, values, truncated=truncated)
