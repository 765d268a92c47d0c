import logging
from functools import partial
from typing import Any, Dict, List, Optional, Protocol

from ..models import ColumnInfo, EngineKind, SchemaSnapshot, TableInfo
from ..schema.selector import SchemaSelector, singular
from .dialect import quote_identifier
from .query_parser import QueryParser


NUMERIC_TYPE_HINTS = ("INT", "REAL", "FLOA", "DOUB", "NUM", "DEC", "MONEY")

AGGREGATE_ALIASES = {"SUM": "total", "AVG": "average", "MAX": "maximum", "MIN": "minimum"}


class SQLGenerator(Protocol):
    """The language-understanding step: question in, candidate SQL out.

    Implementations may return anything, including an empty string or prose;
    the translator guards every candidate before it is used.
    """

    def generate(self, text: str, engine: EngineKind, schema: Optional[SchemaSnapshot]) -> str:
        ...


class RuleBasedGenerator:
    """Deterministic generator for common single-table questions.

    Understands listing with numeric filters, counting, aggregation by a
    dimension and top-N rankings. Returns an empty string whenever a table or
    column cannot be resolved against the schema, so unclear questions fail
    closed instead of producing a guess.
    """

    def __init__(self, parser: Optional[QueryParser] = None, selector: Optional[SchemaSelector] = None):
        self.logger = logging.getLogger(__name__)
        self.parser = parser or QueryParser()
        self.selector = selector or SchemaSelector()

    def generate(self, text: str, engine: EngineKind, schema: Optional[SchemaSnapshot]) -> str:
        if schema is None or not schema.tables:
            self.logger.info("No schema available; rule-based generation declined")
            return ""

        parsed = self.parser.parse_query(text)
        table = self._resolve_table(parsed, schema)
        if table is None:
            self.logger.info(f"No table matched question: {text!r}")
            return ""

        try:
            sql = self._build(parsed, table, engine)
        except LookupError as e:
            self.logger.info(f"Rule-based generation declined: {e}")
            return ""
        self.logger.info(f"Generated SQL: {sql}")
        return sql

    def _resolve_table(self, parsed: Dict[str, Any], schema: SchemaSnapshot) -> Optional[TableInfo]:
        words = set(parsed["words"])
        candidates = []
        for table in schema.tables:
            name = table.name.lower()
            if name in words or singular(name) in words or name in parsed["text"]:
                candidates.append(table)
        if not candidates:
            return None
        return max(candidates, key=lambda t: self.selector.score(t, parsed["text"]))

    def _resolve_column(self, phrase: Optional[str], table: TableInfo) -> Optional[ColumnInfo]:
        if not phrase:
            return None
        phrase = phrase.strip().lower()
        options = [phrase, phrase.replace(" ", "_"), singular(phrase), singular(phrase.replace(" ", "_"))]
        for option in options:
            column = table.column(option)
            if column is not None:
                return column
        # "amount" -> total_amount, when exactly one column ends that way
        last = phrase.split()[-1]
        suffixed = [c for c in table.columns if c.name.lower().endswith("_" + last)]
        if len(suffixed) == 1:
            return suffixed[0]
        return None

    def _require_column(self, phrase: Optional[str], table: TableInfo) -> ColumnInfo:
        column = self._resolve_column(phrase, table)
        if column is None:
            raise LookupError(f"'{phrase}' is not a column of {table.name}")
        return column

    def _where(self, parsed: Dict[str, Any], table: TableInfo, engine: EngineKind) -> List[str]:
        conditions = []
        for condition in parsed["filters"]:
            column = self._resolve_column(condition["field"], table)
            if column is None:
                column = self._resolve_column(condition["implied_field"], table)
            if column is None:
                raise LookupError(f"cannot tell which column '{condition['field']}' compares")
            conditions.append(
                f"{quote_identifier(column.name, engine)} {condition['operator']} {condition['value']}"
            )
        return conditions

    def _build(self, parsed: Dict[str, Any], table: TableInfo, engine: EngineKind) -> str:
        q = partial(quote_identifier, engine=engine)
        where = self._where(parsed, table, engine)
        dimension = None
        if parsed["dimension"] and parsed["intent"] in ("aggregate", "count"):
            dimension = self._require_column(parsed["dimension"], table)

        if parsed["intent"] == "aggregate":
            function = parsed["aggregation"]["function"]
            measure = self._require_column(parsed["aggregation"]["measure"], table)
            if not self._is_numeric(measure) and function in ("SUM", "AVG"):
                raise LookupError(f"{measure.name} is not numeric")
            projection = [f"{function}({q(measure.name)}) AS {AGGREGATE_ALIASES[function]}"]
        elif parsed["intent"] == "count":
            projection = ["COUNT(*) AS count"]
        else:
            projection = ["*"]

        if dimension is not None:
            projection.insert(0, q(dimension.name))

        sql = f"SELECT {', '.join(projection)} FROM {q(table.name)}"
        if where:
            sql += " WHERE " + " AND ".join(where)
        if dimension is not None:
            sql += f" GROUP BY {q(dimension.name)} ORDER BY {q(dimension.name)}"

        ranking = parsed["ranking"]
        if ranking and ranking["measure"]:
            measure = self._require_column(ranking["measure"], table)
            direction = "DESC" if ranking["descending"] else "ASC"
            sql += f" ORDER BY {q(measure.name)} {direction}"
        if parsed["limit"]:
            sql += f" LIMIT {int(parsed['limit'])}"
        return sql

    @staticmethod
    def _is_numeric(column: ColumnInfo) -> bool:
        declared = column.declared_type.upper()
        return any(hint in declared for hint in NUMERIC_TYPE_HINTS)
