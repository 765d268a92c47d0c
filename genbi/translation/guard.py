import logging
from typing import Dict, List, Optional, Set, Tuple

import sqlparse
from sqlparse import tokens as T
from sqlparse.sql import Token

from ..errors import SchemaMismatchError, UnsafeQueryError
from ..models import EngineKind, SchemaSnapshot, TableInfo


# Statement and clause words that can write, lock, change session state or touch files
FORBIDDEN_WORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE", "GRANT",
    "REVOKE", "MERGE", "REPLACE", "UPSERT", "ATTACH", "DETACH", "PRAGMA", "VACUUM",
    "REINDEX", "CALL", "EXEC", "EXECUTE", "COPY", "RENAME", "INTO", "LOCK", "SET",
    "OUTFILE", "DUMPFILE", "HANDLER", "COMMIT", "ROLLBACK", "SAVEPOINT", "USE",
})

FORBIDDEN_FUNCTIONS = frozenset({
    "LOAD_FILE", "PG_READ_FILE", "PG_READ_BINARY_FILE", "PG_LS_DIR", "LO_IMPORT",
    "LO_EXPORT", "DBLINK_EXEC", "SET_CONFIG", "PG_TERMINATE_BACKEND",
})

# Keywords that end a FROM list or start a new clause
CLAUSE_KEYWORDS = frozenset({
    "WHERE", "GROUP BY", "ORDER BY", "HAVING", "LIMIT", "OFFSET", "UNION", "UNION ALL",
    "INTERSECT", "EXCEPT", "ON", "USING", "WINDOW", "FETCH", "QUALIFY",
})


def significant_tokens(statement) -> List[Token]:
    return [
        t for t in statement.flatten()
        if not t.is_whitespace and t.ttype not in T.Comment
    ]


def identifier_text(token: Token, engine: EngineKind) -> Optional[str]:
    """Unquoted identifier text, or None when the token is not an identifier."""
    value = token.value
    if token.ttype is T.Name:
        if value[:1] in ("`", "[") or value[:1] == "´":
            return value[1:-1]
        return value
    # MySQL reads "..." as a string literal unless ANSI_QUOTES is set
    if token.ttype is T.String.Symbol and engine != EngineKind.MYSQL:
        return value[1:-1].replace('""', '"')
    return None


def _is_punct(token: Optional[Token], value: str) -> bool:
    return token is not None and token.ttype is T.Punctuation and token.value == value


class StatementScan:
    """Relations, aliases and column references found in one statement."""

    def __init__(self):
        self.tables: List[List[Optional[str]]] = []  # [name, alias]
        self.cte_names: Set[str] = set()
        self.derived_aliases: Set[str] = set()
        self.projection_aliases: Set[str] = set()
        self.columns: List[Tuple[Optional[str], str]] = []
        self.has_subquery = False

    @property
    def nested(self) -> bool:
        return self.has_subquery or bool(self.cte_names)


def scan_statement(tokens: List[Token], engine: EngineKind) -> StatementScan:
    """Walk the flattened tokens once, tracking FROM lists, CTEs and aliases."""
    scan = StatementScan()
    stack: List[Tuple[bool, Optional[str]]] = []
    in_from = False
    expect: Optional[str] = None
    alias_next = False

    for i, tok in enumerate(tokens):
        prev = tokens[i - 1] if i else None
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None

        if tok.ttype is T.Punctuation:
            if tok.value == "(":
                stack.append((in_from, expect))
                in_from, expect = False, None
            elif tok.value == ")":
                in_from, expect = stack.pop() if stack else (False, None)
                if expect == "table":
                    expect = "derived_alias"
                elif expect == "cte_body":
                    expect = "cte_next"
            elif tok.value == ",":
                if in_from:
                    expect = "table"
                elif expect == "cte_next":
                    expect = "cte"
            alias_next = False
            continue

        name = None
        if _is_punct(prev, ".") and tok.ttype is not T.Wildcard:
            # anything after a dot is a column or relation name, keyword or not
            name = identifier_text(tok, engine) or tok.value
        elif tok.ttype in T.Keyword:
            keyword = tok.normalized
            if tok.ttype is T.Keyword.CTE:
                expect = "cte"
                continue
            if keyword == "RECURSIVE":
                continue
            if keyword == "AS":
                if expect == "cte_as":
                    expect = "cte_body"
                else:
                    alias_next = True
                continue
            if keyword == "FROM" or keyword.endswith("JOIN"):
                in_from, expect, alias_next = True, "table", False
                continue
            if tok.ttype is T.Keyword.DML:
                if stack:
                    scan.has_subquery = True
                in_from, expect, alias_next = False, None, False
                continue
            if keyword in CLAUSE_KEYWORDS:
                in_from, expect, alias_next = False, None, False
                continue
            if tok.ttype is T.Keyword and (alias_next or expect in ("table", "cte")):
                name = tok.value
            else:
                continue
        else:
            name = identifier_text(tok, engine)
            if name is None:
                continue

        if _is_punct(nxt, "(") and expect != "cte":
            continue  # function call
        if _is_punct(nxt, "."):
            continue  # qualifier, read with the name that follows the dot

        qualifier = None
        if _is_punct(prev, ".") and i >= 2:
            qualifier = identifier_text(tokens[i - 2], engine) or tokens[i - 2].value

        if expect == "cte":
            scan.cte_names.add(name.lower())
            expect = "cte_as"
        elif expect == "table":
            scan.tables.append([name, None])
            expect = "alias"
        elif expect == "alias":
            scan.tables[-1][1] = name
            expect = None
        elif expect == "derived_alias":
            scan.derived_aliases.add(name.lower())
            expect = None
        elif alias_next:
            scan.projection_aliases.add(name.lower())
        else:
            scan.columns.append((qualifier, name))
        alias_next = False

    return scan


class SQLGuard:
    """Fail-closed checks on generated SQL before it can reach a database."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def check(
        self,
        sql: str,
        engine: EngineKind,
        schema: Optional[SchemaSnapshot] = None,
    ) -> str:
        """
        Validate a statement and return it without its trailing terminator.

        Args:
            sql: Generated statement
            engine: Target engine, used for quoting rules
            schema: Snapshot to check identifiers against, if known

        Returns:
            The statement, stripped

        Raises:
            UnsafeQueryError: Not exactly one read-only SELECT
            SchemaMismatchError: Unknown table or column
        """
        cleaned = (sql or "").strip()
        if cleaned.endswith(";"):
            cleaned = cleaned[:-1].rstrip()
        if not cleaned:
            raise UnsafeQueryError("No SQL statement was produced")

        statements = [s for s in sqlparse.parse(cleaned) if s.token_first(skip_cm=True) is not None]
        if len(statements) != 1:
            raise UnsafeQueryError("Only a single SQL statement is allowed")
        tokens = significant_tokens(statements[0])
        if any(_is_punct(t, ";") for t in tokens):
            raise UnsafeQueryError("Only a single SQL statement is allowed")

        self._check_read_only(tokens)
        if schema is not None:
            self._check_schema(scan_statement(tokens, engine), schema)
        return cleaned

    def _check_read_only(self, tokens: List[Token]) -> None:
        first = tokens[0]
        if not (first.ttype is T.Keyword.DML and first.normalized == "SELECT") and first.ttype is not T.Keyword.CTE:
            raise UnsafeQueryError(f"Only SELECT statements are allowed, got '{first.value[:20]}'")

        depth = 0
        top_level_select = False
        for i, tok in enumerate(tokens):
            nxt = tokens[i + 1] if i + 1 < len(tokens) else None
            if _is_punct(tok, "("):
                depth += 1
            elif _is_punct(tok, ")"):
                depth -= 1
            elif tok.ttype in T.Keyword:
                for word in tok.normalized.split():
                    if word in FORBIDDEN_WORDS:
                        raise UnsafeQueryError(f"Forbidden keyword in generated SQL: {word}")
                if tok.ttype is T.Keyword.DML and tok.normalized == "SELECT" and depth == 0:
                    top_level_select = True
            elif tok.ttype is T.Name:
                word = tok.value.upper()
                if _is_punct(nxt, "("):
                    if word in FORBIDDEN_FUNCTIONS:
                        raise UnsafeQueryError(f"Forbidden function in generated SQL: {word}")
                elif word in FORBIDDEN_WORDS:
                    raise UnsafeQueryError(f"Forbidden keyword in generated SQL: {word}")
            elif tok.ttype in T.Command:
                raise UnsafeQueryError(f"Client commands are not allowed: {tok.value}")

        if not top_level_select:
            raise UnsafeQueryError("WITH must be followed by a SELECT")

    def _check_schema(self, scan: StatementScan, schema: SchemaSnapshot) -> None:
        referenced: Dict[str, Optional[TableInfo]] = {}
        for name, alias in scan.tables:
            if name.lower() in scan.cte_names:
                referenced[(alias or name).lower()] = None
                continue
            table = schema.table(name)
            if table is None:
                raise SchemaMismatchError(f"Unknown table: {name}", details={"table": name})
            referenced[name.lower()] = table
            if alias:
                referenced[alias.lower()] = table

        tables = [t for t in referenced.values() if t is not None]
        for qualifier, column in scan.columns:
            lowered = column.lower()
            if qualifier is not None:
                key = qualifier.lower()
                if key in scan.derived_aliases or key in scan.cte_names:
                    continue
                if key not in referenced:
                    raise SchemaMismatchError(
                        f"Unknown table or alias: {qualifier}", details={"table": qualifier}
                    )
                table = referenced[key]
                if table is not None and table.column(column) is None:
                    raise SchemaMismatchError(
                        f"Unknown column: {qualifier}.{column}",
                        details={"table": table.name, "column": column},
                    )
                continue

            if scan.nested:
                continue  # unqualified names may come from a derived relation
            if lowered in scan.projection_aliases or lowered in referenced:
                continue
            if not any(t.column(column) is not None for t in tables):
                raise SchemaMismatchError(f"Unknown column: {column}", details={"column": column})
