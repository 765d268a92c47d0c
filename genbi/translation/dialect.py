"""
Engine-specific rewrites applied to generated SQL before it is guarded.

Generators (and LLMs in particular) mix dialects: backtick identifiers in a
Postgres query, ``TOP n`` or ``FETCH FIRST n ROWS ONLY`` where the engine
wants ``LIMIT``, ``ILIKE`` outside Postgres, ``NOW()`` in SQLite. The rewrites
here are token based so string literals are never touched.
"""

import re
from typing import List, Optional

import sqlparse
from sqlparse import tokens as T
from sqlparse.sql import Token

from ..models import EngineKind


_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_DATE_FUNCTIONS = {
    EngineKind.SQLITE: {"NOW": "CURRENT_TIMESTAMP", "CURDATE": "CURRENT_DATE", "GETDATE": "CURRENT_TIMESTAMP"},
    EngineKind.POSTGRES: {"CURDATE": "CURRENT_DATE", "GETDATE": "NOW()"},
    EngineKind.MYSQL: {"GETDATE": "NOW()"},
}


def quote_identifier(name: str, engine: EngineKind) -> str:
    """Quote ``name`` for ``engine`` unless it is a plain identifier."""
    if _SIMPLE_IDENTIFIER.match(name):
        return name
    if engine == EngineKind.MYSQL:
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


def _requote(token: Token, engine: EngineKind) -> Optional[str]:
    value = token.value
    if token.ttype is T.Name and value[:1] in ("`", "["):
        inner = value[1:-1].replace("``", "`")
    elif token.ttype is T.String.Symbol and engine == EngineKind.MYSQL:
        # left alone: MySQL treats these as strings unless ANSI_QUOTES is on
        return None
    else:
        return None
    if engine == EngineKind.MYSQL:
        return "`" + inner.replace("`", "``") + "`"
    return '"' + inner.replace('"', '""') + '"'


def _next_significant(tokens: List[Token], index: int) -> Optional[int]:
    for j in range(index + 1, len(tokens)):
        if not tokens[j].is_whitespace and tokens[j].ttype not in T.Comment:
            return j
    return None


def normalize(sql: str, engine: EngineKind) -> str:
    """Rewrite identifier quoting, row limits and date functions for ``engine``."""
    statements = sqlparse.parse(sql)
    if not statements:
        return sql
    tokens = [t for statement in statements for t in statement.flatten()]
    values = [t.value for t in tokens]
    limit = None
    has_limit = any(t.ttype is T.Keyword and t.normalized == "LIMIT" for t in tokens)
    date_functions = _DATE_FUNCTIONS[engine]

    i = 0
    while i < len(tokens):
        tok = tokens[i]
        requoted = _requote(tok, engine)
        if requoted is not None:
            values[i] = requoted

        elif tok.ttype is T.Name and tok.value.upper() == "TOP":
            # SELECT [DISTINCT] TOP n
            j = _next_significant(tokens, i)
            if j is not None and tokens[j].ttype in T.Number.Integer and not has_limit:
                limit = tokens[j].value
                end = _next_significant(tokens, j) or j + 1
                for k in range(i, end):
                    values[k] = ""
                i = end - 1

        elif tok.ttype is T.Keyword and tok.normalized == "FETCH" and engine != EngineKind.POSTGRES:
            # FETCH FIRST|NEXT n ROW|ROWS ONLY
            positions = [i]
            for _ in range(4):
                nxt = _next_significant(tokens, positions[-1])
                if nxt is None:
                    break
                positions.append(nxt)
            words = [tokens[p].value.upper() for p in positions]
            if (
                len(words) == 5
                and words[1] in ("FIRST", "NEXT")
                and tokens[positions[2]].ttype in T.Number.Integer
                and words[3] in ("ROW", "ROWS")
                and words[4] == "ONLY"
            ):
                for k in range(positions[0], positions[-1] + 1):
                    values[k] = ""
                values[positions[0]] = f"LIMIT {tokens[positions[2]].value}"
                i = positions[-1]

        elif tok.ttype in T.Operator.Comparison and "ILIKE" in tok.normalized.upper() and engine != EngineKind.POSTGRES:
            values[i] = re.sub("ILIKE", "LIKE", tok.value, flags=re.I)

        elif tok.ttype is T.Name and tok.value.upper() in date_functions:
            open_idx = i + 1 if i + 1 < len(tokens) and tokens[i + 1].value == "(" else None
            close_idx = _next_significant(tokens, open_idx) if open_idx is not None else None
            if close_idx is not None and tokens[close_idx].value == ")":
                values[i] = date_functions[tok.value.upper()]
                for k in range(open_idx, close_idx + 1):
                    values[k] = ""
                i = close_idx
        i += 1

    rewritten = "".join(values)
    if limit is not None:
        body = rewritten.rstrip()
        terminator = ""
        if body.endswith(";"):
            body, terminator = body[:-1].rstrip(), ";"
        rewritten = f"{body} LIMIT {limit}{terminator}"
    return rewritten
