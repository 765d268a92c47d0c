import logging
import re
from typing import Any, Dict, List, Optional


NUMBER = r"(-?\d+(?:\.\d+)?)"

# "<field> greater than 10", "older than 30", "at least 5"
COMPARISON_PATTERNS = [
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|was\s+|were\s+)?(older|greater|more|higher|larger|bigger)\s+than\s+{NUMBER}"), ">"),
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|was\s+|were\s+)?(younger|less|fewer|lower|smaller)\s+than\s+{NUMBER}"), "<"),
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|of\s+)?(above|over)\s+{NUMBER}"), ">"),
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|of\s+)?(below|under)\s+{NUMBER}"), "<"),
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|of\s+)?at\s+(least)\s+{NUMBER}"), ">="),
    (re.compile(rf"(?:\b(\w+)\s+)?(?:is\s+|are\s+|of\s+)?at\s+(most)\s+{NUMBER}"), "<="),
    (re.compile(rf"\b(\w+)\s*(>=|<=|!=|=|>|<)\s*{NUMBER}"), None),
    (re.compile(rf"\b(\w+)\s+(?:is\s+)?(equal\s+to|equals)\s+{NUMBER}"), "="),
]

# comparison words that name the column they compare
IMPLIED_FIELDS = {"older": "age", "younger": "age"}

AGGREGATIONS = {
    "total": "SUM",
    "sum": "SUM",
    "average": "AVG",
    "avg": "AVG",
    "mean": "AVG",
    "maximum": "MAX",
    "max": "MAX",
    "highest": "MAX",
    "minimum": "MIN",
    "min": "MIN",
    "lowest": "MIN",
}

_PHRASE_END = r"(?=\s+(?:by|per|for|in|from|of|across|grouped|where|with|whose|that|older|younger)\b|[?.!,]|$)"

AGGREGATE_PATTERN = re.compile(
    r"\b(" + "|".join(AGGREGATIONS) + r")\s+(?:of\s+)?(?:the\s+|all\s+)?([a-z_][\w ]*?)" + _PHRASE_END
)
COUNT_PATTERNS = [
    re.compile(r"\b(?:count|number)\s+of\s+([a-z_]\w*)"),
    re.compile(r"\bhow\s+many\s+([a-z_]\w*)"),
    re.compile(r"\bcount\s+(?:the\s+|all\s+)?([a-z_]\w*)"),
]
DIMENSION_PATTERN = re.compile(r"\b(?:grouped\s+by|by|per|for\s+each|for\s+every|in\s+each|each)\s+([a-z_]\w*)")
TOP_PATTERN = re.compile(r"\b(top|bottom|first)\s+(\d+)\s+([a-z_]\w*)(?:\s+by\s+([a-z_][\w ]*?)" + _PHRASE_END + r")?")
LIMIT_PATTERN = re.compile(r"\b(?:limit|only)\s+(\d+)\b")


class QueryParser:
    """Extracts intent, filters, measures and grouping from an English question."""

    def __init__(self):
        """Initialize query parser."""
        self.logger = logging.getLogger(__name__)

    def parse_query(self, query: str) -> Dict[str, Any]:
        """
        Parse a question into structured hints.

        Args:
            query: User's natural language question

        Returns:
            Dictionary with intent, words, filters, aggregation, dimension,
            ranking and limit information
        """
        text = " ".join(query.lower().split())
        ranking = self._extract_ranking(text)
        aggregation = self._extract_aggregation(text)
        count_subject = self._extract_count_subject(text)

        if ranking:
            intent = "ranking"
        elif aggregation:
            intent = "aggregate"
        elif count_subject:
            intent = "count"
        else:
            intent = "list"

        parsed = {
            "original_query": query,
            "text": text,
            "words": re.findall(r"[a-z_][a-z0-9_]*", text),
            "intent": intent,
            "filters": self._extract_filters(text),
            "aggregation": aggregation,
            "count_subject": count_subject,
            "dimension": self._extract_dimension(text, ranking),
            "ranking": ranking,
            "limit": self._extract_limit(text, ranking),
        }
        self.logger.debug(f"Parsed query: {parsed}")
        return parsed

    def _extract_filters(self, text: str) -> List[Dict[str, Any]]:
        filters = []
        seen = set()
        for pattern, operator in COMPARISON_PATTERNS:
            for match in pattern.finditer(text):
                field, word, value = match.group(1), match.group(2), match.group(3)
                if match.start(3) in seen:
                    continue
                seen.add(match.start(3))
                filters.append({
                    "field": field,
                    "implied_field": IMPLIED_FIELDS.get(word),
                    "operator": operator or word,
                    "value": value,
                })
        return filters

    def _extract_aggregation(self, text: str) -> Optional[Dict[str, str]]:
        match = AGGREGATE_PATTERN.search(text)
        if not match:
            return None
        return {"function": AGGREGATIONS[match.group(1)], "measure": match.group(2).strip()}

    def _extract_count_subject(self, text: str) -> Optional[str]:
        for pattern in COUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1)
        return None

    def _extract_dimension(self, text: str, ranking: Optional[Dict[str, Any]]) -> Optional[str]:
        if ranking:
            # "top 5 products by revenue" orders by revenue, it does not group
            return None
        match = DIMENSION_PATTERN.search(text)
        return match.group(1) if match else None

    def _extract_ranking(self, text: str) -> Optional[Dict[str, Any]]:
        match = TOP_PATTERN.search(text)
        if not match:
            return None
        return {
            "descending": match.group(1) == "top",
            "count": int(match.group(2)),
            "subject": match.group(3),
            "measure": match.group(4).strip() if match.group(4) else None,
            "ordered": match.group(1) != "first",
        }

    def _extract_limit(self, text: str, ranking: Optional[Dict[str, Any]]) -> Optional[int]:
        if ranking:
            return ranking["count"]
        match = LIMIT_PATTERN.search(text)
        return int(match.group(1)) if match else None
