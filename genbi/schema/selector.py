import logging
import re
from typing import Dict, List

from ..models import SchemaSnapshot, TableInfo


STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for", "with",
    "by", "about", "like", "through", "over", "before", "after", "between",
    "under", "during", "without", "of", "from", "as", "into", "show", "find",
    "get", "list", "display", "give", "me", "all", "any", "where", "who", "what",
    "when", "how", "which", "why", "whose",
})

# Column name fragments that usually carry the answer to a business question
INTENT_WEIGHTS = {
    "id": 0.5,
    "name": 1,
    "title": 1,
    "description": 1,
    "date": 1,
    "time": 1,
    "amount": 1,
    "price": 1,
    "cost": 1,
    "quantity": 1,
    "total": 1,
    "count": 1,
    "status": 1,
}


def singular(word: str) -> str:
    """Naive English singular, good enough for table names."""
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("es"):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


class SchemaSelector:
    """Keeps the prompt small by choosing the tables a question is most likely about."""

    def __init__(self, max_tables: int = 20):
        self.logger = logging.getLogger(__name__)
        self.max_tables = max_tables

    def select(self, schema: SchemaSnapshot, text: str) -> SchemaSnapshot:
        if len(schema.tables) <= self.max_tables:
            return schema

        scores = self.scores(schema, text)
        # sorted() is stable, so ties keep catalog order
        chosen = sorted(schema.tables, key=lambda t: -scores[t.name])[: self.max_tables]
        names = [t.name for t in chosen]
        self.logger.info(f"Selected {len(names)} of {len(schema.tables)} tables for prompt: {names}")
        return schema.subset(names)

    def score(self, table: TableInfo, text: str) -> float:
        query = text.lower()
        words = self._words(query)
        name = table.name.lower()
        single = singular(name)

        score = 0.0
        if name in query:
            score += 10
        if single != name and single in query:
            score += 8
        for word in words:
            if word in name or name in word:
                score += 5
            if single != name and (word in single or single in word):
                score += 4

        for column in table.columns:
            column_name = column.name.lower()
            if column_name in query:
                score += 3
            for word in words:
                if word in column_name or column_name in word:
                    score += 2
            for indicator, weight in INTENT_WEIGHTS.items():
                if indicator in column_name:
                    score += weight
        return score

    @staticmethod
    def _words(query: str) -> List[str]:
        cleaned = re.sub(r"[^\w\s]", " ", query)
        return [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]

    def scores(self, schema: SchemaSnapshot, text: str) -> Dict[str, float]:
        return {table.name: self.score(table, text) for table in schema.tables}
