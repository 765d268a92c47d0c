import logging
import threading
from collections import OrderedDict
from typing import Any, Optional, Tuple

from ..config import Settings, settings as default_settings
from ..errors import ValidationError
from ..models import EngineKind, SchemaSnapshot, TranslatedQuery
from ..schema.selector import SchemaSelector
from . import dialect
from .generator import SQLGenerator
from .guard import SQLGuard


class SQLTranslator:
    """Natural language to a single guarded, read-only statement.

    The generator proposes SQL; this class owns everything after that:
    dialect rewrites, the read-only guard, the schema check and caching.
    Only successful translations are cached.
    """

    def __init__(
        self,
        generator: SQLGenerator,
        guard: Optional[SQLGuard] = None,
        selector: Optional[SchemaSelector] = None,
        config: Optional[Settings] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config or default_settings
        self.generator = generator
        self.guard = guard or SQLGuard()
        self.selector = selector or SchemaSelector(self.config.schema_max_tables)
        self._cache: "OrderedDict[Tuple[str, EngineKind, Optional[str]], TranslatedQuery]" = OrderedDict()
        self._lock = threading.Lock()

    def translate(self, text: Any, engine: Any, schema: Optional[SchemaSnapshot] = None) -> TranslatedQuery:
        """
        Translate a question for one engine.

        Args:
            text: Natural language question
            engine: Target engine kind
            schema: Snapshot of the target database, or None if unavailable

        Returns:
            TranslatedQuery with confidence "high" when a schema was supplied

        Raises:
            ValidationError: Question missing or out of length bounds
            UnsafeQueryError: Generated SQL is not a single read-only SELECT
            SchemaMismatchError: Generated SQL names unknown tables or columns
        """
        question = self._validate(text)
        kind = EngineKind.parse(engine)
        key = (question, kind, schema.fingerprint() if schema is not None else None)

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self.logger.debug("Translation cache hit")
                return cached

        prompt_schema = self.selector.select(schema, question) if schema is not None else None
        candidate = self.generator.generate(question, kind, prompt_schema) or ""
        rewritten = dialect.normalize(candidate, kind) if candidate.strip() else candidate
        sql = self.guard.check(rewritten, kind, schema)

        translated = TranslatedQuery(
            text=question,
            engine=kind,
            sql=sql,
            confidence="high" if schema is not None else "low",
        )
        self.logger.info(f"Translated question for {kind.value}: {sql}")

        with self._lock:
            self._cache[key] = translated
            while len(self._cache) > self.config.translation_cache_size:
                self._cache.popitem(last=False)
        return translated

    def _validate(self, text: Any) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Query text is required")
        question = text.strip()
        if len(question) < self.config.min_query_length:
            raise ValidationError(
                f"Query must be at least {self.config.min_query_length} characters long"
            )
        if len(question) > self.config.max_query_length:
            raise ValidationError(
                f"Query must not exceed {self.config.max_query_length} characters"
            )
        return question

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
