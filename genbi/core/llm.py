import json
import logging
import re
from typing import Any, Dict, Optional

from langchain_community.llms import Ollama
from langchain_core.output_parsers import StrOutputParser

from .. import errors
from ..config import Settings, settings as default_settings
from ..models import EngineKind, SchemaSnapshot
from ..translation.prompt_builder import PromptBuilder


_JSON_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_SQL_BLOCK = re.compile(r"```sql\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class OllamaSQLGenerator:
    """SQL generation through a local Ollama model."""

    def __init__(self, config: Optional[Settings] = None, prompt_builder: Optional[PromptBuilder] = None):
        """Initialize the LLM client."""
        self.logger = logging.getLogger(__name__)
        self.config = config or default_settings
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.llm = self._initialize_llm()
        self.chain = self.llm | StrOutputParser()

    def _initialize_llm(self) -> Ollama:
        llm = Ollama(
            model=self.config.llm_model_name,
            base_url=self.config.llm_base_url,
            temperature=self.config.llm_temperature,
            num_predict=self.config.llm_max_tokens,
        )
        self.logger.info(f"LLM initialized with model: {self.config.llm_model_name}")
        return llm

    def generate(self, text: str, engine: EngineKind, schema: Optional[SchemaSnapshot]) -> str:
        """
        Ask the model for SQL.

        Args:
            text: User's question
            engine: Target engine
            schema: Tables to show the model

        Returns:
            Candidate SQL, possibly empty when the model declines

        Raises:
            ConnectionError: The model endpoint could not be reached
        """
        prompt = self.prompt_builder.build_sql_generation_prompt(text, engine, schema)
        try:
            response = self.chain.invoke(prompt)
        except Exception as e:
            self.logger.error(f"LLM request failed: {type(e).__name__}: {e}")
            raise errors.ConnectionError(
                f"Language model at {self.config.llm_base_url} is unavailable: {type(e).__name__}"
            )
        sql = self.extract_sql(response)
        self.logger.info(f"Generated SQL: {sql}")
        return sql

    def extract_sql(self, response: str) -> str:
        """Pull the statement out of a JSON answer, a ```sql block, or plain text."""
        text = (response or "").strip()

        payload = self._parse_json(text)
        if payload is not None:
            sql = payload.get("sql")
            return sql.strip() if isinstance(sql, str) else ""

        matches = _SQL_BLOCK.findall(text)
        if matches:
            return matches[0].strip()

        lines = []
        in_sql = False
        for line in text.splitlines():
            stripped = line.strip()
            if stripped.upper().startswith(("SELECT", "WITH")):
                in_sql = True
            if in_sql:
                if not stripped:
                    break
                lines.append(stripped)
        # anything else is prose; the guard rejects it
        return "\n".join(lines) if lines else text

    @staticmethod
    def _parse_json(text: str) -> Optional[Dict[str, Any]]:
        candidates = [text]
        block = _JSON_BLOCK.search(text)
        if block:
            candidates.insert(0, block.group(1))
        for candidate in candidates:
            try:
                payload = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(payload, dict):
                return payload
        return None
