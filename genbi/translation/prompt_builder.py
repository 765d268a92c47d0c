import logging
from typing import Dict, List, Optional

from ..models import EngineKind, SchemaSnapshot


class PromptBuilder:
    """Builds SQL generation prompts for the language model."""

    def __init__(self, include_examples: bool = True, include_reasoning: bool = True):
        """
        Initialize prompt builder.

        Args:
            include_examples: Append worked question/SQL pairs
            include_reasoning: Append the step-by-step instructions
        """
        self.logger = logging.getLogger(__name__)
        self.include_examples = include_examples
        self.include_reasoning = include_reasoning

        self.few_shot_examples = [
            {
                "question": "Show me all users who are older than 30",
                "sql": "SELECT * FROM users WHERE age > 30;",
            },
            {
                "question": "Find the total sales for each user",
                "sql": "SELECT users.name, SUM(orders.total_amount) AS total_sales FROM users "
                "JOIN orders ON users.id = orders.user_id GROUP BY users.name;",
            },
            {
                "question": "List all products that have never been ordered",
                "sql": "SELECT products.* FROM products LEFT JOIN order_items "
                "ON products.id = order_items.product_id WHERE order_items.id IS NULL;",
            },
        ]

        self.engine_examples = {
            EngineKind.POSTGRES: {
                "question": "Find users who made a purchase in the last 7 days",
                "sql": "SELECT DISTINCT users.* FROM users JOIN orders ON users.id = orders.user_id "
                "WHERE orders.created_at > CURRENT_DATE - INTERVAL '7 days';",
            },
            EngineKind.MYSQL: {
                "question": "Find users who made a purchase in the last 7 days",
                "sql": "SELECT DISTINCT users.* FROM users JOIN orders ON users.id = orders.user_id "
                "WHERE orders.created_at > DATE_SUB(CURRENT_DATE, INTERVAL 7 DAY);",
            },
            EngineKind.SQLITE: {
                "question": "Find users who made a purchase in the last 7 days",
                "sql": "SELECT DISTINCT users.* FROM users JOIN orders ON users.id = orders.user_id "
                "WHERE orders.created_at > date('now', '-7 days');",
            },
        }

    def build_sql_generation_prompt(
        self,
        query: str,
        engine: EngineKind,
        schema: Optional[SchemaSnapshot] = None,
    ) -> str:
        """
        Build the complete prompt for one question.

        Args:
            query: User's natural language question
            engine: Target database engine
            schema: Tables the model may use; None when introspection failed

        Returns:
            Complete prompt string
        """
        prompt_parts = [
            self._build_role_instruction(engine),
            self._build_schema_context(schema),
            self._build_engine_rules(engine),
        ]
        if self.include_examples:
            prompt_parts.append(self._build_few_shot_examples(self._examples_for(engine)))
        if self.include_reasoning:
            prompt_parts.append(self._build_reasoning_steps())
        prompt_parts.append(self._build_output_format())
        prompt_parts.append(f'Now write the SQL query for this question:\n"{query}"')

        complete_prompt = "\n\n".join(prompt_parts)
        self.logger.debug(f"Built prompt with {len(complete_prompt)} characters")
        return complete_prompt

    def _build_role_instruction(self, engine: EngineKind) -> str:
        return (
            "You are an expert SQL analyst. Convert the user's question into a single "
            f"read-only {engine.value} SELECT statement over the schema below.\n"
            "Rules:\n"
            "1. Use only the tables and columns listed; never invent names\n"
            "2. Produce exactly one SELECT (a WITH ... SELECT is allowed)\n"
            "3. Never modify data or schema: no INSERT, UPDATE, DELETE, DDL, SELECT INTO or FOR UPDATE\n"
            "4. If the question cannot be answered from this schema, return an empty sql field"
        )

    def _build_schema_context(self, schema: Optional[SchemaSnapshot]) -> str:
        if schema is None or not schema.tables:
            return "Database schema: unavailable. Use only tables the question names explicitly."
        lines = ["Database schema:"]
        for table in schema.tables:
            columns = ", ".join(
                f"{c.name} {c.declared_type or 'ANY'}{'' if c.nullable else ' NOT NULL'}"
                for c in table.columns
            )
            lines.append(f"- {table.name}({columns})")
        return "\n".join(lines)

    def _build_engine_rules(self, engine: EngineKind) -> str:
        if engine == EngineKind.POSTGRES:
            return (
                "PostgreSQL notes:\n"
                '- Quote identifiers with double quotes only when needed\n'
                "- Use LIMIT for row limits and INTERVAL arithmetic for dates"
            )
        if engine == EngineKind.MYSQL:
            return (
                "MySQL notes:\n"
                "- Quote identifiers with backticks only when needed\n"
                "- Use LIMIT for row limits and DATE_SUB/DATE_ADD for dates"
            )
        return (
            "SQLite notes:\n"
            "- Use only standard SQL that SQLite supports\n"
            "- Use LIMIT for row limits and date('now', ...) for dates"
        )

    def _examples_for(self, engine: EngineKind) -> List[Dict[str, str]]:
        return self.few_shot_examples + [self.engine_examples[engine]]

    def _build_few_shot_examples(self, examples: List[Dict[str, str]]) -> str:
        parts = ["Examples:"]
        for i, example in enumerate(examples, 1):
            parts.append(f"Example {i}:\nQuestion: \"{example['question']}\"\nSQL: {example['sql']}")
        return "\n\n".join(parts)

    def _build_reasoning_steps(self) -> str:
        return (
            "Work through these steps silently before answering:\n"
            "1. Identify the tables involved\n"
            "2. Determine how they join\n"
            "3. Identify filter conditions\n"
            "4. Decide on aggregation, grouping and ordering\n"
            "5. Check every table and column against the schema"
        )

    def _build_output_format(self) -> str:
        return (
            "Respond with JSON only, in this form:\n"
            '{"sql": "SELECT ..."}'
        )
