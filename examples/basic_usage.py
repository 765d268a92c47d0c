"""
Example usage of GenBI.
"""

import json
import sys

from genbi import errors
from genbi.genbi import GenBI


def main(database_path: str):
    """Demonstrate GenBI usage against a SQLite file."""

    # Set GENBI_LLM_PROVIDER=rules to run without an Ollama server
    genbi = GenBI()

    print("=== GenBI Example Usage ===\n")

    # 1. Register a connection
    print("1. Registering connection...")
    try:
        connection = genbi.register_connection("example", "sqlite", {"path": database_path})
        print(f"✓ Registered {connection.name} ({connection.id})\n")
    except errors.GenBIError as e:
        print(f"✗ Error: {e.kind}: {e.message}")
        genbi.close()
        return

    # 2. Show schema information
    print("2. Database schema:")
    schema = genbi.get_schema(connection.id)
    for table in schema.tables[:5]:
        print(f"  - {table.name}: {len(table.columns)} columns")
    print()

    # 3. Ask questions
    questions = [
        "Show me all users older than 30",
        "How many users are there",
        "What is the total amount of sales by region?",
    ]
    outcomes = []
    for i, question in enumerate(questions, 3):
        print(f"{i}. Question: {question}")
        try:
            outcome = genbi.ask(question, connection_id=connection.id)
        except errors.GenBIError as e:
            print(f"✗ {e.kind}: {e.message}\n")
            continue
        outcomes.append(outcome)
        print(f"SQL: {outcome.translated.sql}")
        print(f"Rows: {outcome.result.row_count}, chart: {outcome.visualization.chart_type.value}")
        print(json.dumps([dict(r) for r in outcome.result.rows[:3]], indent=2, ensure_ascii=False))
        print()

    # 4. Save and refresh the last answer
    if outcomes:
        saved = genbi.save_outcome("Example", outcomes[-1], connection.id)
        refreshed = genbi.refresh_query(saved.id)
        print(f"Saved query {saved.id} refreshed at {refreshed.last_refreshed_at.isoformat()}")

    genbi.close()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python examples/basic_usage.py path/to/database.db")
        sys.exit(1)
    main(sys.argv[1])
