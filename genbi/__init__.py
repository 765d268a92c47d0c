"""
GenBI: natural language questions over relational databases

Translates questions into guarded read-only SQL for SQLite, MySQL and
PostgreSQL, runs them through pooled engine adapters, recommends a chart
for the result and keeps saved queries that can be refreshed later.
"""

__version__ = "0.1.0"
