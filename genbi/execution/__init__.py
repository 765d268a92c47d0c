"""
Execution module initialization.
"""

from .cache import ResultCache
from .executor import ExecutionOptions, QueryExecutor
from .normalize import build_result_set, result_set_from_rows

__all__ = ["ExecutionOptions", "QueryExecutor", "ResultCache", "build_result_set", "result_set_from_rows"]
