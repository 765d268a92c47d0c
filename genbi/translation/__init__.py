"""
Translation module initialization.
"""

from .generator import RuleBasedGenerator, SQLGenerator
from .guard import SQLGuard
from .prompt_builder import PromptBuilder
from .query_parser import QueryParser
from .translator import SQLTranslator

__all__ = [
    "RuleBasedGenerator",
    "SQLGenerator",
    "SQLGuard",
    "PromptBuilder",
    "QueryParser",
    "SQLTranslator",
]
