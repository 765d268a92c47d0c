"""
Core module initialization.
"""

from .llm import OllamaSQLGenerator

__all__ = ["OllamaSQLGenerator"]
