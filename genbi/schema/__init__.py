"""
Schema module initialization.
"""

from .introspector import SchemaIntrospector
from .selector import SchemaSelector

__all__ = ["SchemaIntrospector", "SchemaSelector"]
