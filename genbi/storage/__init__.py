"""
Storage module initialization.

``saved_queries`` is imported by its full path; it depends on the executor
and the connection registry, which themselves depend on this package.
"""

from .database import UserDataStore
from .locks import KeyedLockRegistry

__all__ = ["UserDataStore", "KeyedLockRegistry"]
