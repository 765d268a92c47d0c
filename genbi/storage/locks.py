import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..errors import ConflictError


class KeyedLockRegistry:
    """One lock per key, created on first use and dropped once nobody holds or awaits it."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._entries: Dict[str, List] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _release(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, blocking: bool = False, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``key``.

        Args:
            key: Resource identifier
            blocking: Wait for the current holder instead of failing fast
            timeout: Upper bound on the wait when blocking

        Raises:
            ConflictError: If the lock could not be acquired
        """
        lock = self._checkout(key)
        try:
            if blocking:
                acquired = lock.acquire(True, -1 if timeout is None else timeout)
            else:
                acquired = lock.acquire(False)
            if not acquired:
                raise ConflictError(f"{key} is busy; another operation is in progress")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
