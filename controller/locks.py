"""
Per-identity locks - at most one sync cycle per ExternalSecret at a time.

Shared between scheduled ticks and watch events so both respect the same
lock. Later triggers for a busy identity wait for the running cycle.
"""

import threading
from contextlib import contextmanager

from core.utils.logging import get_logger

logger = get_logger(__name__)


class KeyedLock:
    """Lock per key; entries are dropped once no thread holds or waits."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        if entry[0].locked():
            logger.debug(f"Waiting for running sync of {key}")
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def is_locked(self, key: str) -> bool:
        with self._guard:
            entry = self._locks.get(key)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
