"""Per-key lock registries for source files and UI surfaces."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pixelmend.core.errors import FatalAttemptError

logger = logging.getLogger(__name__)


class LockRegistry:
    """One :class:`threading.Lock` per key, created on first use."""

    reason = "lock_timeout"

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _key(self, key) -> str:
        return str(key)

    def _lock_for(self, key) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(self._key(key), threading.Lock())

    @contextmanager
    def hold(self, key, timeout: float = 30.0) -> Iterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(timeout=timeout):
            logger.error("Could not lock %s within %.1fs", key, timeout)
            raise FatalAttemptError(self.reason, f"Could not lock {key} within {timeout:g}s")
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, key) -> bool:
        with self._guard:
            lock = self._locks.get(self._key(key))
        return bool(lock and lock.locked())


class FileLockRegistry(LockRegistry):
    """Serializes edits to the same file across workers."""

    def _key(self, key) -> str:
        return str(Path(key).resolve())
