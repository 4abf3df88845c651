"""
Named, time-bounded mutual-exclusion lock for update runs.

The lock is a row in ``app_locks``. Acquisition never waits: a second run
finds the row held and stops before touching anything. A holder that died
without releasing is taken over once its row expires.
"""

import os
import socket
import uuid
from typing import Optional

from loguru import logger

from georesolver.config import settings
from georesolver.store.base import ReferenceStore


class LockNotAcquiredError(Exception):
    """Another process holds the lock."""

    def __init__(self, name: str, holder: Optional[dict] = None):
        self.name = name
        self.holder = holder
        who = f" by {holder['holder']} until {holder['expires_at']}" if holder else ""
        super().__init__(f"Lock '{name}' is held{who}")


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class NamedLock:
    """
    Context manager around the store's lock primitives.

    Usage:
        with NamedLock(store):
            ...  # exclusive section
    """

    def __init__(
        self,
        store: ReferenceStore,
        name: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        holder: Optional[str] = None,
    ):
        self.store = store
        self.name = name or settings.lock.name
        self.ttl_seconds = ttl_seconds or settings.lock.ttl_seconds
        self.holder = holder or default_holder()
        self.acquired = False

    def acquire(self) -> None:
        """
        Raises:
            LockNotAcquiredError: If the lock is held and unexpired
        """
        if not self.store.try_acquire_lock(self.name, self.holder, self.ttl_seconds):
            raise LockNotAcquiredError(self.name, self.store.lock_holder(self.name))
        self.acquired = True
        logger.info(f"Acquired lock '{self.name}' as {self.holder} (ttl {self.ttl_seconds}s)")

    def refresh(self) -> bool:
        """Extend the lock between long phases; False means it was lost."""
        if not self.acquired:
            return False
        refreshed = self.store.refresh_lock(self.name, self.holder, self.ttl_seconds)
        if not refreshed:
            logger.warning(f"Lock '{self.name}' is no longer held by {self.holder}")
        return refreshed

    def release(self) -> None:
        if not self.acquired:
            return
        self.store.release_lock(self.name, self.holder)
        self.acquired = False
        logger.info(f"Released lock '{self.name}'")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
