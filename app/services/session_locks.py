"""
Per-session critical sections.

Booking, cancellation and session transitions for one session run under
that session's lock; different sessions never contend. Acquisition is
bounded and raises ``Busy`` rather than blocking indefinitely.
"""
from contextlib import contextmanager
from typing import Dict, Iterator, List
import logging
import threading

import redis
from redis.exceptions import LockError

from ..core.config import Settings
from ..core.exceptions import Busy

logger = logging.getLogger(__name__)


class LocalSessionLocks:
    """In-process lock registry, enough for a single worker process."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        # session_id -> [lock, number of threads holding or waiting]
        self._entries: Dict[str, List] = {}

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(session_id, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        try:
            if not lock.acquire(timeout=self.timeout):
                logger.warning(f"Timed out waiting for lock on session {session_id}")
                raise Busy(session_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[session_id]

    def __len__(self):
        return len(self._entries)


class RedisSessionLocks:
    """Redis-backed locks shared by every worker talking to the same Redis."""

    key_prefix = "session-lock:"

    def __init__(self, client: redis.Redis, timeout: float = 5.0, lease: float = 30.0):
        self.client = client
        self.timeout = timeout
        self.lease = lease

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self.client.lock(
            f"{self.key_prefix}{session_id}",
            timeout=self.lease,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire():
            logger.warning(f"Timed out waiting for redis lock on session {session_id}")
            raise Busy(session_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # The lease ran out while the critical section was still running
                logger.error(
                    f"Lock on session {session_id} expired before release; "
                    f"raise SESSION_LOCK_LEASE_SECONDS above {self.lease}"
                )


def build_session_locks(settings: Settings, redis_client: redis.Redis = None):
    """Create the lock backend selected by ``SESSION_LOCK_BACKEND``."""
    backend = settings.SESSION_LOCK_BACKEND.lower()
    if backend == "local":
        return LocalSessionLocks(timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS)
    if backend == "redis":
        if redis_client is None:
            raise ValueError("The redis lock backend needs a redis client")
        return RedisSessionLocks(
            redis_client,
            timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS,
            lease=settings.SESSION_LOCK_LEASE_SECONDS,
        )
    raise ValueError(f"Unknown session lock backend: {settings.SESSION_LOCK_BACKEND}")
