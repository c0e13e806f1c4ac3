"""
Named queue locks.

Jobs that share a queue name never run at the same time. Each name maps to
one lock for the lifetime of the manager; there is no eviction, so the
number of distinct names is capped to catch dynamically generated queue
names early.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)

MAX_QUEUES = 1000


class QueueLimitExceeded(RuntimeError):
    """Raised when more than MAX_QUEUES distinct queue names are requested."""
    pass


class QueueLock:
    """A queue's mutex plus the time it was last entered."""

    def __init__(self, name: str):
        self.name = name
        self.last_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def acquire(self):
        self._lock.acquire()
        self.last_at = datetime.now()

    def release(self):
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> 'QueueLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def __repr__(self):
        return f"QueueLock(name={self.name!r}, last_at={self.last_at})"


class QueueLockManager:
    """
    Process-wide registry of queue locks.

    The internal lock is held only while looking up or creating a queue,
    never while a queue is held.
    """

    def __init__(self, max_queues: int = MAX_QUEUES):
        self.max_queues = max_queues
        self._queues: Dict[str, QueueLock] = {}
        self._lock = threading.Lock()

    def acquire(self, name: str) -> QueueLock:
        """
        Get the lock for a queue, creating it on first use.

        Args:
            name: Queue name

        Returns:
            The same QueueLock for every call with the same name

        Raises:
            QueueLimitExceeded: If creating the queue would exceed max_queues
        """
        with self._lock:
            q = self._queues.get(name)
            if q is None:
                if len(self._queues) >= self.max_queues:
                    raise QueueLimitExceeded(
                        f"too many queues ({len(self._queues)}), refusing to create '{name}'"
                    )
                q = QueueLock(name)
                self._queues[name] = q
            return q

    def get(self, name: str) -> Optional[QueueLock]:
        with self._lock:
            return self._queues.get(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queues)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._queues
