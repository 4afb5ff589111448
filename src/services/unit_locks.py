"""Per-unit commit locks.

Recording a payment must not interleave with another commit for the same
(client_id, unit_id). Within one process this registry serializes them;
across processes the unique constraints on ledger sequence and payment
idempotency key reject the loser at commit time.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from src.services.errors import UnitBusyError

logger = logging.getLogger(__name__)


class UnitLockRegistry:
    """Hands out one lock per unit key.

    A unit's lock lives only while some caller holds or waits for it, so
    the registry does not grow with the number of units ever recorded.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}
        self._guard = threading.Lock()

    def active_count(self) -> int:
        """Number of units currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: Tuple[str, str]) -> None:
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, client_id: str, unit_id: str) -> bool:
        with self._guard:
            lock = self._locks.get((client_id, unit_id))
        return lock is not None and lock.locked()

    @contextmanager
    def hold(self, client_id: str, unit_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the unit's lock for the duration of the block.

        Raises:
            UnitBusyError: If the lock is not acquired within the timeout
        """
        if timeout is None:
            timeout = self.timeout
        key = (client_id, unit_id)
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
            if not acquired:
                logger.warning(f"Unit {client_id}/{unit_id} busy: lock not acquired within {timeout}s")
                raise UnitBusyError(f"Unit {client_id}/{unit_id} is busy; retry later")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


# Process-wide registry shared by payment services
unit_locks = UnitLockRegistry()


__all__ = ["UnitLockRegistry", "unit_locks"]
