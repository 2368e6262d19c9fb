"""
Shared resources - Lock-guarded handles for the store and the model.

The indexing path waits for a resource with hold(); the query path uses
try_hold() and never waits. Both release the lock on every exit path.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generic, Iterator, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuardedResource(Generic[T]):
    """A value that may only be used while its lock is held."""

    def __init__(self, value: T, name: str = "resource"):
        self._value = value
        self._lock = threading.Lock()
        self.name = name

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[T]:
        """Blocking acquisition."""
        with self._lock:
            yield self._value

    @contextmanager
    def try_hold(self) -> Iterator[Optional[T]]:
        """
        Non-blocking acquisition.

        Yields the value, or None if the lock is held elsewhere.

        Usage:
            with store.try_hold() as handle:
                if handle is None:
                    return busy_response
                ...
        """
        if not self._lock.acquire(blocking=False):
            logger.debug(f"{self.name} busy")
            yield None
            return
        try:
            yield self._value
        finally:
            self._lock.release()

    def unwrap(self) -> T:
        """The guarded value, without locking. For setup and teardown only."""
        return self._value
