"""A broadcast-only condition variable that supports timed waits."""

from __future__ import annotations

import threading


class Cond:
    """Condition variable woken only by :meth:`broadcast`."""

    def __init__(self, lock) -> None:
        self.lock = lock
        self._guard = threading.Lock()
        self._event = threading.Event()

    def notify_event(self) -> threading.Event:
        """Return the event that is set by the next broadcast."""
        with self._guard:
            return self._event

    def wait(self) -> None:
        """Release the lock, wait for a broadcast, and re-acquire the lock."""
        event = self.notify_event()
        self.lock.release()
        try:
            event.wait()
        finally:
            self.lock.acquire()

    def wait_with_timeout(self, timeout: float) -> bool:
        """Like :meth:`wait` but give up after ``timeout`` seconds.

        Returns True if woken by a broadcast.
        """
        event = self.notify_event()
        self.lock.release()
        try:
            return event.wait(timeout)
        finally:
            self.lock.acquire()

    def broadcast(self) -> None:
        """Wake every waiter."""
        with self._guard:
            old, self._event = self._event, threading.Event()
        old.set()