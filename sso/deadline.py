"""Per-call deadlines shared between a request handler and its worker thread."""
from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .errors import DeadlineExceeded


class Deadline:
    """Expiry for one service call.

    The worker running the call checks it between steps and again before a
    store transaction commits. :meth:`cancel` is called by the handler once it
    stops waiting; it also interrupts any statement still running on the
    SQLite connection attached with :meth:`attach`.
    """

    def __init__(self, budget: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + budget
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def expired(self) -> bool:
        return self._cancelled.is_set() or self._clock() >= self._expires_at

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self._expires_at - self._clock())

    def check(self, op: str) -> None:
        if self.expired:
            raise DeadlineExceeded(op)

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            if self._connection is not None:
                self._connection.interrupt()

    @contextmanager
    def attach(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._connection = conn
        try:
            yield conn
        finally:
            with self._lock:
                self._connection = None


__all__ = ["Deadline"]
