#!/usr/bin/env python3
"""Reader-writer lock for the staging layer.

Readers share the lock with each other; a writer holds it alone. Waiting
writers block new readers so a steady stream of reads cannot starve a seal.

Example:
    >>> lock = ReadWriteLock()
    >>> with lock.read_locked():
    ...     pass  # resolve, read_file, list_paths
    >>> with lock.write_locked():
    ...     pass  # write, delete, seal
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Writer-preferring reader-writer lock. Not reentrant."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        """Block until no writer holds or waits for the lock, then share it."""
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        """Release a shared hold."""
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a read hold")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        """Block until the lock is free, then hold it exclusively."""
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        """Release the exclusive hold."""
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() called without a write hold")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Context manager holding the shared side."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Context manager holding the exclusive side."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        """Number of current shared holders."""
        with self._cond:
            return self._readers

    @property
    def write_held(self) -> bool:
        """Whether a writer currently holds the lock."""
        with self._cond:
            return self._writer
