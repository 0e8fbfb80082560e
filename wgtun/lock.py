"""A read/write lock whose readers can cooperatively upgrade to writing."""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Lock(Generic[T]):
    """Lock tuned for long-held, frequent reads and rare writes.

    A reader may ask to write; new readers are held back while a write is
    pending, and the write proceeds once every other reader has let go.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._cond = threading.Condition()
        self._wants_write = False
        self._readers = 0
        self._writer = False

    def read(self) -> "LockReadGuard[T]":
        """Acquire read access, waiting for any pending writer to finish."""
        return LockReadGuard(self)


class LockReadGuard(Generic[T]):
    """Read access to a Lock; release it explicitly or use it as a context manager."""

    def __init__(self, lock: Lock[T]) -> None:
        self._lock = lock
        self._held = False
        with lock._cond:
            lock._cond.wait_for(lambda: not lock._wants_write and not lock._writer)
            lock._readers += 1
        self._held = True

    def _check(self) -> None:
        if not self._held:
            raise RuntimeError("read guard has been released")

    @property
    def value(self) -> T:
        """The locked value."""
        self._check()
        return self._lock._value

    def try_writeable(self, prep_func: Callable[[T], Any], mut_func: Callable[[T], U]) -> U:
        """Run ``mut_func`` with exclusive access and return its result.

        ``prep_func`` runs first, once the intention to write is marked, and is
        the place to ask other readers to yield their guards.
        """
        self._check()
        lock = self._lock
        cond = lock._cond
        with cond:
            lock._readers -= 1
            cond.notify_all()
            cond.wait_for(lambda: not lock._wants_write)
            lock._wants_write = True
            cond.wait_for(lambda: not lock._writer)
            lock._readers += 1
        try:
            prep_func(lock._value)
            with cond:
                lock._readers -= 1
                cond.notify_all()
                cond.wait_for(lambda: lock._readers == 0 and not lock._writer)
                lock._writer = True
            try:
                return mut_func(lock._value)
            finally:
                with cond:
                    lock._writer = False
                    lock._readers += 1
                    cond.notify_all()
        finally:
            with cond:
                lock._wants_write = False
                cond.notify_all()

    def release(self) -> None:
        """Give up read access; calling it again does nothing."""
        if not self._held:
            return
        self._held = False
        with self._lock._cond:
            self._lock._readers -= 1
            self._lock._cond.notify_all()

    def __enter__(self) -> "LockReadGuard[T]":
        return self

    def __exit__(self, *args: object) -> None:
        self.release()