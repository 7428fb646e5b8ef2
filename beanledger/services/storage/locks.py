"""
Per-File Lock Registry

One reader/writer lock per ledger file, created on first use.

DESIGN DECISION: Multi-file operations must acquire their locks in one
global order (main file, accounts file, then monthly files by name).
LockRegistry.hold() takes every lock an operation needs at once, sorted
by that order, so two operations can never wait on each other in a cycle.

Locks are reentrant for the thread holding them exclusively, so the
store can lock a file again inside an operation that already holds it.
A shared holder cannot upgrade to exclusive; such an operation must
ask for the exclusive lock up front.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator, Optional


class FileLock:
    """Reader/writer lock for one file."""

    def __init__(self, name: str):
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._readers: dict[int, int] = {}
        self._writer: Optional[int] = None
        self._writer_depth = 0

    @property
    def held_exclusively(self) -> bool:
        return self._writer == threading.get_ident()

    def acquire_shared(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            if me not in self._readers:
                while self._writer is not None:
                    self._cond.wait()
            self._readers[me] = self._readers.get(me, 0) + 1

    def release_shared(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._release_writer()
                return
            count = self._readers.get(me, 0)
            if count == 0:
                raise RuntimeError(f"Shared lock on {self.name} released but not held")
            if count == 1:
                del self._readers[me]
                self._cond.notify_all()
            else:
                self._readers[me] = count - 1

    def acquire_exclusive(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            if me in self._readers:
                raise RuntimeError(
                    f"Cannot upgrade shared lock on {self.name} to exclusive"
                )
            while self._writer is not None or self._readers:
                self._cond.wait()
            self._writer = me
            self._writer_depth = 1

    def release_exclusive(self) -> None:
        with self._cond:
            if self._writer != threading.get_ident():
                raise RuntimeError(f"Exclusive lock on {self.name} released but not held")
            self._release_writer()

    def _release_writer(self) -> None:
        self._writer_depth -= 1
        if self._writer_depth == 0:
            self._writer = None
            self._cond.notify_all()

    @contextmanager
    def shared(self) -> Iterator[None]:
        self.acquire_shared()
        try:
            yield
        finally:
            self.release_shared()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        self.acquire_exclusive()
        try:
            yield
        finally:
            self.release_exclusive()


class LockRegistry:
    """
    Hands out one FileLock per file name.

    main_file and accounts_file decide the global acquisition order.
    """

    def __init__(self, main_file: str, accounts_file: str):
        self._main_file = main_file
        self._accounts_file = accounts_file
        self._locks: dict[str, FileLock] = {}
        self._guard = threading.Lock()

    def get(self, name: str) -> FileLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = FileLock(name)
            return lock

    def order_key(self, name: str) -> tuple[int, str]:
        if name == self._main_file:
            return (0, name)
        if name == self._accounts_file:
            return (1, name)
        return (2, name)

    @contextmanager
    def hold(
        self,
        exclusive: Iterable[str] = (),
        shared: Iterable[str] = (),
    ) -> Iterator[None]:
        """
        Acquire several file locks in global order.

        A file named in both lists is locked exclusively.
        """
        modes: dict[str, bool] = {name: False for name in shared}
        modes.update({name: True for name in exclusive})

        with ExitStack() as stack:
            for name in sorted(modes, key=self.order_key):
                lock = self.get(name)
                stack.enter_context(lock.exclusive() if modes[name] else lock.shared())
            yield
