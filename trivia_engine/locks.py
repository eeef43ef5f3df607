"""
In-process per-key mutual exclusion.

Used to serialise settlement per period, credit claims per user and
submission accumulation per session. Multi-process deployments still rely
on the database guards in crud (unique constraints, conditional updates).
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0  # holders plus waiters


class KeyedLock:
    """A reentrant lock per key, kept only while someone holds or waits on it.

    Entries are reference counted under a guard, so a key's lock is dropped
    once its last user leaves and a later caller can never end up with a
    second lock for a key that is still in use.
    """

    def __init__(self):
        self._locks: Dict[Hashable, _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
