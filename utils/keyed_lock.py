import threading
from contextlib import contextmanager


class LockAcquireTimeout(Exception):
    """The lock for a key could not be taken within the timeout."""

    def __init__(self, key, timeout):
        super().__init__(f"lock for {key!r} not acquired within {timeout}s")
        self.key = key
        self.timeout = timeout


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    """
    One mutex per key, created on demand and dropped once nobody holds or
    waits for it. Keys never block each other; only the registry itself is
    guarded by a global lock, and only for the dict bookkeeping.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries = {}

    def _checkout(self, key) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, key, entry: _Entry):
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, key, timeout: float):
        """
        Usage: with keyed_lock.hold(slot_id, timeout=5): ...
        Raises LockAcquireTimeout if the key stays busy past `timeout`.
        """
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                raise LockAcquireTimeout(key, timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def __len__(self):
        with self._guard:
            return len(self._entries)
