"""Per-book serialized access for queue and coverage writes."""
import threading

_locks: dict[str, threading.RLock] = {}
_registry_lock = threading.Lock()


def book_lock(book_id: str) -> threading.RLock:
    """Return the re-entrant lock guarding all queue/coverage writes for a book."""
    with _registry_lock:
        lock = _locks.get(book_id)
        if lock is None:
            lock = _locks[book_id] = threading.RLock()
        return lock
