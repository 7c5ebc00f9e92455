# =============================================================================
# principals/lookup_cache.py - Thread-safe load-once cache
# =============================================================================

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable, Optional


class LookupCache:
    """Caches directory lookups so each key is loaded at most once.

    The lock only guards the dictionary of futures; loaders run outside of
    it, so a slow directory call for one key never blocks another key.
    Concurrent callers for a key that is being loaded wait on its future.
    Failed loads are evicted so the next caller retries.
    """

    def __init__(self, name: str = "lookup"):
        self.name = name
        self._entries: Dict[Hashable, Future] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any],
                    timeout: Optional[float] = None) -> Any:
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if not owner:
            return future.result(timeout=timeout)

        try:
            value = loader()
        except BaseException as e:
            with self._lock:
                self._entries.pop(key, None)
            future.set_exception(e)
            raise

        future.set_result(value)
        self.logger.debug(f"Cached {self.name} entry for {key!r}")
        return value

    def peek(self, key: Hashable) -> Optional[Any]:
        """Return a completed value without loading, or None"""
        with self._lock:
            future = self._entries.get(key)
        if future is None or not future.done() or future.exception() is not None:
            return None
        return future.result()

    def __contains__(self, key: Hashable) -> bool:
        return self.peek(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
