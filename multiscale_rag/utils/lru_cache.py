# -*- coding: utf-8 -*-
"""
Bounded LRU cache with single-flight computation.

Thread-safe cache shared by embedding workers. Lookups are read-mostly; a miss
is "claimed" by exactly one caller, which computes the value while any other
caller asking for the same key waits on that computation instead of
repeating it. Claims support batches so the embedding orchestrator can claim
all misses of a batch, embed them in one external call, then fulfil them.

Example:
    cache = LRUCache(max_size=1000)
    vector = cache.get_or_compute(("chunk_1", "content", "ab12"), lambda: embed(text))

    hits, owned, pending = cache.claim(keys)
    ...  # compute values for `owned`
    for key, value in zip(owned, values):
        cache.fulfill(key, value)
    waited = cache.wait_for(pending)
"""
# Standard library
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class _Flight:
    """In-progress computation for one key."""

    def __init__(self):
        self.event = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None

    def wait(self, timeout: Optional[float] = None) -> Any:
        if not self.event.wait(timeout):
            raise TimeoutError("Timed out waiting for in-flight cache computation")
        if self.error is not None:
            raise self.error
        return self.value


class LRUCache:
    """
    Thread-safe LRU cache with single-flight misses.

    ``None`` values are never cached; a computation returning None releases
    its waiters with None and leaves the key absent.
    """

    def __init__(self, max_size: int = 1000):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._data: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._inflight: Dict[Hashable, _Flight] = {}
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.shared_waits = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._data

    # ------------------------------------------------------------------
    # Plain access
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
                self.hits += 1
                return self._data[key]
            self.misses += 1
            return None

    def put(self, key: Hashable, value: Any) -> None:
        if value is None:
            return
        with self._lock:
            self._store(key, value)

    def _store(self, key: Hashable, value: Any) -> None:
        # Caller holds the lock
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            evicted, _ = self._data.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted cache key {evicted}")

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            logger.info("Cache cleared")

    # ------------------------------------------------------------------
    # Single-flight
    # ------------------------------------------------------------------

    def claim(
        self,
        keys: Iterable[Hashable]
    ) -> Tuple[Dict[Hashable, Any], List[Hashable], Dict[Hashable, _Flight]]:
        """
        Split keys into cached hits, keys this caller must compute, and keys
        another caller is already computing.

        Every owned key must later be passed to fulfill() or abandon().

        Returns:
            (hits, owned, pending)
        """
        hits: Dict[Hashable, Any] = {}
        owned: List[Hashable] = []
        pending: Dict[Hashable, _Flight] = {}

        with self._lock:
            for key in keys:
                if key in hits or key in pending or key in owned:
                    continue
                if key in self._data:
                    self._data.move_to_end(key)
                    hits[key] = self._data[key]
                    self.hits += 1
                elif key in self._inflight:
                    pending[key] = self._inflight[key]
                    self.shared_waits += 1
                else:
                    self._inflight[key] = _Flight()
                    owned.append(key)
                    self.misses += 1
        return hits, owned, pending

    def fulfill(self, key: Hashable, value: Any) -> None:
        """Publish the value for an owned key and wake its waiters."""
        with self._lock:
            flight = self._inflight.pop(key, None)
            if value is not None:
                self._store(key, value)
        if flight is not None:
            flight.value = value
            flight.event.set()

    def abandon(self, key: Hashable, error: Optional[BaseException] = None) -> None:
        """Release an owned key without caching; waiters see ``error`` or None."""
        with self._lock:
            flight = self._inflight.pop(key, None)
        if flight is not None:
            flight.error = error
            flight.event.set()

    def wait_for(
        self,
        pending: Dict[Hashable, _Flight],
        timeout: Optional[float] = None
    ) -> Dict[Hashable, Any]:
        """
        Wait for other callers' computations.

        Keys whose computation failed or timed out map to None.
        """
        results: Dict[Hashable, Any] = {}
        for key, flight in pending.items():
            try:
                results[key] = flight.wait(timeout)
            except Exception as e:
                logger.debug(f"Shared computation for {key} unavailable: {e}")
                results[key] = None
        return results

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any],
                       timeout: Optional[float] = None) -> Any:
        """
        Return the cached value or compute it once across concurrent callers.

        Exceptions from ``compute`` propagate to the computing caller and to
        every waiter.
        """
        hits, owned, pending = self.claim([key])
        if key in hits:
            return hits[key]
        if key in pending:
            return pending[key].wait(timeout)

        try:
            value = compute()
        except Exception as e:
            self.abandon(key, e)
            raise
        self.fulfill(key, value)
        return value

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                'size': len(self._data),
                'max_size': self.max_size,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': round(self.hits / lookups, 3) if lookups else 0.0,
                'evictions': self.evictions,
                'shared_waits': self.shared_waits,
                'in_flight': len(self._inflight),
            }
