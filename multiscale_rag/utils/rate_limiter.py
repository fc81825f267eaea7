# -*- coding: utf-8 -*-
"""
Thread-safe rate limiting for external embedding calls.

Two limits apply to every call made through an embedding capability: a
sliding one-minute window on call count, and a cap on calls outstanding at
the same time. Both are shared by all embedding workers of a pipeline.

Usage:
    limiter = RateLimiter(max_calls_per_minute=600, max_outstanding=4)

    with limiter.slot():
        vectors = embedder.embed(texts, model_id)
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window rate limiter with an outstanding-request cap.

    THREAD SAFETY:
    - RLock guards the call window (acquire() re-enters after sleeping)
    - BoundedSemaphore caps concurrent calls
    """

    def __init__(self, max_calls_per_minute: int = 600, max_outstanding: int = 4,
                 window_seconds: float = 60.0):
        """
        Args:
            max_calls_per_minute: Calls allowed per sliding window
            max_outstanding: Calls allowed in flight at once
            window_seconds: Window length (60s outside tests)
        """
        self.max_calls = max_calls_per_minute
        self.max_outstanding = max_outstanding
        self.window = window_seconds
        self.calls = deque()
        self.lock = threading.RLock()
        self._outstanding = threading.BoundedSemaphore(max_outstanding)

        self.total_calls = 0
        self.total_wait_time = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0

    def acquire(self) -> float:
        """
        Block until the window has capacity, then record a call.

        Returns:
            Seconds waited
        """
        with self.lock:
            now = time.time()
            wait_time = 0.0

            while self.calls and now - self.calls[0] > self.window:
                self.calls.popleft()

            if len(self.calls) >= self.max_calls:
                wait_time = self.window - (now - self.calls[0]) + 0.01
                logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")

                self.lock.release()
                try:
                    time.sleep(max(0.0, wait_time))
                finally:
                    self.lock.acquire()

                return wait_time + self.acquire()

            self.calls.append(now)
            self.total_calls += 1
            self.total_wait_time += wait_time
            return wait_time

    @contextmanager
    def slot(self, timeout: Optional[float] = None):
        """Hold one outstanding-request slot for the duration of a call."""
        if not self._outstanding.acquire(timeout=timeout):
            raise TimeoutError("No outstanding-request slot available")
        try:
            self.acquire()
            with self.lock:
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            yield
        finally:
            with self.lock:
                self.in_flight = max(0, self.in_flight - 1)
            self._outstanding.release()

    def get_stats(self) -> dict:
        with self.lock:
            now = time.time()
            current_window = sum(1 for t in self.calls if now - t < self.window)
            return {
                'total_calls': self.total_calls,
                'total_wait_time_sec': round(self.total_wait_time, 2),
                'current_window_usage': current_window,
                'max_capacity': self.max_calls,
                'peak_in_flight': self.peak_in_flight,
                'max_outstanding': self.max_outstanding,
            }
