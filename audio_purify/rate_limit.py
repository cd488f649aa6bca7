from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from threading import Event, Lock
from typing import Awaitable, Callable, Deque, Dict, Optional, Set

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Sliding-window limiter shared by every lookup.

    At most ``max_requests`` admissions per rolling ``window`` seconds. Waiters
    queue on an asyncio lock, which wakes them in arrival order.
    """

    def __init__(
        self,
        max_requests: int,
        window: float = WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window:
            self._stamps.popleft()

    def resize(self, max_requests: int) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if max_requests != self.max_requests:
            logger.info("Rate limit changed from %s to %s per %.0fs", self.max_requests, max_requests, self.window)
        self.max_requests = max_requests

    def delay_until_available(self, slots: int = 1) -> float:
        now = self._clock()
        self._prune(now)
        slots = min(max(slots, 1), self.max_requests)
        excess = len(self._stamps) + slots - self.max_requests
        if excess <= 0:
            return 0.0
        return max(0.0, self._stamps[excess - 1] + self.window - now)

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._stamps)

    async def acquire(self, slots: int = 1) -> None:
        """Take ``slots`` admissions at once, capped at ``max_requests``."""
        async with self._lock:
            while True:
                delay = self.delay_until_available(slots)
                if delay <= 0:
                    now = self._clock()
                    self._stamps.extend([now] * min(max(slots, 1), self.max_requests))
                    return
                logger.debug("Rate limit reached, waiting %.1fs", delay)
                await self._sleep(delay)

    async def try_acquire(self, timeout: float, slots: int = 1) -> bool:
        """Wait up to ``timeout`` seconds for the slots; False when none opened up."""
        try:
            await asyncio.wait_for(self.acquire(slots), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class BackoffTracker:
    """Consecutive transient failures per record and the resulting wait windows."""

    def __init__(
        self,
        base_seconds: float,
        max_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self._clock = clock
        self._failures: Dict[int, int] = {}
        self._until: Dict[int, float] = {}
        self._lock = Lock()

    def configure(self, base_seconds: float, max_seconds: float) -> None:
        with self._lock:
            self.base_seconds = base_seconds
            self.max_seconds = max_seconds

    def delay_for(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.base_seconds * (2 ** (failures - 1)), self.max_seconds)

    def record_failure(self, record_id: int) -> float:
        with self._lock:
            failures = self._failures.get(record_id, 0) + 1
            self._failures[record_id] = failures
            delay = self.delay_for(failures)
            self._until[record_id] = self._clock() + delay
            return delay

    def failures(self, record_id: int) -> int:
        with self._lock:
            return self._failures.get(record_id, 0)

    def backoff_until(self, record_id: int) -> Optional[float]:
        with self._lock:
            return self._until.get(record_id)

    def remaining(self, record_id: int) -> float:
        until = self.backoff_until(record_id)
        if until is None:
            return 0.0
        return max(0.0, until - self._clock())

    def in_backoff(self, record_id: int) -> bool:
        return self.remaining(record_id) > 0

    def reset(self, record_id: int) -> None:
        with self._lock:
            self._failures.pop(record_id, None)
            self._until.pop(record_id, None)


class RecordLeases:
    """At most one enrichment in flight per record id."""

    def __init__(self) -> None:
        self._held: Set[int] = set()
        self._lock = Lock()

    def try_acquire(self, record_id: int) -> bool:
        with self._lock:
            if record_id in self._held:
                return False
            self._held.add(record_id)
            return True

    def release(self, record_id: int) -> None:
        with self._lock:
            self._held.discard(record_id)

    def is_held(self, record_id: int) -> bool:
        with self._lock:
            return record_id in self._held

    def __len__(self) -> int:
        with self._lock:
            return len(self._held)


class CancelToken:
    """Marks an interactive attempt as superseded; checked before write-back."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
