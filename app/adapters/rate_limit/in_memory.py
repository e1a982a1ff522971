"""In-memory per-client window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Bounded: expired windows are swept lazily and the number of tracked keys
  is capped, so clients that stop sending traffic do not accumulate.
"""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class _WindowState:
    window_start: float
    count: int


class InMemoryWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter with an independent time window per key.

    A key's window opens on its first request and lasts ``window_seconds``;
    the first request after it elapses starts a fresh window. Windows of
    different keys never interact.

    Important:
        This limiter is per-process only. If the proxy runs with multiple
        workers, each worker will enforce its own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of allowed units per window.
            window_seconds: Size of each key's window in seconds.
            max_keys: Maximum number of keys tracked; oldest are evicted first.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If any argument is invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        self._limit = limit
        self._window_seconds = window_seconds
        self._max_keys = max_keys
        self._clock = clock
        self._lock = threading.RLock()
        # Ordered by window start: oldest windows first
        self._state_by_key: OrderedDict[str, _WindowState] = OrderedDict()
        self._last_sweep = clock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def __len__(self) -> int:
        return len(self._state_by_key)

    def _is_expired(self, state: _WindowState, now: float) -> bool:
        return now - state.window_start >= self._window_seconds

    def _sweep(self, now: float) -> int:
        """Drop expired windows; runs at most once per window length.

        Returns:
            Number of evicted keys.
        """
        if now - self._last_sweep < self._window_seconds:
            return 0
        self._last_sweep = now

        evicted = 0
        # Oldest first, so stop at the first live window
        while self._state_by_key:
            key, state = next(iter(self._state_by_key.items()))
            if not self._is_expired(state, now):
                break
            del self._state_by_key[key]
            evicted += 1
        return evicted

    def _get_or_reset_state(self, key: str, now: float) -> _WindowState:
        """Get the live window for key, opening a new one when needed."""
        state = self._state_by_key.get(key)
        if state is not None and not self._is_expired(state, now):
            return state

        if state is not None:
            del self._state_by_key[key]
        while len(self._state_by_key) >= self._max_keys:
            self._state_by_key.popitem(last=False)

        state = _WindowState(window_start=now, count=0)
        self._state_by_key[key] = state
        return state

    def _build_result(
        self,
        *,
        allowed: bool,
        now: float,
        state: _WindowState,
    ) -> RateLimitResult:
        reset_at = state.window_start + self._window_seconds
        remaining = max(0, self._limit - state.count)
        retry_after = None if allowed else max(0, int(math.ceil(reset_at - now)))
        return RateLimitResult(
            allowed=allowed,
            limit=self._limit,
            remaining=remaining,
            reset_at=int(math.ceil(reset_at)),
            retry_after_seconds=retry_after,
        )

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for the provided key.

        Rejected requests do not count against the budget.

        Args:
            key: Unique identifier for rate limiting (e.g., client address).
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            self._sweep(now)
            state = self._get_or_reset_state(key, now)

            if state.count + cost <= self._limit:
                state.count += cost
                return self._build_result(allowed=True, now=now, state=state)

            return self._build_result(allowed=False, now=now, state=state)
