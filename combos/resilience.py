"""
Shared guards around the upstream search endpoint.

All three objects are process-wide and thread-safe.  They are built once
by the composition root (``combos.engine.get_pipeline``) and injected
into the pipeline, never read from module globals.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Hashable, Optional

from .exceptions import RateLimitTimeoutError, UpstreamCircuitOpenError

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Rate limiter
# --------------------------------------------------------------------------- #


class SlidingWindowRateLimiter:
    """
    Grants at most ``max_calls`` in any window of ``window_seconds``.

    Keeps a log of grant timestamps; a slot frees up when the oldest grant
    leaves the window.  Callers block until a slot is free or the timeout
    expires.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_calls < 1 or window_seconds <= 0:
            raise ValueError("max_calls and window_seconds must be positive")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._grants = deque()
        self._lock = threading.Lock()

    def _purge(self, now: float):
        while self._grants and now - self._grants[0] >= self.window_seconds:
            self._grants.popleft()

    def _try_grant(self) -> tuple[Optional[float], float]:
        """Return (grant time, 0) on success or (None, seconds to wait)."""
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._grants) < self.max_calls:
                self._grants.append(now)
                return now, 0.0
            return None, self._grants[0] + self.window_seconds - now

    def try_acquire(self) -> bool:
        granted, _ = self._try_grant()
        return granted is not None

    def acquire(self, timeout: Optional[float] = None) -> float:
        """
        Block until a slot is granted.

        Returns:
            The clock reading at which the slot was granted.

        Raises:
            RateLimitTimeoutError: no slot became free within ``timeout``.
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            granted, wait = self._try_grant()
            if granted is not None:
                return granted
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise RateLimitTimeoutError(
                        f"no rate limit slot within {timeout:.1f}s"
                    )
                wait = min(wait, remaining)
            self._sleep(max(wait, 0.001))

    @property
    def in_window(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._grants)


# --------------------------------------------------------------------------- #
# Circuit breaker
# --------------------------------------------------------------------------- #


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Closed -> Open after ``failure_threshold`` failures within
    ``failure_window_seconds``.  Open -> Half-Open once ``cooldown_seconds``
    have passed.  In Half-Open exactly one probe call goes through: success
    closes the breaker, failure re-opens it and restarts the cool-down.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        failure_window_seconds: float = 60.0,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "search",
    ):
        self.failure_threshold = failure_threshold
        self.failure_window_seconds = failure_window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = deque()
        self._opened_at = None
        self._probe_in_flight = False

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._advance(self._clock())
            return self._state

    def _transition(self, new_state: BreakerState):
        if new_state is self._state:
            return
        logger.warning(
            f"Circuit breaker '{self.name}': {self._state.value} -> {new_state.value}"
        )
        self._state = new_state

    def _advance(self, now: float):
        if self._state is BreakerState.OPEN and now - self._opened_at >= self.cooldown_seconds:
            self._transition(BreakerState.HALF_OPEN)
            self._probe_in_flight = False

    def _before_call(self):
        with self._lock:
            self._advance(self._clock())
            if self._state is BreakerState.OPEN:
                raise UpstreamCircuitOpenError(f"circuit '{self.name}' is open")
            if self._state is BreakerState.HALF_OPEN:
                if self._probe_in_flight:
                    raise UpstreamCircuitOpenError(
                        f"circuit '{self.name}' is half-open and probing"
                    )
                self._probe_in_flight = True

    def _open(self, now: float):
        self._transition(BreakerState.OPEN)
        self._opened_at = now
        self._failures.clear()
        self._probe_in_flight = False

    def record_success(self):
        with self._lock:
            if self._state is BreakerState.HALF_OPEN:
                self._transition(BreakerState.CLOSED)
                self._failures.clear()
                self._probe_in_flight = False

    def record_failure(self):
        with self._lock:
            now = self._clock()
            if self._state is BreakerState.HALF_OPEN:
                self._open(now)
                return
            if self._state is BreakerState.OPEN:
                return
            self._failures.append(now)
            while self._failures and now - self._failures[0] >= self.failure_window_seconds:
                self._failures.popleft()
            if len(self._failures) >= self.failure_threshold:
                self._open(now)

    def call(self, fn: Callable, *args, **kwargs):
        """
        Run ``fn`` through the breaker.

        Raises:
            UpstreamCircuitOpenError: the call was short-circuited and
                ``fn`` was not invoked.
        """
        self._before_call()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


# --------------------------------------------------------------------------- #
# In-flight de-duplication
# --------------------------------------------------------------------------- #


class InFlightRegistry:
    """
    Collapses concurrent identical requests into one upstream call.

    The first caller to ``claim`` a key becomes the leader and must
    ``resolve`` it; later callers get the same future and wait on it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: dict[Hashable, Future] = {}

    def claim(self, key: Hashable) -> tuple[Future, bool]:
        with self._lock:
            future = self._pending.get(key)
            if future is not None:
                return future, False
            future = Future()
            self._pending[key] = future
            return future, True

    def resolve(self, key: Hashable, outcome):
        with self._lock:
            future = self._pending.pop(key, None)
        if future is not None and not future.done():
            future.set_result(outcome)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._pending
