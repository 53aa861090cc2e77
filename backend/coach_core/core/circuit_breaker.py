"""Circuit breaker guarding calls to an unreliable dependency.

closed -> open after `failure_threshold` consecutive failures.
open -> half_open once `reset_timeout_ms` has elapsed since opening; the
half-open state admits exactly one trial call. A failed trial re-opens the circuit
and restarts the timer; any success closes it and zeroes the failure count.
A trial that ends with neither outcome (cancellation) must be handed back
with `release_trial()`.

One instance per logical dependency. Not thread-safe; shared between
coroutines on a single event loop.
"""

import enum
import logging
import time
from collections.abc import Callable

logger = logging.getLogger("potok.breaker")


class CircuitState(str, enum.Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 3,
        reset_timeout_ms: int = 8000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock
        self._failures = 0
        self._state = CircuitState.closed
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def can_request(self) -> bool:
        if self._state == CircuitState.closed:
            return True
        if self._state == CircuitState.open:
            elapsed_ms = (self._clock() - self._opened_at) * 1000
            if elapsed_ms < self.reset_timeout_ms:
                return False
            self._state = CircuitState.half_open
            self._trial_in_flight = True
            return True
        # half_open: one trial at a time
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def record_success(self) -> None:
        self._failures = 0
        self._state = CircuitState.closed
        self._trial_in_flight = False

    def release_trial(self) -> None:
        """Give back a half-open trial that ended without an outcome."""
        if self._state == CircuitState.half_open:
            self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._trial_in_flight = False
        if self._state == CircuitState.half_open or self._failures >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.open
        self._opened_at = self._clock()
        logger.warning(
            "circuit_open name=%s failures=%d reset_timeout_ms=%d",
            self.name,
            self._failures,
            self.reset_timeout_ms,
        )
