"""Circuit breaker guarding calls to the chain RPC endpoint.

Only connectivity failures are recorded; a revert or a NotFound result
means the node answered and counts as a success.
"""
import logging
import time
from collections import deque
from enum import Enum

log = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Trips after ``failure_threshold`` RPC failures within ``failure_window``.

    While open, every call is refused until ``recovery_timeout`` has
    passed; then a single probe call is let through. The probe's result
    closes or re-opens the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window: float = 60.0,
        recovery_timeout: float = 30.0,
    ):
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self.recovery_timeout = recovery_timeout

        self._state = CircuitState.CLOSED
        self._recent: deque[float] = deque()
        self._retry_at = 0.0
        self._probing = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and time.monotonic() >= self._retry_at:
            self._state = CircuitState.HALF_OPEN
            self._probing = False
        return self._state

    def _trip(self, now: float, why: str) -> None:
        self._state = CircuitState.OPEN
        self._retry_at = now + self.recovery_timeout
        log.warning(f"RPC circuit open ({why}), next probe in {self.recovery_timeout}s")

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            log.info("RPC circuit closed, endpoint answering again")
        self._state = CircuitState.CLOSED
        self._recent.clear()
        self._probing = False

    def record_failure(self) -> None:
        now = time.monotonic()
        while self._recent and now - self._recent[0] >= self.failure_window:
            self._recent.popleft()
        self._recent.append(now)

        if self._state == CircuitState.HALF_OPEN:
            self._trip(now, "probe failed")
        elif len(self._recent) >= self.failure_threshold:
            self._trip(now, f"{len(self._recent)} failures in {self.failure_window:.0f}s")

    def allow_request(self) -> bool:
        """Whether a call may go out now; claims the probe slot when half-open."""
        current = self.state
        if current == CircuitState.HALF_OPEN and not self._probing:
            self._probing = True
            return True
        return current == CircuitState.CLOSED
