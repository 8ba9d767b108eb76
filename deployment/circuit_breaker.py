"""
Circuit breaker around the lesson generation capability.
Stops a regression batch from hammering a degraded LLM endpoint:
once the generator keeps failing, remaining baselines fail fast
with a CircuitOpenError instead of waiting on the model.
"""

import inspect
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from shared.numeric import round_half_up

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"  # Generation allowed
    OPEN = "open"  # Generator failing, calls rejected
    HALF_OPEN = "half_open"  # Trial generations after the cooldown


class CircuitOpenError(Exception):
    """Raised when a generation call is rejected by an open circuit."""

    def __init__(self, failures: int, retry_after: float, last_error: Optional[str] = None):
        self.failures = failures
        self.retry_after = retry_after
        self.last_error = last_error
        message = (
            f"Lesson generation circuit open after {failures} consecutive failures; "
            f"retry in {retry_after:.1f}s"
        )
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


@dataclass
class BreakerStats:
    state: str
    consecutive_failures: int
    rejected_calls: int
    trial_calls: int
    last_error: Optional[str]
    retry_after: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for generation calls.

    States:
    - CLOSED: generations pass through
    - OPEN: failure_threshold consecutive failures, generations rejected
    - HALF_OPEN: after cooldown seconds, up to recovery_calls trial
      generations; all must succeed to close again, any failure reopens

    Usage:
        breaker = CircuitBreaker(failure_threshold=3)
        text = breaker.call(generate, prompt)
    """

    failure_threshold: int = 3
    cooldown: float = 30.0
    recovery_calls: int = 2
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    state: CircuitState = field(default=CircuitState.CLOSED)
    consecutive_failures: int = field(default=0)
    opened_at: Optional[float] = field(default=None)
    trial_calls: int = field(default=0)
    rejected_calls: int = field(default=0)
    last_error: Optional[str] = field(default=None)

    def retry_after(self) -> float:
        """Seconds until an open circuit lets a trial generation through."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.cooldown - (self.clock() - self.opened_at))

    def _admit(self):
        if self.state == CircuitState.OPEN:
            if self.retry_after() > 0:
                self.rejected_calls += 1
                raise CircuitOpenError(
                    self.consecutive_failures, self.retry_after(), self.last_error
                )
            logger.info("Generation circuit HALF_OPEN: trying the model again")
            self.state = CircuitState.HALF_OPEN
            self.trial_calls = 0

        if self.state == CircuitState.HALF_OPEN:
            if self.trial_calls >= self.recovery_calls:
                self.rejected_calls += 1
                raise CircuitOpenError(self.consecutive_failures, 0.0, self.last_error)
            self.trial_calls += 1

    def _on_success(self):
        self.consecutive_failures = 0
        if self.state == CircuitState.HALF_OPEN and self.trial_calls >= self.recovery_calls:
            logger.info(
                f"Generation circuit CLOSED after {self.trial_calls} successful trial generations"
            )
            self.state = CircuitState.CLOSED
            self.trial_calls = 0
            self.last_error = None

    def _on_failure(self, error: Exception):
        self.consecutive_failures += 1
        self.last_error = f"{type(error).__name__}: {error}"
        if (
            self.state == CircuitState.HALF_OPEN
            or self.consecutive_failures >= self.failure_threshold
        ):
            logger.warning(
                f"Generation circuit OPEN after {self.consecutive_failures} failures "
                f"({self.last_error})"
            )
            self.state = CircuitState.OPEN
            self.opened_at = self.clock()

    def call(self, generate: Callable, *args, **kwargs) -> Any:
        """
        Run one generation under circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Whatever the generator raised
        """
        self._admit()
        try:
            result = generate(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    async def call_async(self, generate: Callable, *args, **kwargs) -> Any:
        """Async version of call; awaits the generator when it returns an awaitable."""
        self._admit()
        try:
            result = generate(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def get_stats(self) -> BreakerStats:
        return BreakerStats(
            state=self.state.value,
            consecutive_failures=self.consecutive_failures,
            rejected_calls=self.rejected_calls,
            trial_calls=self.trial_calls,
            last_error=self.last_error,
            retry_after=round_half_up(self.retry_after(), 1),
        )
