# chapter_portal/middleware/circuit_breaker.py
# Circuit breaker and timeout guards for calls to the spreadsheet service
# A service that keeps failing is short-circuited instead of queueing
# every request behind a 30s timeout

import time
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar
from functools import wraps

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"       # calls pass through
    OPEN = "open"           # calls fail fast
    HALF_OPEN = "half_open" # probing recovery


class CircuitBreakerError(Exception):
    """Raised when the circuit is open and the call is rejected."""
    def __init__(self, service_name: str, recovery_time: float):
        self.service_name = service_name
        self.recovery_time = recovery_time
        super().__init__(
            f"Circuit open for {service_name}; "
            f"retry in {recovery_time:.1f}s"
        )


class CircuitBreaker:
    """
    Per-service breaker.

    - CLOSED: count consecutive failures; open at ``failure_threshold``.
    - OPEN: reject calls until ``recovery_timeout`` has elapsed.
    - HALF_OPEN: let calls through; ``success_threshold`` successes close
      the circuit, one failure re-opens it.

    Exceptions listed in ``ignore`` are re-raised without counting as a
    failure (e.g. a 404 from the service is an answer, not an outage).
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 1,
        ignore: tuple = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.ignore = ignore
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _transition_to(self, new_state: CircuitState):
        if self._state != new_state:
            logger.info(
                f"Circuit breaker '{self.name}': {self._state.value} -> {new_state.value}"
            )
            self._state = new_state

    def _before_call(self):
        if self._state != CircuitState.OPEN:
            return
        elapsed = self._clock() - (self._opened_at or 0.0)
        if elapsed >= self.recovery_timeout:
            self._transition_to(CircuitState.HALF_OPEN)
            self._success_count = 0
        else:
            raise CircuitBreakerError(self.name, self.recovery_timeout - elapsed)

    def _on_success(self):
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._transition_to(CircuitState.CLOSED)
                self._failure_count = 0
        else:
            self._failure_count = 0

    def _on_failure(self):
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._opened_at = self._clock()
            self._transition_to(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Await ``func(*args, **kwargs)`` through the breaker."""
        # State changes below happen without awaiting, so no lock is needed
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.ignore:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self):
        """Manually close the circuit."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 30.0,
    ignore: tuple = (),
) -> CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            ignore=ignore,
        )
    return _circuit_breakers[name]


def breaker_states() -> dict[str, str]:
    return {name: cb.state.value for name, cb in _circuit_breakers.items()}


def with_timeout(seconds: float):
    """
    Decorator bounding an async function by ``seconds``.

    Usage:
        @with_timeout(30.0)
        async def get_values(...):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=seconds)
            except asyncio.TimeoutError:
                logger.error(f"Timeout ({seconds}s) exceeded for {func.__name__}")
                raise

        return wrapper
    return decorator
