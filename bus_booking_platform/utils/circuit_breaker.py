"""
Circuit breaker pattern implementation for external service calls.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, field

from ..config import get_settings
from ..utils.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing fast
    HALF_OPEN = "half_open"  # Testing if service is back


class CircuitBreakerOpenError(ExternalServiceError):
    """Raised instead of calling the service while the circuit is open."""

    def __init__(self, name: str, failure_count: int, last_failure_time: Optional[float]):
        super().__init__(
            name,
            f"Circuit breaker is OPEN for {name}",
            details={
                "state": CircuitState.OPEN.value,
                "failure_count": failure_count,
                "last_failure_time": last_failure_time
            }
        )


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5          # Failures before the circuit opens
    recovery_timeout: int = 60          # Seconds before a trial call
    expected_exception: Any = Exception  # Exception type(s) counted as failure
    success_threshold: int = 3          # Successes needed to close from half-open
    timeout: float = 30.0               # Call timeout in seconds


@dataclass
class CircuitBreakerStats:
    """Circuit breaker statistics."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    state_changes: Dict[str, int] = field(default_factory=lambda: {
        "closed_to_open": 0,
        "open_to_half_open": 0,
        "half_open_to_closed": 0,
        "half_open_to_open": 0
    })


class CircuitBreaker:
    """Circuit breaker implementation for external service calls."""

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        async with self._lock:
            self.stats.total_requests += 1

            if self._should_open_circuit():
                self._open_circuit()

            if self._should_attempt_reset():
                self._half_open_circuit()

            if self.stats.state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    self.name, self.stats.failure_count, self.stats.last_failure_time
                )

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs),
                timeout=self.config.timeout
            )
        except asyncio.TimeoutError as e:
            await self._record_failure()
            raise ExternalServiceError(
                self.name,
                f"Request timeout after {self.config.timeout}s",
                details={"timeout": self.config.timeout}
            ) from e
        except self.config.expected_exception as e:
            await self._record_failure()
            raise ExternalServiceError(
                self.name,
                f"Service call failed: {str(e)}",
                details={"original_error": type(e).__name__}
            ) from e

        await self._record_success()
        return result

    async def _record_success(self):
        async with self._lock:
            self.stats.success_count += 1
            self.stats.total_successes += 1
            self.stats.last_success_time = time.time()

            if self.stats.state == CircuitState.CLOSED:
                self.stats.failure_count = 0

            if (self.stats.state == CircuitState.HALF_OPEN and
                    self.stats.success_count >= self.config.success_threshold):
                self._close_circuit()

    async def _record_failure(self):
        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1
            self.stats.last_failure_time = time.time()

            if self.stats.state == CircuitState.HALF_OPEN:
                self.stats.success_count = 0
                self._open_circuit()

            logger.warning(f"Circuit breaker {self.name}: Failure recorded ({self.stats.failure_count})")

    def _should_open_circuit(self) -> bool:
        return (self.stats.state == CircuitState.CLOSED and
                self.stats.failure_count >= self.config.failure_threshold)

    def _should_attempt_reset(self) -> bool:
        if self.stats.state != CircuitState.OPEN or not self.stats.last_failure_time:
            return False

        return time.time() - self.stats.last_failure_time >= self.config.recovery_timeout

    def _open_circuit(self):
        old_state = self.stats.state
        self.stats.state = CircuitState.OPEN

        if old_state == CircuitState.CLOSED:
            self.stats.state_changes["closed_to_open"] += 1
        elif old_state == CircuitState.HALF_OPEN:
            self.stats.state_changes["half_open_to_open"] += 1

        logger.warning(f"Circuit breaker {self.name}: OPENED (failures: {self.stats.failure_count})")

    def _half_open_circuit(self):
        self.stats.state = CircuitState.HALF_OPEN
        self.stats.success_count = 0
        self.stats.state_changes["open_to_half_open"] += 1

        logger.info(f"Circuit breaker {self.name}: HALF-OPEN (attempting recovery)")

    def _close_circuit(self):
        self.stats.state = CircuitState.CLOSED
        self.stats.failure_count = 0
        self.stats.success_count = 0
        self.stats.state_changes["half_open_to_closed"] += 1

        logger.info(f"Circuit breaker {self.name}: CLOSED (service recovered)")

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_requests": self.stats.total_requests,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
            "last_failure_time": self.stats.last_failure_time,
            "state_changes": self.stats.state_changes.copy(),
        }


class CircuitBreakerRegistry:
    """Registry for managing multiple circuit breakers."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, config or CircuitBreakerConfig())

        return self._breakers[name]

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}


# Global registry instance
_registry = CircuitBreakerRegistry()


def get_circuit_breaker(name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
    """Get a circuit breaker from the global registry."""
    return _registry.get_breaker(name, config)


def get_circuit_breaker_registry() -> CircuitBreakerRegistry:
    return _registry


def get_payment_circuit_breaker(expected_exception: Any = Exception) -> CircuitBreaker:
    """Get circuit breaker for the payment gateway."""
    settings = get_settings()
    config = CircuitBreakerConfig(
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_timeout,
        expected_exception=expected_exception,
        timeout=settings.gateway_timeout_seconds
    )
    return get_circuit_breaker("payment_gateway", config)
