"""
Circuit breaker for the embedding and chat-completion providers.
Fails fast while a provider is down instead of queueing timeouts.
"""

import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar
from functools import wraps

import structlog

from rental_rag.errors import ProviderError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerOpenError(ProviderError):
    """Raised instead of calling a provider whose circuit is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(
            f"Circuit breaker {name} is OPEN. Try again in {retry_in:.1f}s",
            status=503,
            provider=name,
        )


class CircuitBreaker:
    """
    Circuit breaker for external API calls.

    Counts consecutive failures; after `failure_threshold` of them the circuit opens
    and calls are rejected with CircuitBreakerOpenError until `timeout_duration`
    seconds have passed. The first calls after that run half-open, and
    `success_threshold` successes close the circuit again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout_duration: float = 30.0,
        success_threshold: int = 3,
        name: str = "default"
    ):
        self.failure_threshold = failure_threshold
        self.timeout_duration = timeout_duration
        self.success_threshold = success_threshold
        self.name = name

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorator form of `call`."""

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return wrapper

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        elapsed = time.time() - (self.last_failure_time or 0)
        if elapsed > self.timeout_duration:
            logger.info("circuit_half_open", circuit=self.name)
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            return
        logger.warning("circuit_open_rejecting", circuit=self.name)
        raise CircuitBreakerOpenError(self.name, self.timeout_duration - elapsed)

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                logger.info("circuit_closed", circuit=self.name)
                self.state = CircuitState.CLOSED
                self.failure_count = 0
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def _on_failure(self, error: Exception) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        logger.error(
            "circuit_failure",
            circuit=self.name,
            failure_count=self.failure_count,
            threshold=self.failure_threshold,
            error=str(error)[:100],
        )

        if self.state == CircuitState.HALF_OPEN:
            logger.warning("circuit_reopened", circuit=self.name)
            self.state = CircuitState.OPEN
            self.success_count = 0
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            logger.error("circuit_opened", circuit=self.name)
            self.state = CircuitState.OPEN

    def reset(self):
        """Manually reset circuit breaker."""
        logger.info("circuit_reset", circuit=self.name)
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None

    def get_state(self) -> dict:
        """Get circuit breaker state."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "time_since_last_failure": time.time() - (self.last_failure_time or time.time())
        }


# Pre-configured circuit breakers for the external providers
embedding_breaker = CircuitBreaker(
    failure_threshold=5,
    timeout_duration=30.0,
    success_threshold=3,
    name="embeddings"
)

chat_breaker = CircuitBreaker(
    failure_threshold=3,
    timeout_duration=20.0,
    success_threshold=2,
    name="chat"
)
