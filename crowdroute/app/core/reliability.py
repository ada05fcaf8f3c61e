"""
Reliability utilities.

Circuit breaker guarding optional collaborators (the Redis read cache).
When the breaker is open, callers skip the collaborator instead of
waiting on it, so a cache outage never slows down or fails a read.
"""

import logging
import time
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Count consecutive failures of a collaborator.

    After ``failure_threshold`` failures the circuit opens and calls are
    rejected with CircuitOpenError until ``reset_timeout`` seconds pass;
    the next call is then let through (HALF_OPEN) and closes the circuit
    again on success.
    """

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.monotonic() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.failures >= self.failure_threshold and self.state != "OPEN":
            self.state = "OPEN"
            logger.warning("Circuit opened", extra={"circuit": self.name, "failures": self.failures})

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


cache_circuit_breaker = CircuitBreaker("redis-cache", failure_threshold=3, reset_timeout=30)
