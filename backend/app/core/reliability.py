"""
Circuit breaker for best-effort side channels.

Ledger writes never go through a breaker. It guards only calls whose
failure must not reach the caller, such as the revalidation publish.
"""

import logging
import time
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger("troop_treasury.reliability")

T = TypeVar("T")

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Opens after `failure_threshold` consecutive failures and rejects calls
    until `reset_timeout` seconds have passed. The first call after that is
    a trial: success closes the circuit, failure opens it again.
    """

    def __init__(self, name: str = "default", failure_threshold: int = 5, reset_timeout: float = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.opened_at = 0.0
        self.state = CLOSED

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        if self.state == OPEN:
            if time.monotonic() - self.opened_at < self.reset_timeout:
                raise CircuitOpenError(f"Circuit '{self.name}' is open")
            self.state = HALF_OPEN

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        if self.failures or self.state != CLOSED:
            self.reset_state()
        return result

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != OPEN:
                logger.warning("Circuit '%s' opened after %s failure(s)", self.name, self.failures)
            self.state = OPEN
            self.opened_at = time.monotonic()

    def reset_state(self) -> None:
        if self.state != CLOSED:
            logger.info("Circuit '%s' closed", self.name)
        self.failures = 0
        self.state = CLOSED


revalidation_circuit_breaker = CircuitBreaker("revalidation", failure_threshold=3, reset_timeout=30)
