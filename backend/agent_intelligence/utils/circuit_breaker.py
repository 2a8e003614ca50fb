# backend/agent_intelligence/utils/circuit_breaker.py
"""
Circuit breaker guarding the analysis dependency.

A weekly learning run asks the LLM once per (agent, decision type). When
the endpoint is down, the breaker opens after a few consecutive failures
so the remaining pairs degrade immediately instead of each waiting out
their retries.

    CLOSED ──failures >= threshold──> OPEN ──timeout──> HALF_OPEN
       ^                                                    │
       └──────────── successes >= threshold ────────────────┘
                     (any failure in HALF_OPEN reopens)
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from agent_intelligence.utils.logger import logger


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """The breaker refused the call without invoking the dependency."""
    pass


@dataclass
class BreakerStats:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    trial_successes: int = 0
    trials_in_flight: int = 0
    opened_at: Optional[float] = None
    total_calls: int = 0
    total_failures: int = 0
    total_rejected: int = 0


class CircuitBreaker:
    """
    Example:
        breaker = CircuitBreaker(name="analysis", failure_threshold=3, timeout=300.0)
        raw = await breaker.call(client_call, prompt)
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        half_open_max_calls: int = 1,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls
        self.stats = BreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    @property
    def is_open(self) -> bool:
        return self.stats.state == CircuitState.OPEN

    def retry_after(self) -> float:
        """Seconds until an open breaker lets a trial call through."""
        if self.stats.state != CircuitState.OPEN or self.stats.opened_at is None:
            return 0.0
        return max(0.0, self.timeout - (time.monotonic() - self.stats.opened_at))

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run func under the breaker; raises CircuitBreakerError when the call is refused."""
        async with self._lock:
            self._admit()

        self.stats.total_calls += 1
        probing = self.stats.state == CircuitState.HALF_OPEN
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                self._record_failure(e)
            raise
        else:
            async with self._lock:
                self._record_success()
            return result
        finally:
            if probing:
                self.stats.trials_in_flight = max(0, self.stats.trials_in_flight - 1)

    def _admit(self) -> None:
        if self.stats.state == CircuitState.OPEN:
            if self.retry_after() > 0:
                self.stats.total_rejected += 1
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is OPEN; retry in {self.retry_after():.0f}s"
                )
            self._set_state(CircuitState.HALF_OPEN)

        if self.stats.state == CircuitState.HALF_OPEN:
            if self.stats.trials_in_flight >= self.half_open_max_calls:
                self.stats.total_rejected += 1
                raise CircuitBreakerError(f"Circuit breaker '{self.name}' is HALF_OPEN; trial call already running")
            self.stats.trials_in_flight += 1

    def _record_success(self) -> None:
        if self.stats.state == CircuitState.HALF_OPEN:
            self.stats.trial_successes += 1
            if self.stats.trial_successes >= self.success_threshold:
                self._set_state(CircuitState.CLOSED)
        else:
            self.stats.consecutive_failures = 0

    def _record_failure(self, error: Exception) -> None:
        self.stats.total_failures += 1
        self.stats.consecutive_failures += 1
        logger.warning(f"[CircuitBreaker:{self.name}] call failed in {self.stats.state.value} state: {error}")

        if self.stats.state == CircuitState.HALF_OPEN or self.stats.consecutive_failures >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        previous = self.stats.state
        self.stats.state = state
        if state == CircuitState.OPEN:
            self.stats.opened_at = time.monotonic()
            logger.error(
                f"[CircuitBreaker:{self.name}] OPEN after {self.stats.consecutive_failures} failure(s); "
                f"refusing calls for {self.timeout:.0f}s"
            )
        else:
            self.stats.consecutive_failures = 0
            self.stats.trial_successes = 0
            logger.info(f"[CircuitBreaker:{self.name}] {previous.value} -> {state.value}")

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self.stats.state.value,
            "consecutive_failures": self.stats.consecutive_failures,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "total_rejected": self.stats.total_rejected,
            "retry_after": round(self.retry_after(), 1),
        }

    def reset(self) -> None:
        logger.info(f"[CircuitBreaker:{self.name}] manual reset")
        self.stats = BreakerStats()
