"""Retry with exponential backoff, per-call timeout and a per-service circuit breaker."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from cloud_remediator.errors import CircuitOpenError

logger = logging.getLogger(__name__)

AsyncOperation = Callable[[], Awaitable[Any]]

_MAX_BACKOFF_SECONDS = 30.0


@dataclass
class CircuitBreaker:
    failure_threshold: int = 5
    reset_seconds: float = 60.0
    failures: int = 0
    opened_at: float | None = None

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if time.monotonic() - self.opened_at >= self.reset_seconds:
            return "half-open"
        return "open"

    def allow(self) -> bool:
        return self.state != "open"

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == "half-open" or self.failures >= self.failure_threshold:
            self.opened_at = time.monotonic()


class ResilienceManager:
    def __init__(
        self,
        base_delay_seconds: float = 1.0,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_delay = base_delay_seconds
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._sleep = sleep
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def breaker(self, service_name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(service_name)
            if breaker is None:
                breaker = CircuitBreaker(self._failure_threshold, self._reset_seconds)
                self._breakers[service_name] = breaker
            return breaker

    def backoff_delay(self, attempt: int) -> float:
        return min(self._base_delay * (2 ** attempt), _MAX_BACKOFF_SECONDS)

    async def run(
        self,
        fn: AsyncOperation,
        service_name: str = "default",
        max_retries: int = 3,
        use_circuit_breaker: bool = True,
        timeout_ms: int | None = None,
    ) -> Any:
        """Await ``fn()`` with up to ``max_retries`` retries after the first attempt.

        Raises :class:`CircuitOpenError` without calling ``fn`` while the
        breaker for ``service_name`` is open; otherwise re-raises the last error.
        """
        breaker = self.breaker(service_name) if use_circuit_breaker else None
        timeout = timeout_ms / 1000.0 if timeout_ms else None
        attempt = 0

        while True:
            if breaker is not None and not breaker.allow():
                raise CircuitOpenError(service_name)
            try:
                if timeout is not None:
                    result = await asyncio.wait_for(fn(), timeout=timeout)
                else:
                    result = await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if breaker is not None:
                    breaker.record_failure()
                if attempt >= max_retries:
                    raise
                delay = self.backoff_delay(attempt)
                attempt += 1
                logger.warning(
                    "Attempt %d/%d for %s failed: %s; retrying in %.1fs",
                    attempt,
                    max_retries + 1,
                    service_name,
                    str(exc) or type(exc).__name__,
                    delay,
                )
                await self._sleep(delay)
            else:
                if breaker is not None:
                    breaker.record_success()
                return result
