"""Recovery strategies tried after a task fails inside the loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from cloud_remediator.errors import CommandError, TaskVerificationError
from cloud_remediator.execution.aws_client import aws_error_code

logger = logging.getLogger(__name__)

_THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "InternalError",
    }
)


@dataclass
class RecoveryOutcome:
    recovered: bool
    result: dict[str, Any] | None = None
    strategy: str | None = None
    reason: str = ""


@dataclass
class RecoveryStrategy:
    name: str
    matches: Callable[[BaseException], bool]
    max_retries: int = 2
    delay_seconds: float = 0.0


@dataclass
class RecoveryContext:
    """What a recovery strategy may use to retry a failed task.

    ``retry`` re-runs execute + verify and returns the executor result.
    """

    task_id: str
    task_type: str
    retry: Callable[[], Awaitable[dict[str, Any]]]
    metadata: dict[str, Any] = field(default_factory=dict)


def is_transient(error: BaseException) -> bool:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    if aws_error_code(error) in _THROTTLING_CODES:
        return True
    cause = error.__cause__
    if cause is not None and cause is not error:
        return is_transient(cause)
    return False


def is_retryable_task_failure(error: BaseException) -> bool:
    # Verification can fail on eventually consistent reads; command errors may be flaky.
    return isinstance(error, (TaskVerificationError, CommandError)) or isinstance(
        error.__cause__, CommandError
    )


def default_strategies(max_retries: int = 2) -> list[RecoveryStrategy]:
    return [
        RecoveryStrategy("transient-retry", is_transient, max_retries, delay_seconds=1.0),
        RecoveryStrategy("task-retry", is_retryable_task_failure, max_retries),
    ]


class ErrorRecovery:
    def __init__(
        self,
        strategies: list[RecoveryStrategy] | None = None,
        max_retries: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._strategies = strategies if strategies is not None else default_strategies(max_retries)
        self._sleep = sleep

    async def attempt_recovery(
        self, error: BaseException, ctx: RecoveryContext
    ) -> RecoveryOutcome:
        strategy = next((s for s in self._strategies if s.matches(error)), None)
        if strategy is None:
            return RecoveryOutcome(recovered=False, reason=f"No recovery strategy for: {error}")

        last_error: BaseException = error
        for attempt in range(1, strategy.max_retries + 1):
            if strategy.delay_seconds:
                await self._sleep(strategy.delay_seconds * attempt)
            try:
                result = await ctx.retry()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                logger.info(
                    "Recovery %s attempt %d/%d for task %s failed: %s",
                    strategy.name,
                    attempt,
                    strategy.max_retries,
                    ctx.task_id,
                    exc,
                )
                continue
            logger.info("Task %s recovered via %s", ctx.task_id, strategy.name)
            return RecoveryOutcome(recovered=True, result=result, strategy=strategy.name)

        return RecoveryOutcome(
            recovered=False,
            strategy=strategy.name,
            reason=f"Recovery exhausted: {last_error}",
        )
