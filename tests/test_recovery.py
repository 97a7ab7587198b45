from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError

from cloud_remediator.errors import CommandError, TaskExecutionError, TaskVerificationError
from cloud_remediator.execution.recovery import (
    ErrorRecovery,
    RecoveryContext,
    is_retryable_task_failure,
    is_transient,
)


def _ctx(retry: AsyncMock) -> RecoveryContext:
    return RecoveryContext(task_id="t1", task_type="terraform", retry=retry)


def _throttled() -> ClientError:
    return ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "CreateStack")


def test_is_transient() -> None:
    assert is_transient(TimeoutError())
    assert is_transient(ConnectionError())
    assert is_transient(_throttled())
    assert not is_transient(ValueError("bad input"))

    wrapped = TaskExecutionError("failed", "t1")
    wrapped.__cause__ = _throttled()
    assert is_transient(wrapped)


def test_is_retryable_task_failure() -> None:
    assert is_retryable_task_failure(TaskVerificationError("t1", "not ready"))
    wrapped = TaskExecutionError("failed", "t1")
    wrapped.__cause__ = CommandError("terraform apply failed")
    assert is_retryable_task_failure(wrapped)
    assert not is_retryable_task_failure(TaskExecutionError("no template", "t1"))


@pytest.mark.asyncio
async def test_recovers_on_second_retry() -> None:
    sleep = AsyncMock()
    recovery = ErrorRecovery(max_retries=2, sleep=sleep)
    retry = AsyncMock(side_effect=[TimeoutError(), {"status": "success"}])

    outcome = await recovery.attempt_recovery(TimeoutError(), _ctx(retry))

    assert outcome.recovered is True
    assert outcome.result == {"status": "success"}
    assert outcome.strategy == "transient-retry"
    assert retry.await_count == 2


@pytest.mark.asyncio
async def test_recovery_exhausted_after_max_retries() -> None:
    recovery = ErrorRecovery(max_retries=2, sleep=AsyncMock())
    retry = AsyncMock(side_effect=TaskVerificationError("t1", "still broken"))

    outcome = await recovery.attempt_recovery(TaskVerificationError("t1", "broken"), _ctx(retry))

    assert outcome.recovered is False
    assert retry.await_count == 2
    assert "still broken" in outcome.reason


@pytest.mark.asyncio
async def test_unmatched_error_is_not_retried() -> None:
    recovery = ErrorRecovery(sleep=AsyncMock())
    retry = AsyncMock()

    outcome = await recovery.attempt_recovery(ValueError("bad input"), _ctx(retry))

    assert outcome.recovered is False
    retry.assert_not_awaited()
