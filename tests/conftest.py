from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Any, Callable

import pytest

from cloud_remediator.domain.models import RemediationPlan, Task


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep backoff out of unit test runs.
    os.environ.setdefault("REMEDIATOR_RETRY_BASE_DELAY_SECONDS", "0")


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


@pytest.fixture
def make_task() -> Callable[..., Task]:
    def _make(task_id: str = "t1", task_type: str = "manual", **fields: Any) -> Task:
        return Task(id=task_id, type=task_type, **fields)

    return _make


@pytest.fixture
def make_plan(make_task) -> Callable[..., RemediationPlan]:
    def _make(plan_id: str = "plan-1", count: int = 3, task_type: str = "manual") -> RemediationPlan:
        tasks = [make_task(f"t{i}", task_type) for i in range(1, count + 1)]
        return RemediationPlan(id=plan_id, tasks=tasks)

    return _make
