from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from cloud_remediator.domain.models import RemediationPlan, Task
from cloud_remediator.domain.state import ExecutionState, RollbackStrategyType
from cloud_remediator.execution.executors import ExecutorRegistry, ManualExecutor
from cloud_remediator.execution.rollback import RollbackManager
from cloud_remediator.store.memory import InMemoryGraphStore


class RecordingExecutor(ManualExecutor):
    task_type = "terraform"

    def __init__(self, fail_on: set[str] | None = None) -> None:
        super().__init__()
        self.rolled_back: list[str] = []
        self._fail_on = fail_on or set()

    async def rollback(self, task, point):
        if task.id in self._fail_on:
            raise RuntimeError(f"cannot undo {task.id}")
        self.rolled_back.append(point.id)
        return {"success": True}


def _plan() -> RemediationPlan:
    return RemediationPlan(
        id="plan-1",
        tasks=[
            Task(id=f"t{i}", type="terraform", resource_arn=f"arn:aws:s3:::bucket-{i}")
            for i in range(1, 4)
        ],
    )


def _state() -> ExecutionState:
    return ExecutionState(execution_id="exec-1", plan_id="plan-1", start_time="now", started_ms=0)


@pytest.mark.asyncio
async def test_create_rollback_point_snapshots_state() -> None:
    graph = InMemoryGraphStore()
    graph.set_resource_state("arn:aws:s3:::bucket-1", {"public": True})
    executor = RecordingExecutor()
    manager = RollbackManager(ExecutorRegistry([executor]), graph)

    point = await manager.create_rollback_point(_plan().tasks[0], "exec-1")

    assert point.task_id == "t1"
    assert point.execution_id == "exec-1"
    assert point.pre_execution_state == {"public": True}
    assert point.rollback_strategy.type is RollbackStrategyType.TERRAFORM_DESTROY
    assert point.rollback_strategy.automated is True


@pytest.mark.asyncio
async def test_snapshot_failure_yields_none() -> None:
    provider = AsyncMock()
    provider.get_resource_state.side_effect = RuntimeError("describe failed")
    manager = RollbackManager(ExecutorRegistry([RecordingExecutor()]), provider)

    point = await manager.create_rollback_point(_plan().tasks[0], "exec-1")

    assert point.pre_execution_state is None


@pytest.mark.asyncio
async def test_emergency_rollback_runs_in_reverse_order() -> None:
    executor = RecordingExecutor()
    manager = RollbackManager(ExecutorRegistry([executor]))
    plan = _plan()
    state = _state()
    for task in plan.tasks:
        state.rollback_points.append(await manager.create_rollback_point(task, "exec-1"))
    p1, p2, p3 = (p.id for p in state.rollback_points)

    outcomes = await manager.perform_emergency_rollback(state, plan)

    assert executor.rolled_back == [p3, p2, p1]
    assert [o.task_id for o in outcomes] == ["t3", "t2", "t1"]
    assert all(o.success for o in outcomes)


@pytest.mark.asyncio
async def test_emergency_rollback_continues_past_failures() -> None:
    executor = RecordingExecutor(fail_on={"t2"})
    manager = RollbackManager(ExecutorRegistry([executor]))
    plan = _plan()
    state = _state()
    for task in plan.tasks:
        state.rollback_points.append(await manager.create_rollback_point(task, "exec-1"))

    outcomes = await manager.perform_emergency_rollback(state, plan)

    assert len(executor.rolled_back) == 2
    failed = [o for o in outcomes if not o.success]
    assert [o.task_id for o in failed] == ["t2"]
    assert "cannot undo t2" in failed[0].error


@pytest.mark.asyncio
async def test_emergency_rollback_without_plan_records_errors() -> None:
    manager = RollbackManager(ExecutorRegistry([RecordingExecutor()]))
    state = _state()
    state.rollback_points.append(await manager.create_rollback_point(_plan().tasks[0], "exec-1"))

    outcomes = await manager.perform_emergency_rollback(state, None)

    assert outcomes[0].success is False
    assert "not found in plan" in outcomes[0].error
