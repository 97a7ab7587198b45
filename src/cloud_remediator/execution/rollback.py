"""Rollback points and the emergency compensating rollback."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from cloud_remediator.domain.models import RemediationPlan, Task
from cloud_remediator.domain.state import (
    ExecutionState,
    RollbackPoint,
    rollback_strategy_for,
)
from cloud_remediator.errors import RollbackError
from cloud_remediator.execution.executors import ExecutorRegistry
from cloud_remediator.ports import ResourceStateProvider
from cloud_remediator.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class RollbackOutcome:
    rollback_point_id: str
    task_id: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None


class RollbackManager:
    def __init__(
        self,
        executors: ExecutorRegistry,
        state_provider: ResourceStateProvider | None = None,
    ) -> None:
        self._executors = executors
        self._state_provider = state_provider

    async def _snapshot(self, task: Task) -> dict[str, Any] | None:
        if not task.resource_arn or self._state_provider is None:
            return None
        try:
            return await self._state_provider.get_resource_state(task.resource_arn)
        except Exception as exc:
            logger.warning(
                "Failed to capture pre-execution state for %s: %s", task.resource_arn, exc
            )
            return None

    async def create_rollback_point(self, task: Task, execution_id: str) -> RollbackPoint:
        executor = self._executors.get(task.type)
        strategy = (
            executor.rollback_strategy()
            if executor is not None
            else rollback_strategy_for(task.type)
        )
        return RollbackPoint(
            id=f"rbp-{uuid.uuid4().hex}",
            task_id=task.id,
            execution_id=execution_id,
            timestamp=utc_now_iso(),
            pre_execution_state=await self._snapshot(task),
            rollback_strategy=strategy,
        )

    async def _rollback_point(
        self, point: RollbackPoint, plan: RemediationPlan | None
    ) -> RollbackOutcome:
        task = plan.task(point.task_id) if plan is not None else None
        if task is None:
            raise RollbackError(f"Task {point.task_id} not found in plan", point.id)
        executor = self._executors.get(task.type)
        if executor is None:
            raise RollbackError(f"No executor for task type {task.type.value}", point.id)
        result = await executor.rollback(task, point)
        return RollbackOutcome(
            rollback_point_id=point.id,
            task_id=point.task_id,
            success=bool(result.get("success")),
            result=result,
        )

    async def perform_emergency_rollback(
        self, state: ExecutionState, plan: RemediationPlan | None
    ) -> list[RollbackOutcome]:
        """Undo every rollback point of ``state``, newest first.

        Failures on a single point are logged and recorded; the walk never
        stops early and never raises.
        """
        points = list(reversed(state.rollback_points))
        logger.warning(
            "Emergency rollback for execution %s: %d point(s)", state.execution_id, len(points)
        )
        outcomes: list[RollbackOutcome] = []
        for point in points:
            try:
                outcome = await self._rollback_point(point, plan)
            except Exception as exc:
                error = exc if isinstance(exc, RollbackError) else RollbackError(str(exc), point.id)
                logger.error(
                    "Rollback failed for point %s (task %s): %s",
                    point.id,
                    point.task_id,
                    error,
                )
                outcome = RollbackOutcome(
                    rollback_point_id=point.id,
                    task_id=point.task_id,
                    success=False,
                    error=str(error),
                )
            outcomes.append(outcome)
        return outcomes
