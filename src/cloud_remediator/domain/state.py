"""Per-execution bookkeeping: status machine, task records, rollback points."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from cloud_remediator.errors import InvalidStateTransition

if TYPE_CHECKING:
    from cloud_remediator.risk.assessor import RiskAssessment


class ExecutionStatus(str, Enum):
    INITIALIZING = "initializing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.PARTIAL,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    }
)

_ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.INITIALIZING: frozenset({ExecutionStatus.EXECUTING}),
    ExecutionStatus.EXECUTING: frozenset(
        {
            ExecutionStatus.COMPLETED,
            ExecutionStatus.PARTIAL,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        }
    ),
}


class RollbackStrategyType(str, Enum):
    TERRAFORM_DESTROY = "terraform-destroy"
    STACK_DELETE = "stack-delete"
    REVERSE_SCRIPT = "reverse-script"
    MANUAL_ROLLBACK = "manual-rollback"


@dataclass(frozen=True)
class RollbackStrategy:
    type: RollbackStrategyType
    automated: bool


_STRATEGY_BY_TASK_TYPE = {
    "terraform": RollbackStrategyType.TERRAFORM_DESTROY,
    "cloudformation": RollbackStrategyType.STACK_DELETE,
    "boto3": RollbackStrategyType.REVERSE_SCRIPT,
    "manual": RollbackStrategyType.MANUAL_ROLLBACK,
}
_AUTOMATED_TASK_TYPES = frozenset({"terraform", "cloudformation"})


def rollback_strategy_for(task_type: object) -> RollbackStrategy:
    key = str(getattr(task_type, "value", task_type))
    return RollbackStrategy(
        type=_STRATEGY_BY_TASK_TYPE.get(key, RollbackStrategyType.MANUAL_ROLLBACK),
        automated=key in _AUTOMATED_TASK_TYPES,
    )


@dataclass(frozen=True)
class RollbackPoint:
    id: str
    task_id: str
    execution_id: str
    timestamp: str
    pre_execution_state: Any
    rollback_strategy: RollbackStrategy


@dataclass
class CompletedTask:
    task_id: str
    result: dict[str, Any]
    duration_ms: int
    recovered: bool = False


@dataclass
class FailedTask:
    task_id: str
    error: str
    duration_ms: int


@dataclass
class ExecutionState:
    execution_id: str
    plan_id: str
    start_time: str
    started_ms: int
    status: ExecutionStatus = ExecutionStatus.INITIALIZING
    completed_tasks: list[CompletedTask] = field(default_factory=list)
    failed_tasks: list[FailedTask] = field(default_factory=list)
    rollback_points: list[RollbackPoint] = field(default_factory=list)
    risk_assessment: RiskAssessment | None = None
    advisories: dict[str, dict[str, Any]] = field(default_factory=dict)

    def transition(self, target: ExecutionStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if target not in allowed:
            raise InvalidStateTransition(self.status.value, target.value)
        self.status = target

    @property
    def processed_count(self) -> int:
        return len(self.completed_tasks) + len(self.failed_tasks)

    @property
    def failure_rate(self) -> float:
        total = self.processed_count
        if total == 0:
            return 0.0
        return len(self.failed_tasks) / total

    def terminal_status(self) -> ExecutionStatus:
        if not self.failed_tasks:
            return ExecutionStatus.COMPLETED
        if self.completed_tasks:
            return ExecutionStatus.PARTIAL
        return ExecutionStatus.FAILED

    def snapshot(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "start_time": self.start_time,
            "completed_tasks": len(self.completed_tasks),
            "failed_tasks": len(self.failed_tasks),
            "rollback_points": len(self.rollback_points),
            "risk_assessment": (
                self.risk_assessment.to_dict() if self.risk_assessment is not None else None
            ),
        }
