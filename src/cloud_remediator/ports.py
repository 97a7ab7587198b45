"""Contracts for the collaborators the engine depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from cloud_remediator.domain.models import Asset, AssetLink, Finding, RemediationPlan, Task

if TYPE_CHECKING:
    from cloud_remediator.domain.state import RollbackPoint, RollbackStrategy
    from cloud_remediator.risk.assessor import RiskAssessment


class PlanStore(Protocol):
    async def get_plan(self, plan_id: str) -> RemediationPlan | None: ...


class GraphStore(Protocol):
    async def get_finding(self, finding_id: str) -> Finding | None: ...

    async def query_findings(
        self, status: str | None = None, account_id: str | None = None
    ) -> list[Finding]: ...

    async def update_finding(self, finding: Finding) -> None: ...

    async def get_asset(self, arn: str) -> Asset | None: ...

    async def get_asset_dependencies(self, arn: str) -> list[AssetLink]: ...

    async def get_asset_dependents(self, arn: str) -> list[AssetLink]: ...


class ResourceStateProvider(Protocol):
    async def get_resource_state(self, arn: str) -> dict[str, Any] | None: ...


@dataclass(frozen=True)
class ThreatAssessment:
    risk_score: float
    details: dict[str, Any] | None = None


class ThreatDetector(Protocol):
    async def assess_remediation_risk(self, task: Task) -> ThreatAssessment: ...


class WorkItemSink(Protocol):
    async def create_work_item(self, work_item: dict[str, Any]) -> None: ...


class ExecutionReportSink(Protocol):
    async def record_execution(self, report: dict[str, Any]) -> None: ...


@runtime_checkable
class Advisor(Protocol):
    """Optional advisory input. May annotate an execution, never gates it."""

    name: str

    async def annotate(
        self, plan: RemediationPlan, assessment: RiskAssessment
    ) -> dict[str, Any]: ...


class TaskExecutor(Protocol):
    task_type: str

    async def execute(self, task: Task) -> dict[str, Any]: ...

    async def verify(self, task: Task, result: dict[str, Any]) -> tuple[bool, str]: ...

    def rollback_strategy(self) -> RollbackStrategy: ...

    async def rollback(self, task: Task, point: RollbackPoint) -> dict[str, Any]: ...


class BaselineThreatDetector:
    """Reads a finding risk score (0-10) baked into task metadata."""

    def __init__(self, metadata_key: str = "risk_score", default: float = 0.0) -> None:
        self._metadata_key = metadata_key
        self._default = default

    async def assess_remediation_risk(self, task: Task) -> ThreatAssessment:
        raw = task.metadata.get(self._metadata_key)
        if raw is None:
            return ThreatAssessment(risk_score=self._default)
        try:
            score = float(raw) / 10.0
        except (TypeError, ValueError):
            return ThreatAssessment(risk_score=self._default)
        return ThreatAssessment(risk_score=score, details={"source": self._metadata_key})
