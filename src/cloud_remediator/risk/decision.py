"""Execute / approve / reject decision from a plan risk score."""

from __future__ import annotations

from dataclasses import dataclass

from cloud_remediator.policy.models import DecisionThresholds
from cloud_remediator.risk.assessor import RiskAssessment


@dataclass
class ExecutionDecision:
    should_execute: bool
    reason: str
    requires_human_intervention: bool = False
    requires_approval: bool = False
    enhanced_monitoring: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "should_execute": self.should_execute,
            "reason": self.reason,
            "requires_human_intervention": self.requires_human_intervention,
            "requires_approval": self.requires_approval,
            "enhanced_monitoring": self.enhanced_monitoring,
        }


class DecisionEngine:
    def __init__(self, thresholds: DecisionThresholds | None = None) -> None:
        self._thresholds = thresholds or DecisionThresholds()

    @property
    def thresholds(self) -> DecisionThresholds:
        return self._thresholds

    def decide(self, score: float, force_execution: bool = False) -> ExecutionDecision:
        # The emergency stop tier is evaluated first; force_execution cannot override it.
        if score >= self._thresholds.emergency_stop:
            return ExecutionDecision(
                should_execute=False,
                reason="Risk level too high for execution",
                requires_human_intervention=True,
            )

        if score >= self._thresholds.human_approval and not force_execution:
            return ExecutionDecision(
                should_execute=False,
                reason="Requires human approval due to high risk",
                requires_approval=True,
            )

        if score >= self._thresholds.automatic:
            return ExecutionDecision(
                should_execute=True,
                reason="Medium risk - will execute with enhanced monitoring",
                enhanced_monitoring=True,
            )

        return ExecutionDecision(
            should_execute=True,
            reason="Low risk - safe for autonomous execution",
            enhanced_monitoring=False,
        )

    def evaluate(
        self, assessment: RiskAssessment, force_execution: bool = False
    ) -> ExecutionDecision:
        return self.decide(assessment.overall_risk_score, force_execution)
