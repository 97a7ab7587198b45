"""Plan-level risk assessment.

Five per-task factors are computed and aggregated by maximum across the
plan, so the riskiest task dominates. The weighted sum is a 0-1 score.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from cloud_remediator.domain.models import Task
from cloud_remediator.ports import ThreatDetector

logger = logging.getLogger(__name__)

ENVIRONMENT_WEIGHTS = {
    "production": 0.9,
    "staging": 0.6,
    "development": 0.3,
    "test": 0.2,
}
RESOURCE_TYPE_MULTIPLIERS = {
    "database": 1.2,
    "api-gateway": 1.1,
    "load-balancer": 1.1,
    "s3-bucket": 0.8,
    "security-group": 0.7,
}
TYPE_COMPLEXITY = {
    "terraform": 0.7,
    "cloudformation": 0.6,
    "boto3": 0.8,
    "manual": 0.4,
}
CRITICAL_RESOURCE_TYPES = frozenset({"database", "api-gateway", "load-balancer"})
COMPLIANCE_SENSITIVE_CATEGORIES = ("encryption", "logging", "access-control", "data-retention")
HIGH_IMPACT_FRAMEWORKS = frozenset({"pci-dss", "hipaa", "sox"})

FACTOR_WEIGHTS = {
    "business_impact": 0.3,
    "technical_complexity": 0.2,
    "security_risk": 0.25,
    "operational_risk": 0.15,
    "compliance_risk": 0.1,
}


def _clip1(value: float) -> float:
    return max(0.0, min(value, 1.0))


def _resource_type(task: Task) -> str:
    return (task.resource_type or "unknown").lower()


def assess_business_impact(task: Task) -> float:
    base = ENVIRONMENT_WEIGHTS.get(task.environment, 0.5)
    multiplier = RESOURCE_TYPE_MULTIPLIERS.get(_resource_type(task), 1.0)
    return _clip1(base * multiplier)


def assess_technical_complexity(task: Task) -> float:
    complexity = max(0.3, TYPE_COMPLEXITY.get(task.type.value, 0.5))
    complexity += min(len(task.parameters) * 0.05, 0.3)
    complexity += min(len(task.dependencies) * 0.1, 0.4)
    return _clip1(complexity)


def assess_operational_risk(task: Task) -> float:
    risk = 0.2
    if task.environment == "production":
        risk += 0.4
    if _resource_type(task) in CRITICAL_RESOURCE_TYPES:
        risk += 0.3
    risk += min(len(task.affected_resources) * 0.1, 0.3)
    return _clip1(risk)


def assess_compliance_risk(task: Task) -> float:
    risk = 0.1
    category = (task.category or "").lower()
    if any(sensitive in category for sensitive in COMPLIANCE_SENSITIVE_CATEGORIES):
        risk += 0.5
    frameworks = {framework.lower() for framework in task.compliance_frameworks}
    if frameworks & HIGH_IMPACT_FRAMEWORKS:
        risk += 0.4
    elif frameworks:
        risk += 0.2
    return _clip1(risk)


def categorize_risk_level(score: float) -> str:
    if score >= 0.8:
        return "very-high"
    if score >= 0.6:
        return "high"
    if score >= 0.4:
        return "medium"
    if score >= 0.2:
        return "low"
    return "very-low"


@dataclass
class RiskFactors:
    business_impact: float = 0.0
    technical_complexity: float = 0.0
    security_risk: float = 0.0
    operational_risk: float = 0.0
    compliance_risk: float = 0.0

    def merge_max(self, other: "RiskFactors") -> None:
        for name in FACTOR_WEIGHTS:
            setattr(self, name, max(getattr(self, name), getattr(other, name)))

    def weighted_score(self) -> float:
        return _clip1(sum(getattr(self, name) * weight for name, weight in FACTOR_WEIGHTS.items()))

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_WEIGHTS}


@dataclass
class MitigationStrategy:
    type: str
    strategy: str
    description: str


@dataclass
class RiskAssessment:
    overall_risk_score: float
    risk_level: str
    factors: RiskFactors
    recommendations: list[str] = field(default_factory=list)
    mitigation_strategies: list[MitigationStrategy] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_risk_score": self.overall_risk_score,
            "risk_level": self.risk_level,
            "factors": self.factors.as_dict(),
            "recommendations": list(self.recommendations),
            "mitigation_strategies": [
                {"type": m.type, "strategy": m.strategy, "description": m.description}
                for m in self.mitigation_strategies
            ],
        }


# (factor, exclusive cutoff, recommendations). "overall" reads the weighted score.
RECOMMENDATION_RULES: tuple[tuple[str, float, tuple[str, ...]], ...] = (
    (
        "business_impact",
        0.7,
        (
            "Consider scheduling execution during maintenance window",
            "Implement additional monitoring during execution",
        ),
    ),
    (
        "technical_complexity",
        0.6,
        (
            "Review task dependencies and execution order",
            "Prepare detailed rollback procedures",
        ),
    ),
    (
        "security_risk",
        0.5,
        (
            "Conduct security review before execution",
            "Enable enhanced security monitoring",
        ),
    ),
    (
        "overall",
        0.7,
        (
            "Require human approval before execution",
            "Execute in non-production environment first",
        ),
    ),
)

MITIGATION_RULES: tuple[tuple[str, float, MitigationStrategy], ...] = (
    (
        "business_impact",
        0.6,
        MitigationStrategy(
            "business",
            "phased-rollout",
            "Execute changes in phases to minimize business impact",
        ),
    ),
    (
        "technical_complexity",
        0.5,
        MitigationStrategy(
            "technical", "enhanced-testing", "Perform additional validation and testing"
        ),
    ),
    (
        "operational_risk",
        0.5,
        MitigationStrategy(
            "operational",
            "enhanced-monitoring",
            "Implement real-time monitoring during execution",
        ),
    ),
)


def generate_recommendations(factors: RiskFactors, overall: float) -> list[str]:
    values = factors.as_dict()
    values["overall"] = overall
    recommendations: list[str] = []
    for factor, cutoff, messages in RECOMMENDATION_RULES:
        if values[factor] > cutoff:
            recommendations.extend(messages)
    return recommendations


def generate_mitigation_strategies(factors: RiskFactors) -> list[MitigationStrategy]:
    values = factors.as_dict()
    return [strategy for factor, cutoff, strategy in MITIGATION_RULES if values[factor] > cutoff]


class RiskAssessor:
    def __init__(self, threat_detector: ThreatDetector) -> None:
        self._threat_detector = threat_detector

    async def assess_task(self, task: Task) -> RiskFactors:
        threat = await self._threat_detector.assess_remediation_risk(task)
        return RiskFactors(
            business_impact=assess_business_impact(task),
            technical_complexity=assess_technical_complexity(task),
            security_risk=_clip1(float(threat.risk_score)),
            operational_risk=assess_operational_risk(task),
            compliance_risk=assess_compliance_risk(task),
        )

    async def assess(self, tasks: Iterable[Task]) -> RiskAssessment:
        factors = RiskFactors()
        count = 0
        for task in tasks:
            factors.merge_max(await self.assess_task(task))
            count += 1

        overall = factors.weighted_score()
        level = categorize_risk_level(overall)
        logger.info(
            "Risk assessment over %d task(s): score=%.3f level=%s", count, overall, level
        )
        return RiskAssessment(
            overall_risk_score=overall,
            risk_level=level,
            factors=factors,
            recommendations=generate_recommendations(factors, overall),
            mitigation_strategies=generate_mitigation_strategies(factors),
        )
