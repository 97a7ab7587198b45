"""Finding risk score and blast radius formulas.

Everything here is pure: the same finding, asset, and graph neighbourhood
always produce the same score. Scores live on a 0-10 scale, unlike the
0-1 plan-level score produced by :mod:`cloud_remediator.risk.assessor`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from cloud_remediator.domain.models import Asset, AssetLink, Finding

MAX_SCORE = 10.0

CRITICAL_SERVICES = frozenset({"rds", "ec2", "lambda", "s3", "iam"})
_CASCADE_CRITICALITIES = frozenset({"critical", "high"})

FRAMEWORK_WEIGHTS = {
    "pci-dss": 3.0,
    "hipaa": 3.0,
    "sox": 2.5,
    "gdpr": 2.5,
    "iso27001": 2.0,
    "nist": 2.0,
    "cis": 1.5,
    "aws-foundational": 1.0,
}
_DEFAULT_FRAMEWORK_WEIGHT = 1.0


@dataclass(frozen=True)
class RiskScore:
    total: float
    blast_radius: float
    breakdown: dict[str, float] = field(default_factory=dict)


def clip(value: float, upper: float = MAX_SCORE, lower: float = 0.0) -> float:
    return max(lower, min(value, upper))


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def calculate_blast_radius(
    asset: Asset,
    dependencies: Sequence[AssetLink] | None = None,
    dependents: Sequence[AssetLink] | None = None,
) -> float:
    """Blast radius of ``asset`` given its graph neighbourhood.

    ``dependencies``/``dependents`` default to the edges stored on the asset.
    """
    deps = asset.dependencies if dependencies is None else dependencies
    dependent_links = asset.dependents if dependents is None else dependents

    radius = float(asset.criticality_score)
    radius += min(len(dependent_links) * 0.5, 5.0)
    if asset.service.lower() in CRITICAL_SERVICES:
        radius += 2.0
    if asset.is_publicly_accessible():
        radius += 3.0
    if asset.contains_sensitive_data():
        radius += 2.0

    radius += min((len(deps) + len(dependent_links)) * 0.2, 3.0)
    critical_dependents = [
        link for link in dependent_links if link.criticality in _CASCADE_CRITICALITIES
    ]
    radius += min(len(critical_dependents) * 0.5, 2.0)
    return clip(radius)


def calculate_compliance_impact(finding: Finding) -> float:
    total = 0.0
    for mapping in finding.compliance:
        if not mapping.is_non_compliant:
            continue
        total += FRAMEWORK_WEIGHTS.get(
            (mapping.framework or "").lower(), _DEFAULT_FRAMEWORK_WEIGHT
        )
    return clip(total)


def calculate_risk_score(
    finding: Finding,
    asset: Asset,
    dependencies: Sequence[AssetLink] | None = None,
    dependents: Sequence[AssetLink] | None = None,
    now: datetime | None = None,
) -> RiskScore:
    severity = float(finding.severity_score)
    criticality = float(asset.criticality_score)
    blast_radius = calculate_blast_radius(asset, dependencies, dependents)

    exposure = 2.0 if asset.is_publicly_accessible() else 1.0
    sensitivity = 1.5 if asset.contains_sensitive_data() else 1.0
    age = min(1.0 + finding.age_days(now) * 0.02, 2.0)
    compliance = calculate_compliance_impact(finding)

    base = severity * 0.4 + criticality * 0.3
    context = blast_radius * 0.2 + compliance * 0.1
    total = clip((base + context) * exposure * sensitivity * age)

    return RiskScore(
        total=round_half_up(total),
        blast_radius=blast_radius,
        breakdown={
            "severity": severity,
            "criticality": criticality,
            "blast_radius": blast_radius,
            "exposure": exposure,
            "sensitivity": sensitivity,
            "age": age,
            "compliance": compliance,
        },
    )


def prioritize_findings(
    findings: Iterable[Finding], now: datetime | None = None
) -> list[Finding]:
    """Order findings for plan generation: highest score first, then oldest."""
    return sorted(
        findings,
        key=lambda f: (f.risk_score, f.age_days(now)),
        reverse=True,
    )
