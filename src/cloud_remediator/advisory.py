"""Optional advisors that annotate an execution without gating it."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from cloud_remediator.domain.models import RemediationPlan
from cloud_remediator.ports import Advisor
from cloud_remediator.risk.assessor import RiskAssessment

logger = logging.getLogger(__name__)


async def run_advisors(
    advisors: Iterable[Advisor],
    plan: RemediationPlan,
    assessment: RiskAssessment,
) -> dict[str, dict[str, Any]]:
    annotations: dict[str, dict[str, Any]] = {}
    for advisor in advisors:
        name = getattr(advisor, "name", type(advisor).__name__)
        try:
            annotation = await advisor.annotate(plan, assessment)
        except Exception as exc:
            logger.warning("Advisor %s failed for plan %s: %s", name, plan.id, exc)
            continue
        if annotation:
            annotations[name] = dict(annotation)
    return annotations


class RiskLevelAdvisor:
    """Flags plans whose assessment calls for a maintenance window."""

    name = "risk-level"

    def __init__(self, flagged_levels: Iterable[str] = ("high", "very-high")) -> None:
        self._flagged = frozenset(flagged_levels)

    async def annotate(
        self, plan: RemediationPlan, assessment: RiskAssessment
    ) -> dict[str, Any]:
        if assessment.risk_level not in self._flagged:
            return {}
        return {
            "risk_level": assessment.risk_level,
            "task_count": len(plan.tasks),
            "suggestion": "Schedule during a maintenance window",
        }
