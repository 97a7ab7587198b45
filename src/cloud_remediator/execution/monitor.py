"""Periodic performance analysis of a running execution.

Findings are recorded in the execution metrics and logged. They never
change timeouts or retry settings of the running execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cloud_remediator.domain.state import ExecutionState
from cloud_remediator.policy.models import MonitorPolicy

logger = logging.getLogger(__name__)


@dataclass
class PerformanceAnalysis:
    average_task_duration_ms: float
    success_rate: float
    needs_optimization: bool
    processed_tasks: int


@dataclass
class AdaptiveAdjustment:
    actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"actions": list(self.actions)}


class AdaptivePerformanceMonitor:
    def __init__(self, policy: MonitorPolicy | None = None) -> None:
        self._policy = policy or MonitorPolicy()

    @property
    def check_interval(self) -> int:
        return self._policy.check_interval

    def should_check(self, processed: int) -> bool:
        return processed > 0 and processed % self._policy.check_interval == 0

    def analyze(self, state: ExecutionState) -> PerformanceAnalysis:
        durations = [t.duration_ms for t in state.completed_tasks] + [
            t.duration_ms for t in state.failed_tasks
        ]
        processed = len(durations)
        average = sum(durations) / processed if processed else 0.0
        success_rate = len(state.completed_tasks) / processed if processed else 1.0
        return PerformanceAnalysis(
            average_task_duration_ms=average,
            success_rate=success_rate,
            needs_optimization=(
                average > self._policy.slow_task_ms
                or success_rate < self._policy.min_success_rate
            ),
            processed_tasks=processed,
        )

    def make_adjustment(self, analysis: PerformanceAnalysis) -> AdaptiveAdjustment:
        adjustment = AdaptiveAdjustment()
        if analysis.average_task_duration_ms > self._policy.slow_task_ms:
            adjustment.actions.append("Increase task timeout thresholds")
        if analysis.success_rate < self._policy.min_success_rate:
            adjustment.actions.append("Enable enhanced error recovery")
        if adjustment.actions:
            logger.info(
                "Performance adjustment suggested (avg=%.0fms success=%.2f): %s",
                analysis.average_task_duration_ms,
                analysis.success_rate,
                "; ".join(adjustment.actions),
            )
        return adjustment
