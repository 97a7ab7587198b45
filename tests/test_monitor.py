from __future__ import annotations

from cloud_remediator.domain.state import CompletedTask, ExecutionState, FailedTask
from cloud_remediator.execution.monitor import AdaptivePerformanceMonitor
from cloud_remediator.policy.models import MonitorPolicy


def _state(durations_ok: list[int], durations_failed: list[int]) -> ExecutionState:
    state = ExecutionState(execution_id="e", plan_id="p", start_time="now", started_ms=0)
    state.completed_tasks = [CompletedTask(f"ok{i}", {}, d) for i, d in enumerate(durations_ok)]
    state.failed_tasks = [FailedTask(f"bad{i}", "x", d) for i, d in enumerate(durations_failed)]
    return state


def test_healthy_execution_needs_no_adjustment() -> None:
    monitor = AdaptivePerformanceMonitor()
    analysis = monitor.analyze(_state([1000, 2000, 3000, 4000, 5000], []))

    assert analysis.average_task_duration_ms == 3000
    assert analysis.success_rate == 1.0
    assert analysis.needs_optimization is False
    assert monitor.make_adjustment(analysis).actions == []


def test_slow_and_failing_execution_suggests_both_actions() -> None:
    monitor = AdaptivePerformanceMonitor()
    analysis = monitor.analyze(_state([90_000, 90_000], [90_000, 90_000, 90_000]))

    assert analysis.success_rate == 0.4
    assert analysis.needs_optimization is True
    assert monitor.make_adjustment(analysis).to_dict() == {
        "actions": ["Increase task timeout thresholds", "Enable enhanced error recovery"]
    }


def test_check_interval() -> None:
    monitor = AdaptivePerformanceMonitor(MonitorPolicy(check_interval=5))
    assert [n for n in range(0, 16) if monitor.should_check(n)] == [5, 10, 15]


def test_empty_state() -> None:
    analysis = AdaptivePerformanceMonitor().analyze(_state([], []))
    assert analysis.processed_tasks == 0
    assert analysis.needs_optimization is False
