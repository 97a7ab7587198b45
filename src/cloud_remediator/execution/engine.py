"""Risk-gated, sequential execution of remediation plans."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from cloud_remediator.advisory import run_advisors
from cloud_remediator.domain.models import RemediationPlan, Task, TaskType
from cloud_remediator.domain.state import (
    CompletedTask,
    ExecutionState,
    ExecutionStatus,
    FailedTask,
    RollbackPoint,
)
from cloud_remediator.errors import FatalPlanError, PlanNotFoundError, TaskVerificationError
from cloud_remediator.execution.executors import ExecutorRegistry
from cloud_remediator.execution.monitor import AdaptivePerformanceMonitor
from cloud_remediator.execution.recovery import ErrorRecovery, RecoveryContext, RecoveryOutcome
from cloud_remediator.execution.resilience import ResilienceManager
from cloud_remediator.execution.rollback import RollbackManager
from cloud_remediator.logging_utils import execution_logger
from cloud_remediator.policy.models import ExecutionPolicy
from cloud_remediator.ports import Advisor, ExecutionReportSink, PlanStore
from cloud_remediator.risk.assessor import RiskAssessment, RiskAssessor
from cloud_remediator.risk.decision import DecisionEngine, ExecutionDecision
from cloud_remediator.utils.time import elapsed_ms, monotonic_ms, utc_now_iso

logger = logging.getLogger(__name__)

REJECTED = "rejected"

# Set while a coroutine runs on behalf of an execution, including its task timeouts.
_CURRENT_EXECUTION: ContextVar[str | None] = ContextVar("remediation_execution", default=None)


@dataclass
class ExecutionContext:
    state: ExecutionState
    plan: RemediationPlan | None = None
    decision: ExecutionDecision | None = None
    metrics: dict[str, Any] = field(default_factory=dict)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _point_dict(point: RollbackPoint) -> dict[str, Any]:
    return {
        "id": point.id,
        "task_id": point.task_id,
        "execution_id": point.execution_id,
        "timestamp": point.timestamp,
        "pre_execution_state": point.pre_execution_state,
        "rollback_strategy": {
            "type": point.rollback_strategy.type.value,
            "automated": point.rollback_strategy.automated,
        },
    }


@dataclass
class ExecutionResult:
    execution_id: str
    status: str
    completed_tasks: list[CompletedTask] = field(default_factory=list)
    failed_tasks: list[FailedTask] = field(default_factory=list)
    total_duration_ms: int = 0
    risk_assessment: RiskAssessment | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    rollback_points: list[RollbackPoint] = field(default_factory=list)
    decision: ExecutionDecision | None = None
    reason: str | None = None
    plan_id: str | None = None
    advisories: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "plan_id": self.plan_id,
            "status": self.status,
            "reason": self.reason,
            "completed_tasks": [asdict(t) for t in self.completed_tasks],
            "failed_tasks": [asdict(t) for t in self.failed_tasks],
            "total_duration_ms": self.total_duration_ms,
            "risk_assessment": (
                self.risk_assessment.to_dict() if self.risk_assessment is not None else None
            ),
            "metrics": dict(self.metrics),
            "rollback_points": [_point_dict(p) for p in self.rollback_points],
            "decision": self.decision.to_dict() if self.decision is not None else None,
            "advisories": dict(self.advisories),
        }


class RemediationEngine:
    def __init__(
        self,
        plan_store: PlanStore,
        risk_assessor: RiskAssessor,
        decision_engine: DecisionEngine,
        rollback_manager: RollbackManager,
        executors: ExecutorRegistry,
        resilience: ResilienceManager | None = None,
        recovery: ErrorRecovery | None = None,
        monitor: AdaptivePerformanceMonitor | None = None,
        policy: ExecutionPolicy | None = None,
        report_sink: ExecutionReportSink | None = None,
        advisors: Iterable[Advisor] = (),
        task_timeout_ms: int = 300_000,
        task_max_retries: int = 3,
    ) -> None:
        self._plan_store = plan_store
        self._risk_assessor = risk_assessor
        self._decision_engine = decision_engine
        self._rollback_manager = rollback_manager
        self._executors = executors
        self._resilience = resilience or ResilienceManager()
        self._recovery = recovery or ErrorRecovery()
        self._policy = policy or ExecutionPolicy()
        self._monitor = monitor or AdaptivePerformanceMonitor(self._policy.monitor)
        self._report_sink = report_sink
        self._advisors = list(advisors)
        self._task_timeout_ms = task_timeout_ms
        self._task_max_retries = task_max_retries
        self._active: dict[str, ExecutionContext] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False
        self._resources_closed = False

    async def execute_remediation_plan(
        self, plan_id: str, options: dict[str, Any] | None = None
    ) -> ExecutionResult:
        """Assess, gate and run every task of ``plan_id`` in order.

        Options: ``force_execution`` (skips the human-approval tier only) and
        ``task_timeout_ms``. Task failures are reported in the result; only
        :class:`FatalPlanError` escapes, after an emergency rollback.
        """
        options = options or {}
        force = bool(options.get("force_execution", False))
        timeout_ms = int(options.get("task_timeout_ms") or self._task_timeout_ms)

        execution_id = f"exec-{uuid.uuid4().hex}"
        ctx = ExecutionContext(
            state=ExecutionState(
                execution_id=execution_id,
                plan_id=plan_id,
                start_time=utc_now_iso(),
                started_ms=monotonic_ms(),
            )
        )
        self._active[execution_id] = ctx
        self._idle.clear()
        token = _CURRENT_EXECUTION.set(execution_id)
        result: ExecutionResult | None = None
        logger.info("Starting remediation execution %s for plan %s", execution_id, plan_id)

        try:
            plan = await self._plan_store.get_plan(plan_id)
            if plan is None:
                raise PlanNotFoundError(plan_id)
            ctx.plan = plan

            try:
                assessment = await self._risk_assessor.assess(plan.tasks)
            except Exception as exc:
                raise FatalPlanError(f"Risk assessment failed: {exc}") from exc
            ctx.state.risk_assessment = assessment
            ctx.state.advisories = await run_advisors(self._advisors, plan, assessment)

            decision = self._decision_engine.evaluate(assessment, force)
            ctx.decision = decision
            if not decision.should_execute:
                logger.warning(
                    "Execution %s rejected (risk=%.3f): %s",
                    execution_id,
                    assessment.overall_risk_score,
                    decision.reason,
                )
                result = self._build_result(ctx, status=REJECTED, reason=decision.reason)
                return result

            ctx.state.transition(ExecutionStatus.EXECUTING)
            await self._execute_tasks(ctx, plan, timeout_ms)
            if ctx.state.status is ExecutionStatus.EXECUTING:
                ctx.state.transition(ctx.state.terminal_status())

            result = self._build_result(ctx)
            logger.info(
                "Execution %s finished: status=%s completed=%d failed=%d",
                execution_id,
                result.status,
                len(result.completed_tasks),
                len(result.failed_tasks),
            )
            return result
        except Exception as exc:
            logger.error("Remediation execution %s failed: %s", execution_id, exc)
            if ctx.state.status is ExecutionStatus.EXECUTING:
                ctx.state.transition(ExecutionStatus.FAILED)
            await self._emergency_rollback(ctx)
            if isinstance(exc, FatalPlanError):
                raise
            raise FatalPlanError(f"Remediation execution failed: {exc}") from exc
        finally:
            await self._record(ctx, result)
            self._active.pop(execution_id, None)
            _CURRENT_EXECUTION.reset(token)
            if not self._active:
                self._idle.set()
                if self._closing:
                    await self._close_resources()

    async def _execute_tasks(
        self, ctx: ExecutionContext, plan: RemediationPlan, timeout_ms: int
    ) -> None:
        state = ctx.state
        log = execution_logger(logger, state.execution_id, state.plan_id)
        ctx.metrics.update(
            {"tasks_total": len(plan.tasks), "recovered_tasks": 0, "performance_checks": []}
        )

        for task in plan.tasks:
            if state.status is ExecutionStatus.CANCELLED:
                log.info("Cancelled; stopping task loop")
                break

            point = await self._rollback_manager.create_rollback_point(task, state.execution_id)
            state.rollback_points.append(point)

            started = monotonic_ms()
            try:
                task_result = await self._run_task(task, timeout_ms, self._task_max_retries)
            except Exception as exc:
                error = _describe(exc)
                log.warning("Task %s failed: %s", task.id, error)
                outcome = await self._recover(task, exc, timeout_ms)
                if outcome.recovered:
                    state.completed_tasks.append(
                        CompletedTask(
                            task_id=task.id,
                            result=outcome.result or {},
                            duration_ms=elapsed_ms(started),
                            recovered=True,
                        )
                    )
                    ctx.metrics["recovered_tasks"] += 1
                else:
                    state.failed_tasks.append(
                        FailedTask(task_id=task.id, error=error, duration_ms=elapsed_ms(started))
                    )
                    stop_reason = self._stop_reason(state, task)
                    if stop_reason:
                        log.warning("Stopping after task %s: %s", task.id, stop_reason)
                        ctx.metrics["stop_reason"] = stop_reason
                        break
            else:
                state.completed_tasks.append(
                    CompletedTask(task_id=task.id, result=task_result, duration_ms=elapsed_ms(started))
                )
                log.info("Task %s completed", task.id)

            if self._monitor.should_check(state.processed_count):
                analysis = self._monitor.analyze(state)
                adjustment = self._monitor.make_adjustment(analysis)
                ctx.metrics["performance_checks"].append(
                    {"analysis": asdict(analysis), "adjustment": adjustment.to_dict()}
                )

    async def _run_task(self, task: Task, timeout_ms: int, max_retries: int) -> dict[str, Any]:
        executor = self._executors.require(task)
        result = await self._resilience.run(
            lambda: executor.execute(task),
            service_name=task.type.value,
            max_retries=max_retries,
            use_circuit_breaker=task.type is not TaskType.MANUAL,
            timeout_ms=timeout_ms,
        )
        verified, reason = await executor.verify(task, result)
        if not verified:
            raise TaskVerificationError(task.id, reason)
        return result

    async def _recover(self, task: Task, error: Exception, timeout_ms: int) -> RecoveryOutcome:
        ctx = RecoveryContext(
            task_id=task.id,
            task_type=task.type.value,
            retry=lambda: self._run_task(task, timeout_ms, max_retries=0),
        )
        try:
            return await self._recovery.attempt_recovery(error, ctx)
        except Exception as exc:
            logger.error("Error recovery for task %s raised: %s", task.id, exc)
            return RecoveryOutcome(recovered=False, reason=str(exc))

    def _stop_reason(self, state: ExecutionState, task: Task) -> str | None:
        policy = self._policy.continuation
        if state.failure_rate > policy.max_failure_rate:
            return f"failure rate {state.failure_rate:.2f} exceeds {policy.max_failure_rate:.2f}"
        if task.criticality and task.criticality in policy.stop_on_criticality:
            return f"{task.criticality} task failed"
        if task.priority and task.priority in policy.stop_on_priority:
            return f"{task.priority}-priority task failed"
        return None

    async def _emergency_rollback(self, ctx: ExecutionContext) -> None:
        try:
            outcomes = await self._rollback_manager.perform_emergency_rollback(ctx.state, ctx.plan)
        except Exception as exc:
            logger.error("Emergency rollback for %s raised: %s", ctx.state.execution_id, exc)
            return
        ctx.metrics["emergency_rollback"] = [asdict(o) for o in outcomes]

    def _build_result(
        self, ctx: ExecutionContext, status: str | None = None, reason: str | None = None
    ) -> ExecutionResult:
        state = ctx.state
        metrics = dict(ctx.metrics)
        metrics["success_rate"] = 1.0 - state.failure_rate
        return ExecutionResult(
            execution_id=state.execution_id,
            plan_id=state.plan_id,
            status=status or state.status.value,
            completed_tasks=list(state.completed_tasks),
            failed_tasks=list(state.failed_tasks),
            total_duration_ms=elapsed_ms(state.started_ms),
            risk_assessment=state.risk_assessment,
            metrics=metrics,
            rollback_points=list(state.rollback_points),
            decision=ctx.decision,
            reason=reason,
            advisories=dict(state.advisories),
        )

    async def _record(self, ctx: ExecutionContext, result: ExecutionResult | None) -> None:
        if self._report_sink is None:
            return
        report = (
            result.to_dict()
            if result is not None
            else self._build_result(ctx, reason="execution aborted").to_dict()
        )
        try:
            await self._report_sink.record_execution(report)
        except Exception as exc:
            logger.warning(
                "Failed to record execution report %s: %s", ctx.state.execution_id, exc
            )

    def get_execution_status(self, execution_id: str) -> dict[str, Any]:
        ctx = self._active.get(execution_id)
        if ctx is None:
            return {"status": "not-found"}
        return ctx.state.snapshot()

    @property
    def active_executions(self) -> list[str]:
        return list(self._active)

    async def shutdown(self, drain_timeout_seconds: float | None = None) -> None:
        """Cancel running executions and close the stores the engine owns.

        Cancelled executions stop at the next task boundary and still record
        their report. Stores are closed once none is running; when called
        from inside an execution, that happens as the last one finishes.
        """
        self._closing = True
        for ctx in list(self._active.values()):
            if ctx.state.status is ExecutionStatus.EXECUTING:
                ctx.state.transition(ExecutionStatus.CANCELLED)
                logger.info("Execution %s cancelled by shutdown", ctx.state.execution_id)

        if self._active and _CURRENT_EXECUTION.get() is None:
            try:
                await asyncio.wait_for(self._idle.wait(), drain_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "%d execution(s) still running after %.1fs; closing deferred",
                    len(self._active),
                    drain_timeout_seconds,
                )

        if self._active:
            logger.info("Store close deferred until %d execution(s) finish", len(self._active))
            return
        await self._close_resources()

    async def _close_resources(self) -> None:
        if self._resources_closed:
            return
        self._resources_closed = True
        for resource in (self._plan_store, self._report_sink):
            close = getattr(resource, "close", None)
            if callable(close):
                result = close()
                if asyncio.iscoroutine(result):
                    await result
