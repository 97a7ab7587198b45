"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from cloud_remediator.advisory import RiskLevelAdvisor
from cloud_remediator.config import ExecutionSettings, Settings, load_settings
from cloud_remediator.execution.engine import RemediationEngine
from cloud_remediator.execution.executors import ExecutorRegistry, default_registry
from cloud_remediator.execution.monitor import AdaptivePerformanceMonitor
from cloud_remediator.execution.recovery import ErrorRecovery
from cloud_remediator.execution.resilience import ResilienceManager
from cloud_remediator.execution.rollback import RollbackManager
from cloud_remediator.logging_utils import configure_logging
from cloud_remediator.policy.loader import load_policy
from cloud_remediator.policy.models import ExecutionPolicy
from cloud_remediator.ports import BaselineThreatDetector
from cloud_remediator.risk.assessor import RiskAssessor
from cloud_remediator.risk.batch import RescoringReport, rescore_findings
from cloud_remediator.risk.decision import DecisionEngine
from cloud_remediator.store.db import SqliteStore
from cloud_remediator.store.memory import InMemoryGraphStore


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once per process. The graph store starts empty and is filled by
    whatever ingests findings and assets.
    """

    settings: Settings
    policy: ExecutionPolicy
    store: SqliteStore
    graph: InMemoryGraphStore
    executors: ExecutorRegistry
    engine: RemediationEngine

    async def rescore_open_findings(self) -> RescoringReport:
        scoring = self.settings.scoring
        findings = await self.graph.query_findings(status="open")
        return await rescore_findings(
            findings[: scoring.max_batch_findings],
            self.graph,
            batch_size=scoring.batch_size,
            max_concurrency=scoring.max_concurrency,
        )


def command_timeout_for(execution: ExecutionSettings) -> int:
    """A single command may not outlive the task timeout that wraps it."""
    return max(1, min(execution.command_timeout_seconds, execution.task_timeout_ms // 1000))


def build_app_context(
    settings: Settings,
    policy: ExecutionPolicy,
    store: SqliteStore,
    graph: InMemoryGraphStore | None = None,
) -> AppContext:
    graph = graph or InMemoryGraphStore()
    execution = settings.execution
    executors = default_registry(
        work_items=store,
        work_dir=execution.work_dir,
        command_timeout_seconds=command_timeout_for(execution),
    )
    engine = RemediationEngine(
        plan_store=store,
        risk_assessor=RiskAssessor(BaselineThreatDetector()),
        decision_engine=DecisionEngine(policy.thresholds),
        rollback_manager=RollbackManager(executors, state_provider=graph),
        executors=executors,
        resilience=ResilienceManager(
            base_delay_seconds=execution.retry_base_delay_seconds,
            failure_threshold=execution.circuit_failure_threshold,
            reset_seconds=execution.circuit_reset_seconds,
        ),
        recovery=ErrorRecovery(max_retries=execution.recovery_max_retries),
        monitor=AdaptivePerformanceMonitor(policy.monitor),
        policy=policy,
        report_sink=store,
        advisors=[RiskLevelAdvisor()],
        task_timeout_ms=execution.task_timeout_ms,
        task_max_retries=execution.task_max_retries,
    )
    return AppContext(
        settings=settings,
        policy=policy,
        store=store,
        graph=graph,
        executors=executors,
        engine=engine,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the cached application context."""
    settings = load_settings()
    configure_logging()
    policy = load_policy(settings.policy.path)
    store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    return build_app_context(settings, policy, store)
