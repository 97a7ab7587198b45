"""Concurrent risk re-scoring across many findings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from cloud_remediator.domain.models import Finding
from cloud_remediator.ports import GraphStore
from cloud_remediator.risk.scoring import calculate_risk_score
from cloud_remediator.utils.time import elapsed_ms, monotonic_ms, utc_now

logger = logging.getLogger(__name__)

SIGNIFICANT_SCORE_CHANGE = 0.5
HIGH_RISK_THRESHOLD = 7.0


@dataclass
class ScoreChange:
    finding_id: str
    severity: str
    old_score: float
    new_score: float
    change: float
    blast_radius: float
    breakdown: dict[str, float]


@dataclass
class RescoringReport:
    processed: int = 0
    updated: int = 0
    errors: int = 0
    risk_scores: list[ScoreChange] = field(default_factory=list)
    execution_time_ms: int = 0


def partition(findings: Sequence[Finding], batch_size: int) -> list[list[Finding]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(findings[i : i + batch_size]) for i in range(0, len(findings), batch_size)]


async def rescore_finding(finding: Finding, graph: GraphStore) -> ScoreChange | None:
    """Recompute one finding's score. Returns None when nothing was written."""
    arn = finding.resource.arn
    asset = await graph.get_asset(arn) if arn else None
    if asset is None:
        logger.warning("Asset not found for finding %s (resource=%s)", finding.id, arn)
        return None

    dependencies = await graph.get_asset_dependencies(asset.arn)
    dependents = await graph.get_asset_dependents(asset.arn)
    score = calculate_risk_score(finding, asset, dependencies, dependents)

    old_score = finding.risk_score or 0.0
    change = abs(score.total - old_score)
    if change < SIGNIFICANT_SCORE_CHANGE and finding.last_risk_calculation is not None:
        return None

    finding.risk_score = score.total
    finding.blast_radius = score.blast_radius
    finding.risk_breakdown = dict(score.breakdown)
    finding.last_risk_calculation = utc_now()
    await graph.update_finding(finding)

    logger.debug(
        "Updated finding %s risk score %.1f -> %.1f (blast radius %.1f)",
        finding.id,
        old_score,
        score.total,
        score.blast_radius,
    )
    return ScoreChange(
        finding_id=finding.id,
        severity=finding.severity,
        old_score=old_score,
        new_score=score.total,
        change=change,
        blast_radius=score.blast_radius,
        breakdown=dict(score.breakdown),
    )


async def rescore_findings(
    findings: Sequence[Finding],
    graph: GraphStore,
    batch_size: int = 10,
    max_concurrency: int = 5,
) -> RescoringReport:
    """Score findings in fixed-size batches, at most ``max_concurrency`` batches at once.

    A failure while scoring one finding is counted and logged; it never
    aborts the other findings in the batch.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")

    report = RescoringReport()
    started = monotonic_ms()
    batches = partition(findings, batch_size)
    semaphore = asyncio.Semaphore(max_concurrency)
    logger.info(
        "Rescoring %d finding(s) in %d batch(es), batch_size=%d max_concurrency=%d",
        len(findings),
        len(batches),
        batch_size,
        max_concurrency,
    )

    async def run_batch(index: int, batch: list[Finding]) -> None:
        async with semaphore:
            results = await asyncio.gather(
                *(rescore_finding(finding, graph) for finding in batch),
                return_exceptions=True,
            )
        for finding, result in zip(batch, results):
            if isinstance(result, Exception):
                report.errors += 1
                logger.error(
                    "Finding %s failed in batch %d: %s", finding.id, index, result
                )
                continue
            report.processed += 1
            if result is not None:
                report.updated += 1
                report.risk_scores.append(result)

    await asyncio.gather(*(run_batch(i, batch) for i, batch in enumerate(batches)))

    report.execution_time_ms = elapsed_ms(started)
    logger.info(
        "Rescoring complete: processed=%d updated=%d errors=%d",
        report.processed,
        report.updated,
        report.errors,
    )
    return report


def high_risk_findings(
    findings: Sequence[Finding], threshold: float = HIGH_RISK_THRESHOLD
) -> list[Finding]:
    return [
        f
        for f in findings
        if f.risk_score >= threshold and f.severity != "info" and f.status == "open"
    ]
