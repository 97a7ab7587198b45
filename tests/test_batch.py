from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from cloud_remediator.domain.models import Asset, Finding, ResourceRef
from cloud_remediator.risk.batch import (
    high_risk_findings,
    partition,
    rescore_finding,
    rescore_findings,
)
from cloud_remediator.store.memory import InMemoryGraphStore

DB_ARN = "arn:aws:rds:us-east-1:123456789012:db:orders"


def _finding(title: str, arn: str = DB_ARN, **kwargs) -> Finding:
    return Finding(
        source="scanner",
        severity="high",
        title=title,
        resource=ResourceRef(arn=arn),
        **kwargs,
    )


@pytest.fixture
def graph() -> InMemoryGraphStore:
    store = InMemoryGraphStore()
    store.add_asset(Asset(arn=DB_ARN, criticality="high"))
    return store


def test_partition() -> None:
    items = [_finding(str(i)) for i in range(5)]
    assert [len(b) for b in partition(items, 2)] == [2, 2, 1]
    with pytest.raises(ValueError):
        partition(items, 0)


@pytest.mark.asyncio
async def test_rescore_finding_updates_graph(graph: InMemoryGraphStore) -> None:
    finding = _finding("open port")
    graph.add_finding(finding)

    change = await rescore_finding(finding, graph)

    assert change is not None
    assert change.old_score == 0.0
    stored = await graph.get_finding(finding.id)
    assert stored.risk_score == change.new_score
    assert stored.last_risk_calculation is not None
    assert set(stored.risk_breakdown) >= {"severity", "criticality", "blast_radius"}


@pytest.mark.asyncio
async def test_insignificant_change_is_skipped(graph: InMemoryGraphStore) -> None:
    finding = _finding("open port")
    first = await rescore_finding(finding, graph)
    assert first is not None

    second = await rescore_finding(finding, graph)

    assert second is None


@pytest.mark.asyncio
async def test_missing_asset_returns_none(graph: InMemoryGraphStore) -> None:
    finding = _finding("orphan", arn="arn:aws:s3:::missing")
    assert await rescore_finding(finding, graph) is None


@pytest.mark.asyncio
async def test_failures_are_isolated_per_finding(graph: InMemoryGraphStore) -> None:
    broken_arn = "arn:aws:ec2:us-east-1:123456789012:instance/i-broken"
    good = [_finding(f"good-{i}") for i in range(4)]
    bad = _finding("bad", arn=broken_arn)
    original_get_asset = graph.get_asset

    async def flaky_get_asset(arn: str):
        if arn == broken_arn:
            raise RuntimeError("graph unavailable")
        return await original_get_asset(arn)

    graph.get_asset = flaky_get_asset

    report = await rescore_findings([*good[:2], bad, *good[2:]], graph, batch_size=2, max_concurrency=2)

    assert report.errors == 1
    assert report.processed == 4
    assert report.updated == 4
    assert len(report.risk_scores) == 4


@pytest.mark.asyncio
async def test_rescore_findings_rejects_bad_concurrency() -> None:
    with pytest.raises(ValueError):
        await rescore_findings([], AsyncMock(), max_concurrency=0)


def test_high_risk_findings_filters_status_and_severity() -> None:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    keep = _finding("keep", risk_score=8.0, created_at=created)
    resolved = _finding("resolved", risk_score=9.0, status="resolved", created_at=created)
    info = Finding(
        source="scanner",
        severity="info",
        title="info",
        resource=ResourceRef(arn=DB_ARN),
        risk_score=9.0,
    )
    low = _finding("low", risk_score=3.0)

    assert high_risk_findings([keep, resolved, info, low]) == [keep]


@pytest.mark.asyncio
async def test_batches_in_flight_bounded_by_max_concurrency() -> None:
    counts = {"running": 0, "peak": 0}

    class SlowGraph(InMemoryGraphStore):
        async def get_asset(self, arn):
            counts["running"] += 1
            counts["peak"] = max(counts["peak"], counts["running"])
            await asyncio.sleep(0.01)
            counts["running"] -= 1
            return await super().get_asset(arn)

    graph = SlowGraph()
    graph.add_asset(Asset(arn=DB_ARN, criticality="high"))
    findings = [_finding(f"f{i}") for i in range(8)]

    report = await rescore_findings(findings, graph, batch_size=1, max_concurrency=2)

    assert report.processed == 8
    assert counts["peak"] == 2
