"""In-process graph store for findings, assets, and resource snapshots."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from cloud_remediator.domain.models import Asset, AssetLink, Finding, RemediationPlan


class InMemoryGraphStore:
    """Keeps findings, assets, and ``depends-on`` edges in dictionaries.

    Edges are directional: ``add_dependency(a, b)`` means ``a`` depends on
    ``b``; ``b`` sees ``a`` as a dependent.
    """

    def __init__(self) -> None:
        self._findings: dict[str, Finding] = {}
        self._assets: dict[str, Asset] = {}
        self._edges: set[tuple[str, str]] = set()
        self._resource_states: dict[str, dict[str, Any]] = {}
        self._plans: dict[str, RemediationPlan] = {}
        self._lock = asyncio.Lock()

    def add_finding(self, finding: Finding) -> None:
        self._findings[finding.id] = finding

    def add_asset(self, asset: Asset) -> None:
        self._assets[asset.arn] = asset

    def add_dependency(self, source_arn: str, target_arn: str) -> None:
        self._edges.add((source_arn, target_arn))

    def set_resource_state(self, arn: str, state: dict[str, Any]) -> None:
        self._resource_states[arn] = state

    def add_plan(self, plan: RemediationPlan) -> None:
        self._plans[plan.id] = plan

    async def get_plan(self, plan_id: str) -> RemediationPlan | None:
        return self._plans.get(plan_id)

    async def get_finding(self, finding_id: str) -> Finding | None:
        return self._findings.get(finding_id)

    async def query_findings(
        self, status: str | None = None, account_id: str | None = None
    ) -> list[Finding]:
        results = []
        for finding in self._findings.values():
            if status is not None and finding.status != status:
                continue
            if account_id is not None and finding.resource.account_id != account_id:
                continue
            results.append(finding)
        return results

    async def update_finding(self, finding: Finding) -> None:
        async with self._lock:
            self._findings[finding.id] = finding

    async def get_asset(self, arn: str) -> Asset | None:
        return self._assets.get(arn)

    async def get_asset_dependencies(self, arn: str) -> list[AssetLink]:
        return [self._link(target) for source, target in sorted(self._edges) if source == arn]

    async def get_asset_dependents(self, arn: str) -> list[AssetLink]:
        return [self._link(source) for source, target in sorted(self._edges) if target == arn]

    async def get_resource_state(self, arn: str) -> dict[str, Any] | None:
        state = self._resource_states.get(arn)
        return copy.deepcopy(state) if state is not None else None

    def _link(self, arn: str) -> AssetLink:
        asset = self._assets.get(arn)
        return AssetLink(arn=arn, criticality=asset.criticality if asset else None)
