"""Read the execution policy from YAML."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from cloud_remediator.policy.models import ExecutionPolicy

logger = logging.getLogger(__name__)


def load_policy(path: str | Path) -> ExecutionPolicy:
    source = Path(path)
    try:
        raw = source.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise FileNotFoundError(f"Policy file not found: {source}") from None

    # An empty document means "all defaults".
    policy = ExecutionPolicy.from_yaml(yaml.safe_load(raw) or {})
    logger.info(
        "Loaded policy v%s from %s (auto<=%.2f, approval<=%.2f, stop>=%.2f)",
        policy.version,
        source,
        policy.thresholds.automatic,
        policy.thresholds.human_approval,
        policy.thresholds.emergency_stop,
    )
    return policy
