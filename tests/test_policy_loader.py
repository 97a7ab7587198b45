from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from cloud_remediator.policy.loader import load_policy
from cloud_remediator.policy.models import ExecutionPolicy


def test_load_policy_file_not_found(tmp_path: Path) -> None:
    missing = tmp_path / "missing-policy.yaml"
    with pytest.raises(FileNotFoundError):
        load_policy(str(missing))


def test_load_policy_success(tmp_path: Path) -> None:
    policy = {
        "version": 1,
        "thresholds": {"automatic": 0.2, "human_approval": 0.6, "emergency_stop": 0.85},
        "continuation": {"max_failure_rate": 0.5, "stop_on_priority": None},
        "monitor": {"check_interval": 3},
    }
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(policy), encoding="utf-8")

    loaded = load_policy(str(path))

    assert loaded.thresholds.emergency_stop == 0.85
    assert loaded.continuation.max_failure_rate == 0.5
    assert loaded.continuation.stop_on_priority == []
    assert loaded.continuation.stop_on_criticality == ["critical"]
    assert loaded.monitor.check_interval == 3
    assert loaded.monitor.slow_task_ms == 60_000


def test_empty_policy_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("", encoding="utf-8")

    loaded = load_policy(str(path))

    assert loaded == ExecutionPolicy()


def test_repository_policy_file_loads() -> None:
    path = Path(__file__).resolve().parents[1] / "policy.yaml"
    loaded = load_policy(str(path))
    assert loaded.thresholds.automatic == 0.3
    assert loaded.thresholds.human_approval == 0.7
    assert loaded.thresholds.emergency_stop == 0.9


def test_out_of_range_threshold_rejected(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump({"thresholds": {"emergency_stop": 1.5}}), encoding="utf-8")
    with pytest.raises(ValidationError):
        load_policy(str(path))
