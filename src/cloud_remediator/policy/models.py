"""Execution policy models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class DecisionThresholds(BaseModel):
    automatic: float = Field(default=0.3, ge=0.0, le=1.0)
    human_approval: float = Field(default=0.7, ge=0.0, le=1.0)
    emergency_stop: float = Field(default=0.9, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_order(self) -> "DecisionThresholds":
        if not self.automatic <= self.human_approval <= self.emergency_stop:
            raise ValueError(
                "thresholds must satisfy automatic <= human_approval <= emergency_stop"
            )
        return self


class ContinuationPolicy(BaseModel):
    max_failure_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    stop_on_criticality: list[str] = Field(default_factory=lambda: ["critical"])
    stop_on_priority: list[str] = Field(default_factory=lambda: ["high"])

    @field_validator("stop_on_criticality", "stop_on_priority", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


class MonitorPolicy(BaseModel):
    check_interval: int = Field(default=5, ge=1)
    slow_task_ms: int = Field(default=60_000, ge=1)
    min_success_rate: float = Field(default=0.8, ge=0.0, le=1.0)


class ExecutionPolicy(BaseModel):
    version: int = Field(default=1)
    thresholds: DecisionThresholds = Field(default_factory=DecisionThresholds)
    continuation: ContinuationPolicy = Field(default_factory=ContinuationPolicy)
    monitor: MonitorPolicy = Field(default_factory=MonitorPolicy)

    @field_validator("thresholds", "continuation", "monitor", mode="before")
    @classmethod
    def _validate_sections(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "ExecutionPolicy":
        return cls.model_validate(data)
