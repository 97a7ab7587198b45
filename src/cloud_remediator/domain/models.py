"""Domain models for remediation plans, findings, and assets."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cloud_remediator.utils.time import utc_now


class TaskType(str, Enum):
    TERRAFORM = "terraform"
    CLOUDFORMATION = "cloudformation"
    BOTO3 = "boto3"
    MANUAL = "manual"


def _ensure_list(v: Any) -> list:
    if v is None:
        return []
    return v


class Task(BaseModel):
    """One remediation step. Frozen once the plan is fetched."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: TaskType
    parameters: dict[str, Any] = Field(default_factory=dict)
    resource_type: str | None = None
    resource_arn: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    criticality: str | None = None
    priority: str | None = None
    category: str | None = None
    compliance_frameworks: list[str] = Field(default_factory=list)
    affected_resources: list[str] = Field(default_factory=list)
    title: str | None = None
    description: str | None = None
    instructions: list[str] = Field(default_factory=list)
    assignee: str | None = None
    # Terraform HCL, CloudFormation template body, or boto3 script.
    template: str | None = None
    rollback_script: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "dependencies",
        "compliance_frameworks",
        "affected_resources",
        "instructions",
        mode="before",
    )
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("parameters", "metadata", mode="before")
    @classmethod
    def _validate_dicts(cls, v: Any) -> dict:
        if v is None:
            return {}
        return v

    @property
    def environment(self) -> str:
        value = self.parameters.get("environment")
        if value is None:
            return "unknown"
        return str(value).lower()


class RemediationPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tasks: tuple[Task, ...] = Field(default_factory=tuple)
    finding_id: str | None = None
    estimated_duration_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tasks", mode="before")
    @classmethod
    def _validate_tasks(cls, v: Any) -> Any:
        if v is None:
            return ()
        return v

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "RemediationPlan":
        return cls.model_validate(data)


SEVERITY_SCORES = {"critical": 10, "high": 8, "medium": 5, "low": 2, "info": 1}
CRITICALITY_SCORES = {"critical": 10, "high": 8, "medium": 5, "low": 2, "minimal": 1}

_SENSITIVE_INDICATORS = (
    "pii",
    "phi",
    "financial",
    "confidential",
    "secret",
    "sensitive",
    "customer-data",
    "payment",
    "healthcare",
    "gdpr",
)


def normalize_severity(severity: object) -> str:
    if severity is None or severity == "":
        return "low"
    if isinstance(severity, (int, float)) and not isinstance(severity, bool):
        if severity >= 9.0:
            return "critical"
        if severity >= 7.0:
            return "high"
        if severity >= 4.0:
            return "medium"
        if severity >= 0.1:
            return "low"
        return "info"
    normalized = str(severity).lower()
    if normalized in SEVERITY_SCORES:
        return normalized
    return "low"


@dataclass
class ComplianceMapping:
    framework: str
    status: str
    requirement: str | None = None

    @property
    def is_non_compliant(self) -> bool:
        return self.status == "non-compliant"


@dataclass
class ResourceRef:
    arn: str | None = None
    type: str | None = None
    region: str | None = None
    account_id: str | None = None
    name: str | None = None


@dataclass
class Finding:
    """A security or compliance violation reported by a scanner."""

    source: str
    severity: str
    resource: ResourceRef
    id: str = ""
    category: str | None = None
    title: str | None = None
    compliance: list[ComplianceMapping] = field(default_factory=list)
    risk_score: float = 0.0
    blast_radius: float = 0.0
    status: str = "open"
    created_at: datetime = field(default_factory=utc_now)
    last_risk_calculation: datetime | None = None
    risk_breakdown: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.severity = normalize_severity(self.severity)
        if not self.id:
            self.id = self._generate_id()

    def _generate_id(self) -> str:
        resource = self.resource.arn or self.resource.name or "unknown-resource"
        material = ":".join(
            (
                self.source or "unknown",
                resource,
                self.category or "unknown-category",
                self.title or "unknown",
            )
        )
        return "finding-" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]

    @property
    def severity_score(self) -> int:
        return SEVERITY_SCORES.get(self.severity, 1)

    def age_days(self, now: datetime | None = None) -> int:
        reference = now or utc_now()
        return max(0, (reference - self.created_at).days)


@dataclass
class AssetLink:
    """Edge to another asset in the graph (dependency or dependent)."""

    arn: str
    criticality: str | None = None
    type: str = "depends-on"


@dataclass
class Asset:
    arn: str
    type: str | None = None
    account_id: str | None = None
    region: str | None = None
    criticality: str = "medium"
    environment: str = "unknown"
    service: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, object] = field(default_factory=dict)
    security_groups: list[dict[str, Any]] = field(default_factory=list)
    network_info: dict[str, Any] = field(default_factory=dict)
    dependencies: list[AssetLink] = field(default_factory=list)
    dependents: list[AssetLink] = field(default_factory=list)
    monitoring_enabled: bool = False
    logging_enabled: bool = False

    def __post_init__(self) -> None:
        if not self.service:
            self.service = service_from_arn(self.arn)

    @property
    def criticality_score(self) -> int:
        return CRITICALITY_SCORES.get(self.criticality, 5)

    def is_publicly_accessible(self) -> bool:
        for group in self.security_groups:
            for rule in group.get("rules") or []:
                if rule.get("source") == "0.0.0.0/0" and "*" in (rule.get("ports") or []):
                    return True
        if self.network_info.get("subnet_type") == "public":
            return True
        return self.tags.get("Exposure") == "public" or self.tags.get("Public") == "true"

    def contains_sensitive_data(self) -> bool:
        haystack = " ".join(
            [str(v) for v in self.tags.values()] + [str(v) for v in self.metadata.values()]
        ).lower()
        return any(indicator in haystack for indicator in _SENSITIVE_INDICATORS)


def service_from_arn(arn: str | None) -> str:
    if not arn:
        return "unknown"
    parts = arn.split(":")
    if len(parts) > 2 and parts[2]:
        return parts[2]
    return "unknown"
