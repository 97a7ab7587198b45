"""Configuration management for the remediation engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ExecutionSettings(BaseModel):
    task_timeout_ms: int = Field(default=300_000, ge=1_000, le=3_600_000)
    task_max_retries: int = Field(default=3, ge=0, le=10)
    recovery_max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    circuit_failure_threshold: int = Field(default=5, ge=1, le=100)
    circuit_reset_seconds: float = Field(default=60.0, ge=0.0, le=3600.0)
    command_timeout_seconds: int = Field(default=900, ge=1, le=7200)
    work_dir: str | None = Field(
        default=None,
        description="Parent directory for terraform/boto3 scratch workspaces",
    )


class ScoringSettings(BaseModel):
    batch_size: int = Field(default=10, ge=1, le=1000)
    max_concurrency: int = Field(default=5, ge=1, le=100)
    max_batch_findings: int = Field(default=100, ge=1)


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/remediator.sqlite")
    sqlite_wal: bool = Field(default=True)


class PolicySettings(BaseModel):
    path: str = Field(default="./policy.yaml")


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)


# (section, field, kind, env names); the first env name that is set wins.
_ENV_FIELDS: tuple[tuple[str, str, str, tuple[str, ...]], ...] = (
    ("logging", "level", "str", ("LOG_LEVEL",)),
    ("logging", "file", "path", ("LOG_FILE",)),
    ("execution", "task_timeout_ms", "int", ("REMEDIATOR_TASK_TIMEOUT_MS",)),
    ("execution", "task_max_retries", "int", ("REMEDIATOR_TASK_MAX_RETRIES",)),
    ("execution", "recovery_max_retries", "int", ("REMEDIATOR_RECOVERY_MAX_RETRIES",)),
    ("execution", "retry_base_delay_seconds", "float", ("REMEDIATOR_RETRY_BASE_DELAY_SECONDS",)),
    ("execution", "circuit_failure_threshold", "int", ("REMEDIATOR_CIRCUIT_FAILURE_THRESHOLD",)),
    ("execution", "circuit_reset_seconds", "float", ("REMEDIATOR_CIRCUIT_RESET_SECONDS",)),
    ("execution", "command_timeout_seconds", "int", ("REMEDIATOR_COMMAND_TIMEOUT_SECONDS",)),
    ("execution", "work_dir", "path", ("REMEDIATOR_WORK_DIR",)),
    ("scoring", "batch_size", "int", ("SCORING_BATCH_SIZE",)),
    ("scoring", "max_concurrency", "int", ("SCORING_MAX_CONCURRENCY",)),
    ("scoring", "max_batch_findings", "int", ("SCORING_MAX_BATCH_FINDINGS",)),
    ("storage", "sqlite_path", "path", ("SQLITE_PATH",)),
    ("storage", "sqlite_wal", "bool", ("SQLITE_WAL",)),
    ("policy", "path", "path", ("POLICY_PATH",)),
    ("aws", "default_region", "str", ("AWS_REGION", "AWS_DEFAULT_REGION")),
    ("aws", "default_profile", "str", ("AWS_PROFILE",)),
    ("aws", "sdk_timeout_seconds", "int", ("SDK_TIMEOUT_SECONDS",)),
)

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    """Resolve ``path`` against the project root, refusing anything outside it."""
    root = _project_root().resolve()
    resolved = (root / path).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    return default if raw is None else raw.strip().lower() in _TRUTHY


def _env_number(key: str, default, cast):
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        _config_logger.warning(
            "Invalid %s value for %s: %r, using default %s", cast.__name__, key, raw, default
        )
        return default


def _env_int(key: str, default: int) -> int:
    return _env_number(key, default, int)


def _env_float(key: str, default: float) -> float:
    return _env_number(key, default, float)


def _read_field(kind: str, names: tuple[str, ...], default):
    name = next((n for n in names if os.getenv(n) is not None), names[0])
    if kind == "int":
        return _env_int(name, default)
    if kind == "float":
        return _env_float(name, default)
    if kind == "bool":
        return _env_bool(name, default)
    value = os.getenv(name) or default
    if kind == "path" and value:
        return _resolve_path(value)
    return value


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")

    defaults = Settings()
    data: dict[str, dict[str, object]] = {}
    for section, field, kind, names in _ENV_FIELDS:
        default = getattr(getattr(defaults, section), field)
        data.setdefault(section, {})[field] = _read_field(kind, names, default)

    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    _config_logger.debug("Loaded settings (policy=%s)", settings.policy.path)
    return settings
