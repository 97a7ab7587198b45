"""Logging setup and execution-scoped loggers."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Any, MutableMapping

from cloud_remediator.config import load_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers that flood INFO with per-request noise.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3")

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)


def _handler(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging(level: str | None = None) -> None:
    """Install stderr (and optional file) handlers from settings.

    ``level`` overrides ``LOG_LEVEL`` when given.
    """
    global _logging_configured

    settings = load_settings()
    level_name = (level or settings.logging.level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    handlers = [_handler(logging.StreamHandler(sys.stderr))]
    log_file = settings.logging.file
    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(_handler(logging.FileHandler(log_file)))
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", log_file, exc)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)


class ExecutionLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the execution and plan it belongs to."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[{extra.get('execution_id')} plan={extra.get('plan_id')}] {msg}", kwargs


def execution_logger(
    logger: logging.Logger, execution_id: str, plan_id: str
) -> ExecutionLogAdapter:
    return ExecutionLogAdapter(logger, {"execution_id": execution_id, "plan_id": plan_id})
