from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from cloud_remediator import logging_utils


def _settings(log_file: str | None, level: str = "INFO") -> SimpleNamespace:
    return SimpleNamespace(
        logging=SimpleNamespace(level=level, file=log_file),
    )


@patch("cloud_remediator.logging_utils.load_settings")
@patch("cloud_remediator.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None)

    logging_utils.configure_logging()

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.INFO
    assert len(kwargs["handlers"]) == 1
    assert logging.getLogger("botocore").level == logging.WARNING


@patch("cloud_remediator.logging_utils.load_settings")
@patch("cloud_remediator.logging_utils.logging.basicConfig")
def test_configure_logging_with_file(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path,
) -> None:
    log_file = tmp_path / "logs" / "remediator.log"
    mock_load_settings.return_value = _settings(str(log_file), level="debug")

    logging_utils.configure_logging()

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["level"] == logging.DEBUG
    assert len(kwargs["handlers"]) == 2
    assert log_file.parent.is_dir()
    for handler in kwargs["handlers"]:
        handler.close()


@patch("cloud_remediator.logging_utils.load_settings")
@patch("cloud_remediator.logging_utils.logging.FileHandler", side_effect=OSError("permission denied"))
@patch("cloud_remediator.logging_utils._logger")
def test_configure_logging_file_handler_error(
    mock_logger: MagicMock,
    _mock_file_handler: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path,
) -> None:
    mock_load_settings.return_value = _settings(str(tmp_path / "app.log"))

    with patch("cloud_remediator.logging_utils.logging.basicConfig"):
        logging_utils.configure_logging()

    mock_logger.warning.assert_called_once()


def test_get_logger_auto_configures(monkeypatch) -> None:
    monkeypatch.setattr(logging_utils, "_logging_configured", False)

    calls = {"count": 0}

    def fake_configure() -> None:
        calls["count"] += 1
        monkeypatch.setattr(logging_utils, "_logging_configured", True)

    monkeypatch.setattr(logging_utils, "configure_logging", fake_configure)

    logger = logging_utils.get_logger("cloud_remediator.test")
    logging_utils.get_logger("cloud_remediator.test")
    assert logger.name == "cloud_remediator.test"
    assert calls["count"] == 1


@patch("cloud_remediator.logging_utils.load_settings")
@patch("cloud_remediator.logging_utils.logging.basicConfig")
def test_configure_logging_level_override(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="INFO")

    logging_utils.configure_logging("warning")

    assert mock_basic_config.call_args.kwargs["level"] == logging.WARNING


def test_execution_logger_prefixes_messages(caplog) -> None:
    base = logging.getLogger("cloud_remediator.test.execution")
    log = logging_utils.execution_logger(base, "exec-123", "plan-9")

    with caplog.at_level(logging.INFO, logger="cloud_remediator.test.execution"):
        log.info("Task %s completed", "t1")

    assert caplog.records[-1].getMessage() == "[exec-123 plan=plan-9] Task t1 completed"
