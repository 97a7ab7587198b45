from __future__ import annotations

import asyncio
import subprocess
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from cloud_remediator.errors import CommandError
from cloud_remediator.execution import aws_client
from cloud_remediator.execution.aws_client import (
    _CLIENT_CACHE,
    call_aws_api_async,
    get_client,
    get_client_async,
)
from cloud_remediator.execution.commands import run_command


@pytest.fixture(autouse=True)
def _clear_client_cache() -> None:
    aws_client.clear_client_cache()
    yield
    aws_client.clear_client_cache()


def _settings() -> SimpleNamespace:
    return SimpleNamespace(
        aws=SimpleNamespace(
            default_profile="default-prof",
            default_region="us-east-1",
            sdk_timeout_seconds=30,
        ),
    )


@patch("cloud_remediator.execution.aws_client.load_settings")
@patch("cloud_remediator.execution.aws_client.boto3.Session")
def test_get_client_cache(mock_session_cls: MagicMock, mock_settings: MagicMock) -> None:
    mock_settings.return_value = _settings()

    mock_session = MagicMock()
    mock_session.client.return_value = MagicMock()
    mock_session_cls.return_value = mock_session

    first = get_client("cloudformation", None, None)
    second = get_client("cloudformation", None, None)
    third = get_client("ec2", "us-west-2", "custom")

    assert first is second
    assert third is not None
    assert mock_session_cls.call_count == 2
    assert mock_session_cls.call_args_list[0].kwargs == {
        "profile_name": "default-prof",
        "region_name": "us-east-1",
    }


@patch("cloud_remediator.execution.aws_client.load_settings")
@patch("cloud_remediator.execution.aws_client.boto3.Session")
def test_client_cache_expires(
    mock_session_cls: MagicMock,
    mock_settings: MagicMock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    mock_settings.return_value = _settings()
    mock_session_cls.return_value.client.side_effect = [MagicMock(), MagicMock()]
    clock = {"now": 0.0}
    monkeypatch.setattr(aws_client.time, "monotonic", lambda: clock["now"])

    first = get_client("cloudformation")
    clock["now"] = aws_client._CLIENT_TTL_SECONDS + 1
    second = get_client("cloudformation")

    assert first is not second


@patch("cloud_remediator.execution.aws_client.load_settings")
@patch("cloud_remediator.execution.aws_client.boto3.Session")
def test_client_cache_is_bounded(mock_session_cls: MagicMock, mock_settings: MagicMock) -> None:
    mock_settings.return_value = _settings()

    for i in range(aws_client._CLIENT_CACHE_MAX_SIZE + 5):
        get_client(f"svc-{i}")

    assert len(_CLIENT_CACHE) == aws_client._CLIENT_CACHE_MAX_SIZE


@pytest.mark.asyncio
@patch("cloud_remediator.execution.aws_client.get_client")
async def test_get_client_async(mock_get_client: MagicMock) -> None:
    mock_get_client.return_value = "client"
    assert await get_client_async("cloudformation", "eu-west-1") == "client"
    mock_get_client.assert_called_once_with("cloudformation", "eu-west-1", None)


@pytest.mark.asyncio
async def test_call_aws_api_async_passes_kwargs() -> None:
    client = MagicMock()
    client.describe_stacks.return_value = {"Stacks": []}

    result = await call_aws_api_async(client, "describe_stacks", StackName="remediation-t1")

    assert result == {"Stacks": []}
    client.describe_stacks.assert_called_once_with(StackName="remediation-t1")


def _process(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = returncode
    proc.communicate.return_value = (stdout, stderr)
    return proc


class _BlockingProcess:
    """Child that runs until killed."""

    def __init__(self) -> None:
        self.pid = 4243
        self.returncode: int | None = None
        self.killed = threading.Event()
        self.exited = threading.Event()

    def communicate(self, timeout=None):
        if not self.killed.wait(timeout=5):
            raise subprocess.TimeoutExpired(cmd="terraform", timeout=timeout)
        self.returncode = -9
        self.exited.set()
        return "", ""

    def kill(self) -> None:
        self.killed.set()


@pytest.mark.asyncio
@patch("cloud_remediator.execution.commands.subprocess.Popen")
async def test_run_command_returns_output(mock_popen: MagicMock, tmp_path) -> None:
    proc = _process(stdout="ok\n")
    mock_popen.return_value = proc

    result = await run_command(["terraform", "init"], cwd=tmp_path, timeout_seconds=5)

    assert result.stdout == "ok\n"
    assert mock_popen.call_args.kwargs["cwd"] == str(tmp_path)
    proc.communicate.assert_called_once_with(timeout=5)


@pytest.mark.asyncio
@patch("cloud_remediator.execution.commands.subprocess.Popen")
async def test_run_command_non_zero_exit(mock_popen: MagicMock) -> None:
    mock_popen.return_value = _process(returncode=1, stderr="Error: denied")

    with pytest.raises(CommandError) as exc_info:
        await run_command(["terraform", "apply", "-var", "secret=1"])

    assert str(exc_info.value) == "terraform apply failed (exit 1)"
    assert exc_info.value.returncode == 1
    assert exc_info.value.stderr == "Error: denied"


@pytest.mark.asyncio
@patch("cloud_remediator.execution.commands.subprocess.Popen")
async def test_run_command_timeout_kills_child(mock_popen: MagicMock) -> None:
    proc = _process()
    proc.communicate.side_effect = [subprocess.TimeoutExpired(cmd="terraform", timeout=5), ("", "")]
    mock_popen.return_value = proc

    with pytest.raises(CommandError, match="timed out"):
        await run_command(["terraform", "plan"], timeout_seconds=5)

    proc.kill.assert_called_once()


@pytest.mark.asyncio
@patch("cloud_remediator.execution.commands.subprocess.Popen", side_effect=FileNotFoundError())
async def test_run_command_missing_binary(_mock_popen: MagicMock) -> None:
    with pytest.raises(CommandError, match="not installed"):
        await run_command(["terraform", "version"])


@pytest.mark.asyncio
async def test_cancelled_command_is_killed_before_cancellation_completes() -> None:
    proc = _BlockingProcess()

    with patch("cloud_remediator.execution.commands.subprocess.Popen", return_value=proc):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(run_command(["terraform", "apply"], timeout_seconds=60), 0.05)

    assert proc.killed.is_set()
    assert proc.exited.is_set()


def test_aws_error_code() -> None:
    from botocore.exceptions import ClientError

    error = ClientError({"Error": {"Code": "Throttling", "Message": "slow"}}, "CreateStack")

    assert aws_client.aws_error_code(error) == "Throttling"
    assert aws_client.aws_error_code(ValueError("x")) == ""


@pytest.mark.asyncio
async def test_wait_for_waiter_async() -> None:
    client = MagicMock()

    await aws_client.wait_for_waiter_async(client, "stack_create_complete", StackName="s")

    client.get_waiter.assert_called_once_with("stack_create_complete")
    client.get_waiter.return_value.wait.assert_called_once_with(StackName="s")
