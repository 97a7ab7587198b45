"""Subprocess helpers for terraform and script-based remediation."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from cloud_remediator.errors import CommandError

logger = logging.getLogger(__name__)

_MAX_STDERR_CHARS = 2_000


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def _spawn(
    args: Sequence[str],
    cwd: Path | None,
    env: Mapping[str, str] | None,
) -> subprocess.Popen:
    try:
        return subprocess.Popen(
            list(args),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"{args[0]} is not installed or not on PATH") from exc


def _communicate(
    proc: subprocess.Popen,
    args: Sequence[str],
    timeout_seconds: int,
) -> CommandResult:
    try:
        stdout, stderr = proc.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired as exc:
        proc.kill()
        proc.communicate()
        raise CommandError(f"{args[0]} timed out after {timeout_seconds}s") from exc

    if proc.returncode != 0:
        # Only the program and subcommand are reported; arguments may carry secrets.
        label = " ".join(args[:2])
        raise CommandError(
            f"{label} failed (exit {proc.returncode})",
            returncode=proc.returncode,
            stderr=(stderr or "")[-_MAX_STDERR_CHARS:],
        )
    return CommandResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
    )


async def run_command(
    args: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: int = 900,
) -> CommandResult:
    """Run a command in a worker thread and return its captured output.

    Raises :class:`CommandError` on a non-zero exit or timeout. If the
    awaiting coroutine is cancelled the child is killed, and cancellation
    only completes once the process has exited.
    """
    logger.debug("Running command: %s (cwd=%s)", args[0], cwd)
    proc = _spawn(args, cwd, env)
    waiter = asyncio.ensure_future(asyncio.to_thread(_communicate, proc, args, timeout_seconds))
    try:
        return await asyncio.shield(waiter)
    except asyncio.CancelledError:
        logger.warning("Cancelled while %s was running; killing pid %s", args[0], proc.pid)
        proc.kill()
        try:
            await waiter
        except CommandError as exc:
            logger.debug("%s exited after kill: %s", args[0], exc)
        raise
