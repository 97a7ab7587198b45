"""Error taxonomy for the remediation engine."""

from __future__ import annotations


class RemediatorError(Exception):
    """Base class for all remediation errors."""

    def __init__(self, message: str, code: str = "remediator_error") -> None:
        super().__init__(message)
        self.code = code


class FatalPlanError(RemediatorError):
    """Raised when an execution cannot proceed at all.

    This is the only error that escapes ``execute_remediation_plan``.
    """

    def __init__(self, message: str, code: str = "fatal_plan_error") -> None:
        super().__init__(message, code)


class PlanNotFoundError(FatalPlanError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Remediation plan not found: {plan_id}", "plan_not_found")
        self.plan_id = plan_id


class TaskError(RemediatorError):
    """A single task failed. Always handled inside the task loop."""

    def __init__(self, message: str, task_id: str, code: str = "task_error") -> None:
        super().__init__(message, code)
        self.task_id = task_id


class TaskExecutionError(TaskError):
    def __init__(self, message: str, task_id: str, code: str = "task_execution_failed") -> None:
        super().__init__(message, task_id, code)


class TaskVerificationError(TaskError):
    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(
            f"Task verification failed: {reason}", task_id, "task_verification_failed"
        )
        self.reason = reason


class CircuitOpenError(RemediatorError):
    def __init__(self, service_name: str) -> None:
        super().__init__(f"Circuit breaker is open for {service_name}", "circuit_open")
        self.service_name = service_name


class RollbackError(RemediatorError):
    """Failure while undoing a single rollback point. Logged, never raised out."""

    def __init__(self, message: str, rollback_point_id: str) -> None:
        super().__init__(message, "rollback_failed")
        self.rollback_point_id = rollback_point_id


class InvalidStateTransition(RemediatorError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Invalid execution status transition: {current} -> {target}",
            "invalid_state_transition",
        )
        self.current = current
        self.target = target


class CommandError(RemediatorError):
    """A subprocess exited non-zero or timed out."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message, "command_failed")
        self.returncode = returncode
        self.stderr = stderr
