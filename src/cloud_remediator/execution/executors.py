"""Task executors, one per remediation task type.

Each executor knows how to apply a task, how to check that the apply
actually took effect, and how to undo it from a rollback point.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from cloud_remediator.domain.models import Task, TaskType
from cloud_remediator.domain.state import RollbackPoint, RollbackStrategy, rollback_strategy_for
from cloud_remediator.errors import CommandError, TaskExecutionError
from cloud_remediator.execution.aws_client import (
    call_aws_api_async,
    get_client_async,
    wait_for_waiter_async,
)
from cloud_remediator.execution.commands import run_command
from cloud_remediator.ports import TaskExecutor, WorkItemSink
from cloud_remediator.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str | None], Awaitable[Any]]

_APPLY_SUMMARY_RE = re.compile(r"(\d+) added, (\d+) changed, (\d+) destroyed")
_RESERVED_PARAMETERS = frozenset({"region", "environment"})
_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
# Local backend state, or the copy kept by a configured remote backend.
_STATE_FILES = ("terraform.tfstate", ".terraform/terraform.tfstate")


def parse_terraform_output(output: str) -> dict[str, int] | None:
    """Extract the resource counts from ``terraform apply`` output."""
    for line in output.splitlines():
        if "Apply complete!" not in line:
            continue
        match = _APPLY_SUMMARY_RE.search(line)
        if match:
            return {
                "added": int(match.group(1)),
                "changed": int(match.group(2)),
                "destroyed": int(match.group(3)),
            }
    return None


def render_tfvars(parameters: dict[str, Any]) -> str:
    lines = []
    for key, value in parameters.items():
        if isinstance(value, (dict, list)):
            lines.append(f"{key} = {json.dumps(value)}")
        else:
            lines.append(f"{key} = {json.dumps(str(value))}")
    return "\n".join(lines) + "\n"


def render_script(script: str, parameters: dict[str, Any]) -> str:
    rendered = script
    for key, value in parameters.items():
        rendered = rendered.replace("${" + key + "}", str(value))
    return rendered


class _WorkspaceMixin:
    def __init__(self, work_dir: str | None, command_timeout_seconds: int) -> None:
        self._work_dir = work_dir
        self._command_timeout = command_timeout_seconds

    def _workspace(self, prefix: str) -> tempfile.TemporaryDirectory:
        if self._work_dir:
            Path(self._work_dir).mkdir(parents=True, exist_ok=True)
        return tempfile.TemporaryDirectory(prefix=prefix, dir=self._work_dir)


class TerraformExecutor(_WorkspaceMixin):
    """Applies a task's template from a per-task workspace.

    The workspace outlives ``execute`` so the local state is still there
    for retries and for ``rollback``; a successful destroy removes it.
    """

    task_type = TaskType.TERRAFORM.value

    def __init__(
        self,
        work_dir: str | None = None,
        command_timeout_seconds: int = 900,
        terraform_bin: str = "terraform",
    ) -> None:
        super().__init__(work_dir, command_timeout_seconds)
        self._terraform = terraform_bin

    def task_workspace(self, task: Task) -> Path:
        base = Path(self._work_dir) if self._work_dir else Path(tempfile.gettempdir())
        return base / f"terraform-{_UNSAFE_PATH_CHARS.sub('_', task.id)}"

    def _prepare(self, task: Task) -> Path:
        if not task.template:
            raise TaskExecutionError("Terraform task has no template", task.id)
        workspace = self.task_workspace(task)
        workspace.mkdir(parents=True, exist_ok=True)
        (workspace / "main.tf").write_text(task.template, encoding="utf-8")
        (workspace / "terraform.tfvars").write_text(
            render_tfvars(task.parameters), encoding="utf-8"
        )
        return workspace

    async def _terraform_cmd(self, workspace: Path, *args: str) -> str:
        result = await run_command(
            [self._terraform, *args],
            cwd=workspace,
            timeout_seconds=self._command_timeout,
        )
        return result.stdout

    async def execute(self, task: Task) -> dict[str, Any]:
        workspace = self._prepare(task)
        try:
            await self._terraform_cmd(workspace, "init", "-input=false", "-no-color")
            plan_output = await self._terraform_cmd(
                workspace, "plan", "-input=false", "-no-color", "-out=tfplan"
            )
            apply_output = await self._terraform_cmd(
                workspace, "apply", "-input=false", "-no-color", "tfplan"
            )
        except CommandError as exc:
            raise TaskExecutionError(str(exc), task.id) from exc

        return {
            "type": self.task_type,
            "status": "success",
            "workspace": str(workspace),
            "plan_output": plan_output,
            "apply_output": apply_output,
            "resources_created": parse_terraform_output(apply_output),
        }

    async def verify(self, task: Task, result: dict[str, Any]) -> tuple[bool, str]:
        if result.get("status") != "success":
            return False, "Task execution failed"
        created = result.get("resources_created") or {}
        if created.get("added", 0) > 0:
            return True, "Terraform resources created successfully"
        return False, "No Terraform resources were created"

    def rollback_strategy(self) -> RollbackStrategy:
        return rollback_strategy_for(self.task_type)

    async def rollback(self, task: Task, point: RollbackPoint) -> dict[str, Any]:
        workspace = self.task_workspace(task)
        if not any((workspace / name).is_file() for name in _STATE_FILES):
            logger.warning("No Terraform state for task %s in %s", task.id, workspace)
            return {
                "success": False,
                "method": "terraform-destroy",
                "reason": f"No Terraform state found in {workspace}",
            }
        await self._terraform_cmd(workspace, "init", "-input=false", "-no-color")
        output = await self._terraform_cmd(
            workspace, "destroy", "-input=false", "-no-color", "-auto-approve"
        )
        shutil.rmtree(workspace)
        return {
            "success": True,
            "method": "terraform-destroy",
            "workspace": str(workspace),
            "output": output,
        }


class CloudFormationExecutor:
    task_type = TaskType.CLOUDFORMATION.value

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or get_client_async

    @staticmethod
    def stack_name(task: Task) -> str:
        return f"remediation-{task.id}"

    async def _client(self, task: Task):
        region = task.parameters.get("region")
        return await self._client_factory("cloudformation", str(region) if region else None)

    async def execute(self, task: Task) -> dict[str, Any]:
        if not task.template:
            raise TaskExecutionError("CloudFormation task has no template", task.id)

        client = await self._client(task)
        stack_name = self.stack_name(task)
        params = {
            "StackName": stack_name,
            "TemplateBody": task.template,
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": str(value)}
                for key, value in task.parameters.items()
                if key not in _RESERVED_PARAMETERS
            ],
            "Capabilities": ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
            "Tags": [
                {"Key": "Purpose", "Value": "SecurityRemediation"},
                {"Key": "TaskId", "Value": task.id},
                {"Key": "AutoGenerated", "Value": "true"},
            ],
        }

        try:
            created = await call_aws_api_async(client, "create_stack", **params)
            await wait_for_waiter_async(client, "stack_create_complete", StackName=stack_name)
            described = await call_aws_api_async(client, "describe_stacks", StackName=stack_name)
        except (ClientError, WaiterError, BotoCoreError) as exc:
            events = await self._failed_events(client, stack_name)
            error = TaskExecutionError(f"CloudFormation deployment failed: {exc}", task.id)
            error.stack_events = events
            raise error from exc

        stack = (described.get("Stacks") or [{}])[0]
        return {
            "type": self.task_type,
            "status": "success",
            "stack_id": created.get("StackId"),
            "stack_name": stack_name,
            "stack_status": stack.get("StackStatus"),
            "outputs": stack.get("Outputs") or [],
        }

    async def _failed_events(self, client, stack_name: str) -> list[dict[str, Any]]:
        try:
            response = await call_aws_api_async(
                client, "describe_stack_events", StackName=stack_name
            )
        except (ClientError, BotoCoreError) as exc:
            logger.debug("Could not read stack events for %s: %s", stack_name, exc)
            return []
        events = response.get("StackEvents") or []
        return [e for e in events if "FAILED" in str(e.get("ResourceStatus", ""))][:5]

    async def verify(self, task: Task, result: dict[str, Any]) -> tuple[bool, str]:
        if result.get("status") != "success":
            return False, "Task execution failed"
        stack_name = result.get("stack_name") or self.stack_name(task)
        try:
            client = await self._client(task)
            described = await call_aws_api_async(client, "describe_stacks", StackName=stack_name)
        except (ClientError, BotoCoreError) as exc:
            return False, f"Stack verification failed: {exc}"
        stacks = described.get("Stacks") or []
        if not stacks:
            return False, f"Stack not found: {stack_name}"
        status = stacks[0].get("StackStatus")
        if status == "CREATE_COMPLETE":
            return True, "CloudFormation stack created successfully"
        return False, f"Stack in unexpected state: {status}"

    def rollback_strategy(self) -> RollbackStrategy:
        return rollback_strategy_for(self.task_type)

    async def rollback(self, task: Task, point: RollbackPoint) -> dict[str, Any]:
        client = await self._client(task)
        stack_name = self.stack_name(task)
        await call_aws_api_async(client, "delete_stack", StackName=stack_name)
        await wait_for_waiter_async(client, "stack_delete_complete", StackName=stack_name)
        return {"success": True, "method": "cloudformation-delete", "stack_name": stack_name}


class Boto3ScriptExecutor(_WorkspaceMixin):
    task_type = TaskType.BOTO3.value

    def __init__(
        self,
        work_dir: str | None = None,
        command_timeout_seconds: int = 900,
        python_executable: str | None = None,
    ) -> None:
        super().__init__(work_dir, command_timeout_seconds)
        self._python = python_executable or sys.executable

    async def _run_script(self, task: Task, script: str, name: str) -> str:
        env = dict(os.environ)
        region = task.parameters.get("region") or os.getenv("AWS_REGION")
        if region:
            env["AWS_DEFAULT_REGION"] = str(region)
        with self._workspace(f"boto3-{task.id}-") as tmp:
            script_path = Path(tmp) / name
            script_path.write_text(render_script(script, task.parameters), encoding="utf-8")
            result = await run_command(
                [self._python, str(script_path)],
                cwd=Path(tmp),
                env=env,
                timeout_seconds=self._command_timeout,
            )
        return result.stdout

    async def execute(self, task: Task) -> dict[str, Any]:
        if not task.template:
            raise TaskExecutionError("boto3 task has no script", task.id)
        try:
            output = await self._run_script(task, task.template, "remediation.py")
        except CommandError as exc:
            raise TaskExecutionError(str(exc), task.id) from exc
        return {"type": self.task_type, "status": "success", "output": output}

    async def verify(self, task: Task, result: dict[str, Any]) -> tuple[bool, str]:
        if result.get("status") != "success":
            return False, "Task execution failed"
        if "ERROR" in str(result.get("output") or ""):
            return False, "Boto3 script execution had errors"
        return True, "Boto3 script executed successfully"

    def rollback_strategy(self) -> RollbackStrategy:
        return rollback_strategy_for(self.task_type)

    async def rollback(self, task: Task, point: RollbackPoint) -> dict[str, Any]:
        if not task.rollback_script:
            return {"success": False, "reason": "No reverse script provided"}
        output = await self._run_script(task, task.rollback_script, "rollback.py")
        return {"success": True, "method": "boto3-reverse", "output": output}


class ManualExecutor:
    task_type = TaskType.MANUAL.value

    def __init__(self, work_items: WorkItemSink | None = None) -> None:
        self._work_items = work_items

    async def execute(self, task: Task) -> dict[str, Any]:
        work_item = {
            "id": f"manual-{task.id}",
            "task_id": task.id,
            "title": task.title,
            "description": task.description,
            "instructions": list(task.instructions),
            "priority": task.priority or "medium",
            "assignee": task.assignee or "security-team",
            "created_at": utc_now_iso(),
            "status": "pending",
        }
        if self._work_items is not None:
            await self._work_items.create_work_item(work_item)
        logger.info(
            "Manual remediation work item %s created for %s",
            work_item["id"],
            work_item["assignee"],
        )
        return {
            "type": self.task_type,
            "status": "pending-manual-action",
            "work_item_id": work_item["id"],
            "message": "Manual remediation work item created and assigned",
        }

    async def verify(self, task: Task, result: dict[str, Any]) -> tuple[bool, str]:
        return True, "Manual task created successfully"

    def rollback_strategy(self) -> RollbackStrategy:
        return rollback_strategy_for(self.task_type)

    async def rollback(self, task: Task, point: RollbackPoint) -> dict[str, Any]:
        return {"success": False, "reason": "Manual rollback required"}


class ExecutorRegistry:
    def __init__(self, executors: list[TaskExecutor] | None = None) -> None:
        self._executors: dict[str, TaskExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: TaskExecutor) -> None:
        self._executors[str(executor.task_type)] = executor

    def get(self, task_type: object) -> TaskExecutor | None:
        return self._executors.get(str(getattr(task_type, "value", task_type)))

    def require(self, task: Task) -> TaskExecutor:
        executor = self.get(task.type)
        if executor is None:
            raise TaskExecutionError(f"Unsupported task type: {task.type.value}", task.id)
        return executor


def default_registry(
    work_items: WorkItemSink | None = None,
    work_dir: str | None = None,
    command_timeout_seconds: int = 900,
) -> ExecutorRegistry:
    return ExecutorRegistry(
        [
            TerraformExecutor(work_dir, command_timeout_seconds),
            CloudFormationExecutor(),
            Boto3ScriptExecutor(work_dir, command_timeout_seconds),
            ManualExecutor(work_items),
        ]
    )
