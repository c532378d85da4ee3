"""Template hook invocation.

A hook is an external script run as ``<interpreter> <script> --context <file>``
where ``<file>`` holds the JSON-serialized HookContext.
"""

import json
import logging
import sys
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config.models import DEFAULT_INTERPRETERS
from ..errors import HookFailed, HookSpawnFailed, HookTimedOut
from ..templates.paths import ExecutionPaths
from ..utils.git import subprocess_env
from ..utils.subprocess import SubprocessError, SubprocessManager

logger = logging.getLogger(__name__)

HOOK_TIMEOUT_SECONDS = 120


class HookContext(BaseModel):
    """Paths and date handed to every hook."""

    model_config = ConfigDict(populate_by_name=True)

    workspace_root: str = Field(alias="workspaceRoot")
    template_root: str = Field(alias="templateRoot")
    plan_id: str = Field(alias="planId")
    plan_dir: str = Field(alias="planDir")
    plan_path: str = Field(alias="planPath")
    state_path: str = Field(alias="statePath")
    progress_path: str = Field(alias="progressPath")
    generated_plan_md_path: str = Field(alias="generatedPlanMdPath")
    generated_execute_prompt_path: str = Field(alias="generatedExecutePromptPath")
    today_iso: str = Field(alias="todayIso")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2) + "\n"


def build_hook_context(paths: ExecutionPaths, today: Optional[datetime] = None) -> HookContext:
    """Build the hook context for a resolved plan."""
    today = today or datetime.now(timezone.utc)
    return HookContext(
        workspace_root=str(paths.workspace_root),
        template_root=str(paths.template_root),
        plan_id=paths.plan_id,
        plan_dir=str(paths.plan_dir),
        plan_path=str(paths.plan_path),
        state_path=str(paths.state_path),
        progress_path=str(paths.progress_path),
        generated_plan_md_path=str(paths.generated_plan_md_path),
        generated_execute_prompt_path=str(paths.generated_execute_prompt_path),
        today_iso=today.strftime("%Y-%m-%d"),
    )


def format_process_error(stdout: str, stderr: str) -> str:
    """Pick the most useful failure detail: stderr, then stdout."""
    detail = stderr.strip() or stdout.strip()
    return detail or "Process failed."


def hook_command(script_path: Path, interpreters: Optional[dict[str, str]] = None) -> list[str]:
    """Build the argv prefix (without --context) for script_path."""
    mapping = dict(DEFAULT_INTERPRETERS)
    mapping.update(interpreters or {})
    suffix = script_path.suffix.lower()

    interpreter = mapping.get(suffix)
    if interpreter is None and suffix == ".py":
        interpreter = sys.executable
    if interpreter:
        return [interpreter, str(script_path)]
    return [str(script_path)]


async def run_hook(
    script_path: Path,
    workspace_root: Path,
    context: HookContext,
    timeout_sec: float = HOOK_TIMEOUT_SECONDS,
    interpreters: Optional[dict[str, str]] = None,
    extra_paths: Optional[list[str]] = None,
) -> None:
    """Run a template hook to completion.

    Args:
        script_path: Hook script
        workspace_root: Working directory for the hook
        context: Context serialized to a temp file for the hook
        timeout_sec: Hard timeout
        interpreters: Suffix to interpreter overrides
        extra_paths: Extra PATH directories

    Raises:
        HookSpawnFailed: The context file could not be written or the process not started
        HookTimedOut: The hook exceeded timeout_sec
        HookFailed: The hook exited non-zero
    """
    context_path = Path(tempfile.gettempdir()) / f"forge-hook-context-{uuid.uuid4()}.json"
    try:
        context_path.write_text(context.to_json(), encoding="utf-8")
    except OSError as e:
        raise HookSpawnFailed(f"Failed to write Forge hook context file {context_path}: {e}")

    command = hook_command(script_path, interpreters) + ["--context", str(context_path)]
    logger.info(f"Running hook {script_path.name}")

    try:
        manager = SubprocessManager(timeout_sec=timeout_sec)
        result = await manager.run(
            command,
            cwd=workspace_root,
            env=subprocess_env(extra_paths),
        )
    except SubprocessError as e:
        raise HookSpawnFailed(f"Failed to run hook {script_path}: {e}")
    finally:
        try:
            context_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove hook context file {context_path}: {e}")

    if result["timed_out"]:
        raise HookTimedOut(f"Hook timed out after {timeout_sec:g}s: {script_path}")

    if not result["success"]:
        detail = format_process_error(result["stdout"], result["stderr"])
        logger.warning(f"Hook {script_path.name} exited with {result['exit_code']}")
        raise HookFailed(f"Hook failed ({script_path}): {detail}")

    logger.debug(f"Hook {script_path.name} finished in {result['duration_ms']}ms")
