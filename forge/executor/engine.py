"""Public execution operations: prepare, reset, next prompt, status, checks."""

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config.models import ForgeConfig
from ..errors import InvalidIdentifier, MissingFile, UnknownPhase, UnknownTask
from ..hooks.runner import build_hook_context, run_hook
from ..scheduler.selection import (
    awaiting_commit,
    next_phase,
    next_runnable_task,
    select_phase,
)
from ..state.machine import ExecutionMachine
from ..tasks.listing import WorkspacePlan, list_plans
from ..tasks.schema import (
    Status,
    load_plan,
    load_state,
    load_template_phases,
    require_plan_file,
    require_state_file,
)
from ..templates.paths import ExecutionPaths, resolve_execution_paths
from ..utils.git import GitOps
from ..validation.checks import CheckRunner, PhaseCheckResult, batch_ok, parse_checks
from .commit import maybe_commit_task

logger = logging.getLogger(__name__)


class NextPhasePrompt(BaseModel):
    """The next unit of work for the agent."""

    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId")
    task_id: str = Field(alias="taskId")
    phase_id: str = Field(alias="phaseId")
    is_last_phase: bool = Field(alias="isLastPhase")
    prompt_text: str = Field(alias="promptText")


class PhaseStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    commit_sha: Optional[str] = Field(default=None, alias="commitSha")


class RunPhaseChecksResponse(BaseModel):
    ok: bool
    results: list[PhaseCheckResult] = Field(default_factory=list)


def _require_id(value: str, field_name: str) -> str:
    trimmed = (value or "").strip()
    if not trimmed:
        raise InvalidIdentifier(f"{field_name} is required")
    return trimmed


class ForgeEngine:
    """Drives one workspace's plans through their template phases.

    Operations are sequential; one caller per plan is assumed and not enforced.
    """

    def __init__(self, config: Optional[ForgeConfig] = None):
        """Initialize engine.

        Args:
            config: Timeouts, hook interpreters and git settings (defaults when None)
        """
        self.config = config or ForgeConfig()

    async def _run_hook(self, script_path: Path, paths: ExecutionPaths) -> None:
        await run_hook(
            script_path,
            paths.workspace_root,
            build_hook_context(paths),
            timeout_sec=self.config.timeouts.hook_sec,
            interpreters=self.config.hooks.interpreters,
            extra_paths=self.config.git.extra_path,
        )

    def _git(self, workspace_root: Path) -> GitOps:
        return GitOps(
            workspace_root,
            timeout_sec=self.config.timeouts.git_sec,
            git_binary=self.config.git.binary,
            extra_paths=self.config.git.extra_path,
        )

    async def prepare_execution(self, workspace_root: Path, plan_id: str) -> None:
        """Initialize execution for a plan.

        Creates state through the post-plan hook when it does not exist yet,
        then always runs the pre-execute hook.

        Raises:
            ForgeError: Resolution, validation or hook failure
        """
        paths = resolve_execution_paths(workspace_root, plan_id)
        require_plan_file(paths.plan_path)
        load_plan(paths.plan_path, paths.plan_id)

        if paths.state_path.is_file():
            logger.info(f"State exists for {paths.plan_id}; skipping post-plan hook")
        else:
            await self._run_hook(paths.post_plan_hook_path, paths)
        await self._run_hook(paths.pre_execute_hook_path, paths)
        logger.info(f"Prepared plan {paths.plan_id}")

    async def reset_execution_progress(self, workspace_root: Path, plan_id: str) -> None:
        """Regenerate state and artifacts from the plan, discarding progress."""
        paths = resolve_execution_paths(workspace_root, plan_id)
        require_plan_file(paths.plan_path)
        load_plan(paths.plan_path, paths.plan_id)

        await self._run_hook(paths.post_plan_hook_path, paths)
        await self._run_hook(paths.pre_execute_hook_path, paths)
        logger.info(f"Reset progress for plan {paths.plan_id}")

    async def get_next_phase_prompt(
        self,
        workspace_root: Path,
        plan_id: str,
    ) -> Optional[NextPhasePrompt]:
        """Select the next runnable task and phase and render its prompt.

        The post-step hook always runs first so the prompt reflects the current
        state, never a stale file.

        Returns:
            NextPhasePrompt, or None when every task is complete or blocked
        """
        paths = resolve_execution_paths(workspace_root, plan_id)
        require_plan_file(paths.plan_path)
        require_state_file(paths.state_path)

        plan = load_plan(paths.plan_path, paths.plan_id)
        state = load_state(paths.state_path, paths.plan_id)

        task = next_runnable_task(plan, state)
        if task is None:
            logger.info(f"No runnable task left in plan {paths.plan_id}")
            return None

        task_state = state.tasks_by_id().get(task.id)
        if task_state is None:
            raise UnknownTask(f"state.json missing task entry for {task.id}")

        selection = next_phase(task_state)
        if selection is None:
            logger.info(f"Task {task.id} has nothing left to run")
            return None

        await self._run_hook(paths.post_step_hook_path, paths)

        prompt_path = paths.generated_execute_prompt_path
        try:
            prompt_text = prompt_path.read_text(encoding="utf-8")
        except OSError as e:
            raise MissingFile(f"Unable to read generated execute prompt {prompt_path}: {e}")

        logger.info(f"Next: task {task.id} phase {selection.phase_id}")
        return NextPhasePrompt(
            plan_id=paths.plan_id,
            task_id=task.id,
            phase_id=selection.phase_id,
            is_last_phase=selection.is_last_phase,
            prompt_text=prompt_text,
        )

    async def get_phase_status(
        self,
        workspace_root: Path,
        plan_id: str,
        task_id: str,
        phase_id: str,
    ) -> PhaseStatus:
        """Report a phase's status and its task's commit SHA."""
        paths = resolve_execution_paths(workspace_root, plan_id)
        require_state_file(paths.state_path, hint=False)
        task_id = _require_id(task_id, "taskId")
        phase_id = _require_id(phase_id, "phaseId")

        state = load_state(paths.state_path, paths.plan_id)
        task = state.find_task(task_id)
        if task is None:
            raise UnknownTask(f"Unknown taskId: {task_id}")

        selection = select_phase(task, phase_id)
        if selection is None:
            raise UnknownPhase(f"Unknown phaseId for task {task_id}: {phase_id}")
        raw_status = task.status if selection.is_virtual else selection.phase.status

        return PhaseStatus(
            status=(raw_status or "").strip() or Status.PENDING.value,
            commit_sha=task.commit_sha,
        )

    async def run_phase_checks(
        self,
        workspace_root: Path,
        plan_id: str,
        task_id: str,
        phase_id: str,
    ) -> RunPhaseChecksResponse:
        """Run a phase's checks, advance state, and commit a finished task.

        Check and commit failures are reported in the response, not raised.
        When the task only lacks its commit and phase_id is its last phase,
        the checks are skipped and only the commit is retried.

        Raises:
            ForgeError: Resolution, validation or post-step hook failure
        """
        paths = resolve_execution_paths(workspace_root, plan_id)
        task_id = _require_id(task_id, "taskId")
        phase_id = _require_id(phase_id, "phaseId")
        require_plan_file(paths.plan_path)
        require_state_file(paths.state_path)

        plan = load_plan(paths.plan_path, paths.plan_id)
        plan_task = plan.find_task(task_id)
        if plan_task is None:
            raise UnknownTask(f"Unknown taskId: {task_id}")

        state = load_state(paths.state_path, paths.plan_id)
        task_state = state.find_task(task_id)
        if task_state is None:
            raise UnknownTask(f"state.json missing task entry for {task_id}")

        selection = select_phase(task_state, phase_id)
        if selection is None:
            raise UnknownPhase(f"Unknown phaseId for task {task_id}: {phase_id}")

        machine = ExecutionMachine(state, paths.state_path)
        if selection.is_last_phase and awaiting_commit(task_state):
            # Checks already passed on an earlier run; only the commit is outstanding.
            logger.info(f"Task {task_id} is awaiting its commit; retrying the commit step")
            results: list[PhaseCheckResult] = []
            needs_commit = True
        else:
            template_phases = load_template_phases(paths.phases_path)
            parsed = parse_checks(
                template_phases.checks_for(phase_id),
                default_timeout_sec=self.config.timeouts.check_default_sec,
            )
            runner = CheckRunner(paths.workspace_root, extra_paths=self.config.git.extra_path)
            results = await runner.run_checks(parsed)
            checks_ok = batch_ok(results)
            logger.info(
                f"Checks for task {task_id} phase {phase_id}: "
                f"{'passed' if checks_ok else 'failed'} ({len(results)} run)"
            )

            needs_commit = machine.apply_check_outcome(
                task_state,
                selection.phase,
                selection.is_last_phase,
                checks_ok,
            )
            machine.save()

        if needs_commit:
            outcome = await maybe_commit_task(
                paths.workspace_root,
                paths.plan_id,
                plan_task,
                task_state,
                selection.is_last_phase,
                True,
                git=self._git(paths.workspace_root),
                task_complete=True,
            )
            if outcome is not None:
                results.append(outcome.result)
                machine.apply_commit_outcome(task_state, outcome.ok)
                machine.save()

        await self._run_hook(paths.post_step_hook_path, paths)
        return RunPhaseChecksResponse(ok=batch_ok(results), results=results)

    async def list_plans(self, workspace_root: Path) -> list[WorkspacePlan]:
        return list_plans(workspace_root)


async def prepare_execution(workspace_root: Path, plan_id: str) -> None:
    await ForgeEngine().prepare_execution(workspace_root, plan_id)


async def reset_execution_progress(workspace_root: Path, plan_id: str) -> None:
    await ForgeEngine().reset_execution_progress(workspace_root, plan_id)


async def get_next_phase_prompt(workspace_root: Path, plan_id: str) -> Optional[NextPhasePrompt]:
    return await ForgeEngine().get_next_phase_prompt(workspace_root, plan_id)


async def get_phase_status(
    workspace_root: Path, plan_id: str, task_id: str, phase_id: str
) -> PhaseStatus:
    return await ForgeEngine().get_phase_status(workspace_root, plan_id, task_id, phase_id)


async def run_phase_checks(
    workspace_root: Path, plan_id: str, task_id: str, phase_id: str
) -> RunPhaseChecksResponse:
    return await ForgeEngine().run_phase_checks(workspace_root, plan_id, task_id, phase_id)
