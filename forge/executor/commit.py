"""Automatic git commit once a task's last phase passes."""

import logging
import time
from pathlib import Path
from typing import Optional

from ..errors import GitError, GitTimedOut
from ..scheduler.selection import is_task_completed
from ..tasks.schema import PlanTask, StateTask
from ..utils.git import GitOps
from ..validation.checks import SPAWN_FAILED_EXIT_CODE, PhaseCheckResult

logger = logging.getLogger(__name__)

COMMIT_RESULT_ID = "forge-commit"
COMMIT_RESULT_TITLE = "Forge task commit"


class CommitOutcome:
    """Commit step outcome: a result row plus the new SHA on success."""

    def __init__(self, result: PhaseCheckResult, sha: Optional[str] = None):
        self.result = result
        self.sha = sha

    @property
    def ok(self) -> bool:
        return self.sha is not None and self.result.passed


def task_has_commit_sha(task: StateTask) -> bool:
    return bool((task.commit_sha or "").strip())


def build_commit_message(plan_id: str, task: PlanTask) -> str:
    """Build ``forge(<plan>): <task> <name>`` with whitespace-normalized name."""
    normalized_name = " ".join(task.name.split())
    if not normalized_name:
        return f"forge({plan_id}): {task.id}"
    return f"forge({plan_id}): {task.id} {normalized_name}"


def should_commit(
    task_state: StateTask,
    is_last_phase: bool,
    checks_ok: bool,
    task_complete: Optional[bool] = None,
) -> bool:
    if task_complete is None:
        task_complete = is_task_completed(task_state)
    return (
        checks_ok
        and is_last_phase
        and task_complete
        and not task_has_commit_sha(task_state)
    )


def _failure(start: float, exit_code: int, stdout: str = "", stderr: str = "",
             timed_out: bool = False) -> CommitOutcome:
    return CommitOutcome(
        PhaseCheckResult(
            id=COMMIT_RESULT_ID,
            title=COMMIT_RESULT_TITLE,
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - start) * 1000),
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )
    )


async def create_task_commit(git: GitOps, message: str) -> CommitOutcome:
    """Stage everything, commit, and resolve HEAD.

    The first failing step ends the sequence. Failures are returned as a
    failing forge-commit result, never raised.

    Args:
        git: Git wrapper bound to the workspace root
        message: Commit message

    Returns:
        CommitOutcome
    """
    start = time.monotonic()

    steps = [
        ("add", git.add_all),
        ("commit", lambda: git.commit(message)),
        ("rev-parse", git.rev_parse_head),
    ]
    outputs: dict[str, dict] = {}
    for name, step in steps:
        try:
            result = await step()
        except GitTimedOut as e:
            logger.warning(f"git {name} timed out: {e}")
            return _failure(start, SPAWN_FAILED_EXIT_CODE, stderr=str(e), timed_out=True)
        except GitError as e:
            logger.warning(f"git {name} failed to run: {e}")
            return _failure(start, SPAWN_FAILED_EXIT_CODE, stderr=str(e))

        if not result["success"]:
            exit_code = result["exit_code"]
            logger.warning(f"git {name} exited with {exit_code}")
            return _failure(
                start,
                exit_code if exit_code is not None else SPAWN_FAILED_EXIT_CODE,
                stdout=result["stdout"],
                stderr=result["stderr"],
            )
        outputs[name] = result

    sha = outputs["rev-parse"]["stdout"].strip()
    if not sha:
        return _failure(
            start,
            SPAWN_FAILED_EXIT_CODE,
            stderr="Unable to resolve commit SHA after commit.",
        )

    commit_stdout = outputs["commit"]["stdout"]
    logger.info(f"Created commit {sha}: {message}")
    return CommitOutcome(
        PhaseCheckResult(
            id=COMMIT_RESULT_ID,
            title=COMMIT_RESULT_TITLE,
            exit_code=0,
            duration_ms=int((time.monotonic() - start) * 1000),
            stdout=commit_stdout if commit_stdout.strip() else f"Created commit {sha}",
            stderr=outputs["commit"]["stderr"],
        ),
        sha=sha,
    )


async def maybe_commit_task(
    workspace_root: Path,
    plan_id: str,
    plan_task: PlanTask,
    task_state: StateTask,
    is_last_phase: bool,
    checks_ok: bool,
    git: Optional[GitOps] = None,
    task_complete: Optional[bool] = None,
) -> Optional[CommitOutcome]:
    """Commit the task when its final phase passed and it has no SHA yet.

    On success the SHA is written into task_state; persisting is up to the caller.

    Args:
        task_complete: Overrides the phase-based completeness test (used for
            the virtual phase of a phase-less task)

    Returns:
        CommitOutcome when a commit was attempted, otherwise None
    """
    if not should_commit(task_state, is_last_phase, checks_ok, task_complete):
        return None

    git = git or GitOps(workspace_root)
    outcome = await create_task_commit(git, build_commit_message(plan_id, plan_task))
    if outcome.ok:
        task_state.commit_sha = outcome.sha
    return outcome
