"""Discover plans in a workspace and join them with their task statuses."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..scheduler.selection import is_task_done
from .schema import PLAN_SCHEMA, STATE_SCHEMA, StateTask, Status

logger = logging.getLogger(__name__)

LEGACY_STATE_SCHEMA = "state-v1"


class PlanTaskSummary(BaseModel):
    id: str
    name: str
    status: str


class WorkspacePlan(BaseModel):
    """A plan found on disk, with per-task status."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    goal: str
    tasks: list[PlanTaskSummary] = Field(default_factory=list)
    current_task_id: Optional[str] = Field(default=None, alias="currentTaskId")
    plan_path: str = Field(alias="planPath")
    updated_at_ms: int = Field(default=0, alias="updatedAtMs")


def collect_json_files(root: Path) -> list[Path]:
    """Recursively collect *.json files under root, skipping dotfiles and dot dirs."""
    found = []
    stack = [root]
    while stack:
        directory = stack.pop()
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            continue
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                stack.append(entry)
            elif entry.is_file() and entry.suffix == ".json":
                found.append(entry)
    return found


def resolve_state_path(plans_dir: Path, plan_path: Path, plan_id: str) -> Optional[Path]:
    """Find the state file belonging to plan_path, if any."""
    candidates = []
    if plan_path.name == "plan.json":
        candidates.append(plan_path.parent / "state.json")
    else:
        candidates.append(plan_path.parent / f"{plan_path.stem}.state.json")
    candidates.append(plans_dir / f"{plan_id}.state.json")
    candidates.append(plans_dir / plan_id / "state.json")

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _read_json(path: Path) -> Optional[Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"Skipping unreadable {path}: {e}")
        return None


def _is_plan_document(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    if str(value.get("$schema") or "").strip() != PLAN_SCHEMA:
        return False
    # Plans are tasks-only; phase-based legacy documents are ignored.
    if "phases" in value:
        return False
    tasks = value.get("tasks")
    if not isinstance(tasks, list):
        return False
    return not any(isinstance(task, dict) and "phase" in task for task in tasks)


def read_task_statuses(state_path: Optional[Path]) -> tuple[Optional[str], dict[str, str]]:
    """Read (current task id, status by task id) from a state file.

    Unreadable or foreign documents yield no statuses.
    """
    if state_path is None:
        return None, {}
    value = _read_json(state_path)
    if not isinstance(value, dict):
        return None, {}

    schema = str(value.get("$schema") or "").strip()
    if schema not in (STATE_SCHEMA, LEGACY_STATE_SCHEMA):
        return None, {}

    statuses: dict[str, str] = {}
    in_progress: Optional[str] = None
    for raw in value.get("tasks") or []:
        if not isinstance(raw, dict):
            continue
        task_id = str(raw.get("id") or "").strip()
        status = str(raw.get("status") or "").strip()
        if not task_id:
            continue
        if schema == STATE_SCHEMA and isinstance(raw.get("phases"), list):
            try:
                if is_task_done(StateTask.model_validate(raw)):
                    status = Status.COMPLETED.value
            except ValueError as e:
                logger.debug(f"Ignoring malformed task {task_id} in {state_path}: {e}")
        if not status:
            continue
        statuses[task_id] = status
        if in_progress is None and status == Status.IN_PROGRESS.value:
            in_progress = task_id

    current = str(value.get("current_task") or "").strip() or in_progress
    return current, statuses


def list_plans(workspace_root: Path) -> list[WorkspacePlan]:
    """List plan-v1 documents under <workspace>/plans.

    When the same plan id appears in several files the most recently modified
    one wins. Results are sorted newest first.

    Args:
        workspace_root: Workspace root directory

    Returns:
        Plans with task statuses joined from their state files
    """
    workspace_root = Path(workspace_root)
    plans_dir = workspace_root / "plans"
    if not plans_dir.is_dir():
        return []

    unique_by_id: dict[str, WorkspacePlan] = {}
    for path in collect_json_files(plans_dir):
        value = _read_json(path)
        if not _is_plan_document(value):
            continue

        plan_id = str(value.get("id") or "").strip()
        goal = value.get("goal")
        if not plan_id or not isinstance(goal, str):
            continue

        try:
            updated_at_ms = int(path.stat().st_mtime * 1000)
        except OSError:
            updated_at_ms = 0

        current_task_id, statuses = read_task_statuses(
            resolve_state_path(plans_dir, path, plan_id)
        )

        tasks = []
        for raw in value["tasks"]:
            if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
                continue
            task_id = raw["id"]
            tasks.append(
                PlanTaskSummary(
                    id=task_id,
                    name=str(raw.get("name") or ""),
                    status=statuses.get(task_id.strip(), Status.PENDING.value),
                )
            )

        try:
            plan_path = str(path.relative_to(workspace_root))
        except ValueError:
            plan_path = str(path)

        title = value.get("title")
        title = title.strip() if isinstance(title, str) and title.strip() else None

        plan = WorkspacePlan(
            id=plan_id,
            title=title,
            goal=goal,
            tasks=tasks,
            current_task_id=current_task_id,
            plan_path=plan_path,
            updated_at_ms=updated_at_ms,
        )
        existing = unique_by_id.get(plan_id)
        if existing is None or plan.updated_at_ms > existing.updated_at_ms:
            unique_by_id[plan_id] = plan

    plans = sorted(unique_by_id.values(), key=lambda p: p.updated_at_ms, reverse=True)
    logger.debug(f"Found {len(plans)} plan(s) in {plans_dir}")
    return plans
