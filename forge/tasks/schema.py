"""Plan, state and phase document models with loaders.

Unknown keys are kept on every model (``extra="allow"``) so that a state file
written by a template hook survives a rewrite by the engine untouched.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    InvalidJson,
    MissingFile,
    PlanIdMismatch,
    StateIdMismatch,
    UnsupportedSchema,
)

logger = logging.getLogger(__name__)

PLAN_SCHEMA = "plan-v1"
STATE_SCHEMA = "state-v2"
PHASES_SCHEMA = "forge-phases-v1"

VIRTUAL_PHASE_ID = "implementation"

ModelT = TypeVar("ModelT", bound=BaseModel)


class Status(str, Enum):
    """Task and phase status values."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PlanTask(BaseModel):
    """One unit of work in a plan."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    depends_on: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    """plan.json (plan-v1); read-only for the engine."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_tag: str = Field(alias="$schema")
    id: str
    goal: str
    title: Optional[str] = None
    tasks: list[PlanTask] = Field(default_factory=list)

    def find_task(self, task_id: str) -> Optional[PlanTask]:
        for task in self.tasks:
            if task.id.strip() == task_id:
                return task
        return None


class StatePhase(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str


class StateTask(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    commit_sha: Optional[str] = None
    phases: list[StatePhase] = Field(default_factory=list)

    def find_phase(self, phase_id: str) -> Optional[tuple[int, StatePhase]]:
        for index, phase in enumerate(self.phases):
            if phase.id.strip() == phase_id:
                return index, phase
        return None


class ExecutionState(BaseModel):
    """state.json (state-v2); mutated by the engine and by template hooks."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_tag: str = Field(alias="$schema")
    plan_id: str
    tasks: list[StateTask] = Field(default_factory=list)

    def tasks_by_id(self) -> dict[str, StateTask]:
        return {task.id: task for task in self.tasks}

    def find_task(self, task_id: str) -> Optional[StateTask]:
        for task in self.tasks:
            if task.id.strip() == task_id:
                return task
        return None


class TemplatePhase(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    # Raw entries; shape is validated per entry by the check parser.
    checks: list[Any] = Field(default_factory=list)


class TemplatePhases(BaseModel):
    """Template phases file (forge-phases-v1)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_tag: str = Field(alias="schema")
    phases: list[TemplatePhase] = Field(default_factory=list)

    def checks_for(self, phase_id: str) -> list[Any]:
        for phase in self.phases:
            if phase.id.strip() == phase_id:
                return phase.checks
        return []


def read_json_file(path: Path, model: type[ModelT]) -> ModelT:
    """Read path and validate it into model.

    Raises:
        MissingFile: If the file does not exist
        InvalidJson: If the file is unreadable, not JSON, or the wrong shape
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise MissingFile(f"Missing file: {path}")
    except OSError as e:
        raise InvalidJson(f"Invalid JSON in {path}: {e}")

    try:
        return model.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise InvalidJson(f"Invalid JSON in {path}: {e}")


def require_plan_file(plan_path: Path) -> None:
    if not plan_path.is_file():
        raise MissingFile(f"Missing plan.json: {plan_path}")


def require_state_file(state_path: Path, hint: bool = True) -> None:
    if not state_path.is_file():
        suffix = ". Run prepare first." if hint else ""
        raise MissingFile(f"Missing state.json: {state_path}{suffix}")


def load_plan(plan_path: Path, plan_id: str) -> Plan:
    """Load plan.json and check its schema tag and id.

    Args:
        plan_path: Path to plan.json
        plan_id: The validated plan id it must carry

    Raises:
        UnsupportedSchema: Schema tag is not plan-v1
        PlanIdMismatch: Document id differs from plan_id
    """
    plan = read_json_file(plan_path, Plan)
    if plan.schema_tag.strip() != PLAN_SCHEMA:
        raise UnsupportedSchema(f"Unsupported plan schema in {plan_path}: {plan.schema_tag}")
    if plan.id.strip() != plan_id:
        raise PlanIdMismatch(f"Plan id mismatch (expected {plan_id}, got {plan.id})")
    return plan


def load_state(state_path: Path, plan_id: str) -> ExecutionState:
    """Load state.json and check its schema tag and plan_id.

    Raises:
        UnsupportedSchema: Schema tag is not state-v2
        StateIdMismatch: Document plan_id differs from plan_id
    """
    state = read_json_file(state_path, ExecutionState)
    if state.schema_tag.strip() != STATE_SCHEMA:
        raise UnsupportedSchema(
            f"Unsupported state schema in {state_path}: {state.schema_tag}"
        )
    if state.plan_id.strip() != plan_id:
        raise StateIdMismatch(
            f"State plan_id mismatch (expected {plan_id}, got {state.plan_id})"
        )
    return state


def load_template_phases(phases_path: Path) -> TemplatePhases:
    phases = read_json_file(phases_path, TemplatePhases)
    if phases.schema_tag.strip() != PHASES_SCHEMA:
        raise UnsupportedSchema(
            f"Unsupported phases schema in {phases_path}: {phases.schema_tag}"
        )
    return phases
