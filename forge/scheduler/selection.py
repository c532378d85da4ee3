"""Dependency-aware task and phase selection.

Everything here is a pure function over loaded plan/state documents.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..tasks.schema import (
    VIRTUAL_PHASE_ID,
    ExecutionState,
    Plan,
    PlanTask,
    StatePhase,
    StateTask,
    Status,
)

logger = logging.getLogger(__name__)


@dataclass
class PhaseSelection:
    """The phase handed out next for a task."""

    index: int
    phase_id: str
    is_last_phase: bool
    phase: Optional[StatePhase] = None

    @property
    def is_virtual(self) -> bool:
        return self.phase is None


@dataclass
class BlockedTask:
    """A pending task and the dependencies holding it back."""

    task_id: str
    waiting_on: list[str] = field(default_factory=list)


def is_completed_status(status: Optional[str]) -> bool:
    return (status or "").strip() == Status.COMPLETED.value


def is_task_completed(task: StateTask) -> bool:
    """A task is complete iff every phase is completed.

    Phase-less tasks fall back to their own status.
    """
    if not task.phases:
        return is_completed_status(task.status)
    return all(is_completed_status(phase.status) for phase in task.phases)


def awaiting_commit(task: StateTask) -> bool:
    """Every phase passed but the task commit has not been recorded yet."""
    return (
        bool(task.phases)
        and is_task_completed(task)
        and not (task.commit_sha or "").strip()
        and not is_completed_status(task.status)
    )


def is_task_done(task: StateTask) -> bool:
    """Scheduling view of completeness: finished phases and no pending commit."""
    return is_task_completed(task) and not awaiting_commit(task)


def unmet_dependencies(task: PlanTask, state_tasks: dict[str, StateTask]) -> list[str]:
    """Return dependency ids that are missing from state or not done."""
    unmet = []
    for dep in task.depends_on:
        dep_id = dep.strip()
        if not dep_id:
            continue
        state_task = state_tasks.get(dep_id)
        if state_task is None or not is_task_done(state_task):
            unmet.append(dep_id)
    return unmet


def next_runnable_task(plan: Plan, state: ExecutionState) -> Optional[PlanTask]:
    """Find the first task in declaration order that can run now.

    Tasks without a state entry and done tasks are skipped. A task whose
    commit failed is not done, so it is handed out again ahead of its
    dependents. A task is runnable when every non-empty dependency maps to a
    done state task.

    Args:
        plan: Loaded plan
        state: Loaded execution state

    Returns:
        The first runnable plan task, or None when everything is complete or blocked
    """
    state_tasks = state.tasks_by_id()
    for task in plan.tasks:
        state_task = state_tasks.get(task.id)
        if state_task is None:
            continue
        if is_task_done(state_task):
            continue
        if not unmet_dependencies(task, state_tasks):
            return task
    return None


def _selection_at(task: StateTask, index: int) -> PhaseSelection:
    phase = task.phases[index]
    return PhaseSelection(
        index=index,
        phase_id=phase.id,
        is_last_phase=is_last_phase(index, len(task.phases)),
        phase=phase,
    )


def next_phase(task: StateTask) -> Optional[PhaseSelection]:
    """Select the first phase of task that is not completed.

    Phase-less tasks get the virtual "implementation" phase, which is always
    the last one. A task awaiting its commit gets its last phase again.
    Returns None when the task is done.
    """
    if not task.phases:
        return PhaseSelection(index=0, phase_id=VIRTUAL_PHASE_ID, is_last_phase=True)

    for index, phase in enumerate(task.phases):
        if not is_completed_status(phase.status):
            return _selection_at(task, index)
    if awaiting_commit(task):
        return _selection_at(task, len(task.phases) - 1)
    return None


def select_phase(task: StateTask, phase_id: str) -> Optional[PhaseSelection]:
    """Look up phase_id on task; the virtual phase only exists on phase-less tasks."""
    found = task.find_phase(phase_id)
    if found is not None:
        return _selection_at(task, found[0])
    if not task.phases and phase_id == VIRTUAL_PHASE_ID:
        return PhaseSelection(index=0, phase_id=VIRTUAL_PHASE_ID, is_last_phase=True)
    return None


def is_last_phase(index: int, phase_count: int) -> bool:
    return index + 1 >= phase_count


def blocked_tasks(plan: Plan, state: ExecutionState) -> list[BlockedTask]:
    """List incomplete tasks whose dependencies are not yet satisfied."""
    state_tasks = state.tasks_by_id()
    blocked = []
    for task in plan.tasks:
        state_task = state_tasks.get(task.id)
        if state_task is None or is_task_done(state_task):
            continue
        waiting_on = unmet_dependencies(task, state_tasks)
        if waiting_on:
            blocked.append(BlockedTask(task_id=task.id, waiting_on=waiting_on))
    return blocked
