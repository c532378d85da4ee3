"""Phase and task status transitions after a check batch."""

import logging
from pathlib import Path
from typing import Optional, Union

from ..errors import ForgeError
from ..executor.commit import task_has_commit_sha
from ..scheduler.selection import is_task_completed
from ..tasks.schema import ExecutionState, StatePhase, StateTask, Status
from .persistence import save_state

logger = logging.getLogger(__name__)


class StateTransitionError(ForgeError):
    """Invalid status transition."""

    pass


def parse_status(raw: Optional[str]) -> Status:
    """Map a stored status string to Status; blank or unknown counts as pending."""
    value = (raw or "").strip()
    for status in Status:
        if status.value == value:
            return status
    return Status.PENDING


class ExecutionMachine:
    """Applies check outcomes to one plan's execution state."""

    # Nothing ever moves back to pending.
    TRANSITIONS = {
        Status.PENDING: [Status.PENDING, Status.IN_PROGRESS, Status.COMPLETED],
        Status.IN_PROGRESS: [Status.IN_PROGRESS, Status.COMPLETED],
        Status.COMPLETED: [Status.COMPLETED, Status.IN_PROGRESS],
    }

    def __init__(self, state: ExecutionState, state_path: Path):
        """Initialize state machine.

        Args:
            state: Loaded execution state (mutated in place)
            state_path: Where save() writes it
        """
        self.state = state
        self.state_path = state_path

    def can_transition(self, current: Status, new: Status) -> bool:
        return new in self.TRANSITIONS.get(current, [])

    def _set_status(
        self,
        item: Union[StateTask, StatePhase],
        new: Status,
        label: str,
    ) -> None:
        current = parse_status(item.status)
        if not self.can_transition(current, new):
            raise StateTransitionError(
                f"Invalid transition for {label} from {current.value} to {new.value}"
            )
        if item.status != new.value:
            logger.info(f"{label}: {item.status or 'pending'} -> {new.value}")
        item.status = new.value

    def apply_check_outcome(
        self,
        task: StateTask,
        phase: Optional[StatePhase],
        is_last_phase: bool,
        checks_ok: bool,
    ) -> bool:
        """Update statuses after a check batch on one phase.

        Args:
            task: Task the batch ran for
            phase: Phase the batch ran for, None for the virtual phase of a
                phase-less task
            is_last_phase: Whether phase is the task's last phase
            checks_ok: Whether every check passed

        Returns:
            True when the task is finished and still needs its commit
        """
        task_label = f"task {task.id}"

        if not checks_ok:
            if phase is not None:
                self._set_status(phase, Status.IN_PROGRESS, f"{task_label} phase {phase.id}")
            self._set_status(task, Status.IN_PROGRESS, task_label)
            return False

        if phase is not None:
            self._set_status(phase, Status.COMPLETED, f"{task_label} phase {phase.id}")

        if not is_last_phase:
            self._set_status(task, Status.IN_PROGRESS, task_label)
            return False

        # An earlier phase may have been reopened by a hook.
        if phase is not None and not is_task_completed(task):
            self._set_status(task, Status.IN_PROGRESS, task_label)
            return False

        if task_has_commit_sha(task):
            self._set_status(task, Status.COMPLETED, task_label)
            return False

        return True

    def apply_commit_outcome(self, task: StateTask, committed: bool) -> None:
        """Finish the task after a commit attempt."""
        if committed:
            self._set_status(task, Status.COMPLETED, f"task {task.id}")
        else:
            # phases stay completed; the last phase is handed out again for the commit
            self._set_status(task, Status.IN_PROGRESS, f"task {task.id}")

    def save(self) -> None:
        save_state(self.state, self.state_path)
