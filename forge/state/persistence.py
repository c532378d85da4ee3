"""Execution state persistence with atomic writes."""

import json
import logging
import os
import tempfile
from pathlib import Path

from ..tasks.schema import ExecutionState

logger = logging.getLogger(__name__)


def dump_state(state: ExecutionState) -> str:
    """Serialize state as pretty JSON, keeping keys the engine does not model."""
    return json.dumps(state.model_dump(mode="json", by_alias=True), indent=2) + "\n"


def save_state(state: ExecutionState, state_path: Path) -> None:
    """Save state to file with atomic write.

    Readers only ever see the previous or the new document.

    Args:
        state: State to save
        state_path: Destination path
    """
    state_path.parent.mkdir(parents=True, exist_ok=True)

    # Atomic write: temp file in the same directory -> fsync -> rename
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{state_path.name}.", suffix=".tmp", dir=state_path.parent
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_state(state))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, state_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    logger.debug("Saved state for plan %s to %s", state.plan_id, state_path)
