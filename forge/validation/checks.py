"""Phase check parsing and execution."""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..utils.git import subprocess_env
from ..utils.subprocess import SubprocessError, SubprocessManager

logger = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS_DEFAULT = 600
TIMEOUT_EXIT_CODE = 124
MALFORMED_EXIT_CODE = 2
SPAWN_FAILED_EXIT_CODE = -1


class PhaseCheckResult(BaseModel):
    """Outcome of one check (or of the commit step)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    exit_code: int = Field(alias="exitCode")
    duration_ms: int = Field(default=0, alias="durationMs")
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = Field(default=False, alias="timedOut")

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class RunnableCheck:
    """A well-formed check ready to execute."""

    id: str
    title: str
    command: str
    timeout_sec: int = CHECK_TIMEOUT_SECONDS_DEFAULT


ParsedCheck = Union[RunnableCheck, PhaseCheckResult]


def _malformed(check_id: str, title: str, message: str) -> PhaseCheckResult:
    return PhaseCheckResult(
        id=check_id,
        title=title,
        exit_code=MALFORMED_EXIT_CODE,
        duration_ms=0,
        stderr=message,
    )


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_checks(
    raw_checks: list[Any],
    default_timeout_sec: int = CHECK_TIMEOUT_SECONDS_DEFAULT,
) -> list[ParsedCheck]:
    """Turn raw phase check entries into runnable checks.

    A string entry is a bare command. An object entry carries ``command`` and
    optionally ``id``, ``title`` and ``timeoutSec``. Malformed entries become
    failing results (exit code 2) in place, so no process is spawned for them.

    Args:
        raw_checks: Entries from the phases file
        default_timeout_sec: Timeout when an entry has no valid timeoutSec

    Returns:
        One RunnableCheck or PhaseCheckResult per entry, in order
    """
    parsed: list[ParsedCheck] = []
    for index, raw in enumerate(raw_checks):
        fallback_id = f"check-{index + 1}"

        if isinstance(raw, str):
            command = raw.strip()
            if not command:
                parsed.append(
                    _malformed(fallback_id, fallback_id, "Phase check command is empty.")
                )
                continue
            parsed.append(
                RunnableCheck(
                    id=fallback_id,
                    title=fallback_id,
                    command=command,
                    timeout_sec=default_timeout_sec,
                )
            )
            continue

        if not isinstance(raw, dict):
            parsed.append(
                _malformed(
                    fallback_id,
                    fallback_id,
                    "Invalid phase check entry: expected string or object.",
                )
            )
            continue

        check_id = _non_empty_str(raw.get("id")) or fallback_id
        title = _non_empty_str(raw.get("title")) or check_id
        command = _non_empty_str(raw.get("command"))
        if command is None:
            parsed.append(
                _malformed(
                    check_id,
                    title,
                    "Phase check object is missing a non-empty command field.",
                )
            )
            continue

        timeout_sec = raw.get("timeoutSec")
        # bool is an int subclass; true/false are not timeouts
        if not isinstance(timeout_sec, int) or isinstance(timeout_sec, bool) or timeout_sec <= 0:
            timeout_sec = default_timeout_sec

        parsed.append(
            RunnableCheck(id=check_id, title=title, command=command, timeout_sec=timeout_sec)
        )
    return parsed


def shell_command(command: str) -> list[str]:
    """Wrap command for the platform shell."""
    if os.name == "nt":
        return ["cmd", "/C", command]
    return ["sh", "-lc", command]


def batch_ok(results: list[PhaseCheckResult]) -> bool:
    return all(result.passed for result in results)


class CheckRunner:
    """Run phase checks sequentially inside a workspace."""

    def __init__(self, workspace_root: Path, extra_paths: list[str] | None = None):
        """Initialize check runner.

        Args:
            workspace_root: Working directory for every check
            extra_paths: Extra PATH directories
        """
        self.workspace_root = workspace_root
        self.extra_paths = extra_paths or []

    async def run_check(self, check: RunnableCheck) -> PhaseCheckResult:
        """Run one check; failures are reported in the result, never raised."""
        logger.info(f"Running check {check.id}: {check.command}")
        start = time.monotonic()
        manager = SubprocessManager(timeout_sec=check.timeout_sec)

        try:
            result = await manager.run(
                shell_command(check.command),
                cwd=self.workspace_root,
                env=subprocess_env(self.extra_paths),
            )
        except SubprocessError as e:
            logger.warning(f"Check {check.id} could not start: {e}")
            return PhaseCheckResult(
                id=check.id,
                title=check.title,
                exit_code=SPAWN_FAILED_EXIT_CODE,
                duration_ms=int((time.monotonic() - start) * 1000),
                stderr=f"Failed to run phase check command: {e}",
            )

        if result["timed_out"]:
            logger.warning(f"Check {check.id} timed out after {check.timeout_sec}s")
            return PhaseCheckResult(
                id=check.id,
                title=check.title,
                exit_code=TIMEOUT_EXIT_CODE,
                duration_ms=result["duration_ms"],
                stdout=result["stdout"],
                stderr=f"Phase check timed out after {check.timeout_sec}s.",
                timed_out=True,
            )

        exit_code = result["exit_code"]
        if exit_code is None:
            exit_code = SPAWN_FAILED_EXIT_CODE
        elif exit_code < 0:
            # killed by a signal (asyncio reports -signum)
            exit_code = SPAWN_FAILED_EXIT_CODE

        logger.info(f"Check {check.id} exited with {exit_code} in {result['duration_ms']}ms")
        return PhaseCheckResult(
            id=check.id,
            title=check.title,
            exit_code=exit_code,
            duration_ms=result["duration_ms"],
            stdout=result["stdout"],
            stderr=result["stderr"],
        )

    async def run_checks(self, parsed: list[ParsedCheck]) -> list[PhaseCheckResult]:
        """Run parsed checks in order; malformed entries pass through as-is."""
        results = []
        for item in parsed:
            if isinstance(item, PhaseCheckResult):
                logger.warning(f"Skipping malformed check {item.id}: {item.stderr}")
                results.append(item)
                continue
            results.append(await self.run_check(item))
        return results
