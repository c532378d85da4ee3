"""Async subprocess execution with hard timeouts.

Every child runs in its own session (POSIX) so that a timeout can take down
the whole process group, including grandchildren spawned by ``sh -lc``.
"""

import asyncio
import logging
import os
import shlex
import signal
import time
from pathlib import Path

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024
KILL_GRACE_SECONDS = 2.0
DRAIN_GRACE_SECONDS = 2.0
LOG_MAX_ARGS = 12
LOG_MAX_ARG_CHARS = 200


class SubprocessError(Exception):
    """The process could not be started."""

    pass


def describe_command(command: list[str]) -> str:
    """Shell-quoted command line, shortened for logs."""
    shown = [
        arg if len(arg) <= LOG_MAX_ARG_CHARS else arg[:LOG_MAX_ARG_CHARS] + "..."
        for arg in command[:LOG_MAX_ARGS]
    ]
    text = shlex.join(shown)
    if len(command) > LOG_MAX_ARGS:
        text += " ..."
    return text


def _send_signal(process: asyncio.subprocess.Process, force: bool) -> None:
    """Signal the process group, or just the process where groups don't exist."""
    if os.name == "nt":
        if force:
            process.kill()
        else:
            process.terminate()
        return

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        os.killpg(process.pid, sig)
    except PermissionError:
        process.send_signal(sig)


async def kill_process_tree(
    process: asyncio.subprocess.Process,
    grace_sec: float = KILL_GRACE_SECONDS,
) -> None:
    """SIGTERM the process group, then SIGKILL it if it is still alive."""
    for force in (False, True):
        if process.returncode is not None:
            return
        try:
            _send_signal(process, force)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=grace_sec)
            return
        except asyncio.TimeoutError:
            logger.debug(f"Process {process.pid} survived {'SIGKILL' if force else 'SIGTERM'}")

    logger.warning(f"Process {process.pid} did not exit after SIGKILL")


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while chunk := await stream.read(READ_CHUNK_BYTES):
        sink.extend(chunk)


class SubprocessManager:
    """Runs commands to completion under a fixed timeout."""

    def __init__(self, timeout_sec: float):
        """Initialize subprocess manager.

        Args:
            timeout_sec: Hard timeout applied to every run()
        """
        self.timeout_sec = timeout_sec

    async def _spawn(
        self,
        command: list[str],
        cwd: Path | None,
        env: dict[str, str] | None,
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                env=env,
                start_new_session=(os.name != "nt"),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            # Raised for a missing cwd as well as a missing executable.
            if cwd is not None and not Path(cwd).is_dir():
                raise SubprocessError(
                    f"Working directory not found: {cwd} (while running: {command[0]})"
                )
            raise SubprocessError(f"Command not found: {command[0]}")
        except OSError as e:
            raise SubprocessError(f"Failed to start {command[0]}: {e}")

    async def run(
        self,
        command: list[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> dict:
        """Run command with a hard timeout.

        stdout and stderr are captured separately and decoded lossily once
        the process is gone. On timeout the process group is killed and
        whatever was already read is returned.

        Args:
            command: Command and arguments
            cwd: Working directory
            env: Environment variables

        Returns:
            Result dict with keys:
                - success: bool
                - stdout: str
                - stderr: str
                - exit_code: int | None (None on timeout)
                - timed_out: bool
                - duration_ms: int

        Raises:
            SubprocessError: If the process cannot be started
        """
        logger.debug(f"Running command: {describe_command(command)}")
        started = time.monotonic()
        process = await self._spawn(command, cwd, env)

        stdout_bytes = bytearray()
        stderr_bytes = bytearray()
        readers = asyncio.gather(
            _drain(process.stdout, stdout_bytes),
            _drain(process.stderr, stderr_bytes),
        )

        timed_out = False
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.timeout_sec)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(
                    f"Command timed out after {self.timeout_sec}s: {describe_command(command)}"
                )
                await kill_process_tree(process)

            # Grandchildren holding the pipes open must not block us forever.
            try:
                await asyncio.wait_for(readers, timeout=DRAIN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.debug(f"Output pipes of {process.pid} still open; giving up on them")
        except asyncio.CancelledError:
            readers.cancel()
            await kill_process_tree(process)
            raise

        exit_code = None if timed_out else process.returncode
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        duration_ms = int((time.monotonic() - started) * 1000)

        logger.debug(
            f"Command finished: exit_code={exit_code} timed_out={timed_out} "
            f"duration_ms={duration_ms}"
        )
        return {
            "success": exit_code == 0,
            "stdout": stdout,
            "stderr": stderr,
            "exit_code": exit_code,
            "timed_out": timed_out,
            "duration_ms": duration_ms,
        }
