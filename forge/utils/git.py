"""Git operations wrapper and git-aware subprocess environment."""

import logging
import os
import shutil
from pathlib import Path

from ..errors import GitCommandFailed, GitTimedOut
from .subprocess import SubprocessError, SubprocessManager

logger = logging.getLogger(__name__)

GIT_COMMAND_TIMEOUT_SECONDS = 90

# GUI launchers often start with a minimal PATH that misses package-manager bins.
COMMON_BIN_DIRS = [
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
]


def git_env_path(extra_paths: list[str] | None = None) -> str:
    """Build the PATH used for every hook, check and git subprocess.

    Args:
        extra_paths: Directories to prepend (from configuration)

    Returns:
        os.pathsep-joined PATH without duplicates
    """
    entries: list[str] = []
    for raw in (extra_paths or []) + os.environ.get("PATH", "").split(os.pathsep):
        if raw and raw not in entries:
            entries.append(raw)
    if os.name != "nt":
        for raw in COMMON_BIN_DIRS:
            if raw not in entries and Path(raw).is_dir():
                entries.append(raw)
    return os.pathsep.join(entries)


def subprocess_env(extra_paths: list[str] | None = None) -> dict[str, str]:
    """Return a copy of the current environment with the git-aware PATH."""
    env = dict(os.environ)
    env["PATH"] = git_env_path(extra_paths)
    return env


def resolve_git_binary(
    configured: str | None = None,
    extra_paths: list[str] | None = None,
) -> str:
    """Locate the git executable.

    Args:
        configured: Explicit binary path or name from configuration
        extra_paths: Extra PATH directories to search

    Returns:
        Absolute path to git

    Raises:
        GitCommandFailed: If git cannot be found
    """
    candidate = configured or "git"
    if os.path.isabs(candidate):
        if Path(candidate).is_file():
            return candidate
        raise GitCommandFailed(f"Failed to resolve git binary: {candidate} does not exist")

    resolved = shutil.which(candidate, path=git_env_path(extra_paths))
    if not resolved:
        raise GitCommandFailed(f"Failed to resolve git binary: {candidate} not found on PATH")
    return resolved


class GitOps:
    """Git operations wrapper."""

    def __init__(
        self,
        repo_root: Path,
        timeout_sec: float = GIT_COMMAND_TIMEOUT_SECONDS,
        git_binary: str | None = None,
        extra_paths: list[str] | None = None,
    ):
        """Initialize Git operations.

        Args:
            repo_root: Repository root directory
            timeout_sec: Timeout applied to each git invocation
            git_binary: Explicit git binary (resolved from PATH when None)
            extra_paths: Extra PATH directories for the git environment
        """
        self.repo_root = repo_root
        self.timeout_sec = timeout_sec
        self.git_binary = git_binary
        self.extra_paths = extra_paths or []
        self.manager = SubprocessManager(timeout_sec=timeout_sec)

    async def run_git(self, args: list[str], check: bool = True) -> dict:
        """Run git command.

        Args:
            args: Git arguments
            check: Whether to raise on a non-zero exit code

        Returns:
            Result dict from SubprocessManager.run

        Raises:
            GitCommandFailed: Git missing, not startable, or failed with check=True
            GitTimedOut: Git did not finish in time
        """
        git = resolve_git_binary(self.git_binary, self.extra_paths)
        command = [git] + args
        try:
            result = await self.manager.run(
                command,
                cwd=self.repo_root,
                env=subprocess_env(self.extra_paths),
            )
        except SubprocessError as e:
            raise GitCommandFailed(f"Failed to run git command {args}: {e}")

        if result["timed_out"]:
            raise GitTimedOut(f"Git command timed out after {self.timeout_sec}s: {args}")

        if check and not result["success"]:
            detail = (result["stderr"].strip() or result["stdout"].strip())
            raise GitCommandFailed(f"Git command failed: {' '.join(args)}\n{detail}")

        return result

    async def add_all(self) -> dict:
        """Stage every change in the working tree."""
        return await self.run_git(["add", "-A"], check=False)

    async def commit(self, message: str) -> dict:
        """Commit staged changes.

        Args:
            message: Commit message

        Returns:
            Result dict (not checked; caller inspects success)
        """
        return await self.run_git(["commit", "-m", message], check=False)

    async def rev_parse_head(self) -> dict:
        """Resolve HEAD to a commit hash."""
        return await self.run_git(["rev-parse", "HEAD"], check=False)
