"""Configuration models for Forge."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_INTERPRETERS = {
    ".mjs": "node",
    ".js": "node",
    ".cjs": "node",
    ".sh": "sh",
}


class TimeoutsConfig(BaseModel):
    """Hard timeouts for every external process the engine spawns."""

    hook_sec: int = Field(default=120, gt=0, description="Template hook timeout")
    check_default_sec: int = Field(
        default=600,
        gt=0,
        description="Phase check timeout when the check omits timeoutSec",
    )
    git_sec: int = Field(default=90, gt=0, description="Per git command timeout")


class HooksConfig(BaseModel):
    """Hook interpreter selection.

    Keys are file suffixes (including the dot). ``.py`` scripts always run with
    the current Python interpreter unless overridden here; unknown suffixes are
    executed directly.
    """

    interpreters: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_INTERPRETERS),
        description="Suffix to interpreter mapping",
    )


class GitConfig(BaseModel):
    """Git binary resolution."""

    binary: Optional[str] = Field(default=None, description="Explicit git binary")
    extra_path: list[str] = Field(
        default_factory=list,
        description="Directories prepended to PATH for hooks, checks and git",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    log_dir: Optional[Path] = Field(default=None, description="Log directory")
    rotation_mb: int = Field(default=10, description="Log rotation size (MB)")
    retention_days: int = Field(default=7, description="Log retention days")


class ForgeConfig(BaseModel):
    """Main configuration model."""

    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    workspaces: dict[str, Path] = Field(
        default_factory=dict,
        description="Registered workspace roots by id",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
