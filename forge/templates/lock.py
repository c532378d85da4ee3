"""Reader for the workspace template lock record."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InvalidJson

logger = logging.getLogger(__name__)

LOCK_SCHEMA = "forge-template-lock-v1"


def agent_dir(workspace_root: Path) -> Path:
    return workspace_root / ".agent"


def lock_path(workspace_root: Path) -> Path:
    return agent_dir(workspace_root) / "template-lock.json"


def templates_dir(workspace_root: Path) -> Path:
    return agent_dir(workspace_root) / "templates"


class TemplateLock(BaseModel):
    """Which template is installed in a workspace, and when."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_tag: str = Field(alias="schema", description="Lock schema tag")
    installed_template_id: str = Field(alias="installedTemplateId")
    installed_template_version: str = Field(default="", alias="installedTemplateVersion")
    installed_at_iso: str = Field(default="", alias="installedAtIso")
    installed_files: list[str] = Field(default_factory=list, alias="installedFiles")


def read_installed_template_lock(workspace_root: Path) -> Optional[TemplateLock]:
    """Read .agent/template-lock.json.

    Args:
        workspace_root: Workspace root directory

    Returns:
        The parsed lock, or None when no template is installed

    Raises:
        InvalidJson: If the lock file exists but cannot be parsed
    """
    path = lock_path(workspace_root)
    if not path.exists():
        logger.debug("No template lock at %s", path)
        return None

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return TemplateLock.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise InvalidJson(f"Invalid JSON in {path}: {e}")
