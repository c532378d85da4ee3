"""Workspace id to filesystem root registry."""

import logging
from pathlib import Path

from ..errors import ForgeError
from .models import ForgeConfig

logger = logging.getLogger(__name__)


class UnknownWorkspace(ForgeError):
    """Workspace id is not registered."""

    pass


class WorkspaceRegistry:
    """Resolves workspace identifiers to absolute roots."""

    def __init__(self, workspaces: dict[str, Path] | None = None):
        self._workspaces: dict[str, Path] = {}
        for workspace_id, root in (workspaces or {}).items():
            self.register(workspace_id, root)

    @classmethod
    def from_config(cls, config: ForgeConfig) -> "WorkspaceRegistry":
        return cls(config.workspaces)

    def register(self, workspace_id: str, root: Path) -> None:
        workspace_id = workspace_id.strip()
        if not workspace_id:
            raise ForgeError("workspaceId is required")
        self._workspaces[workspace_id] = Path(root).expanduser().resolve()

    def ids(self) -> list[str]:
        return sorted(self._workspaces)

    def resolve(self, workspace_id: str) -> Path:
        """Return the root for workspace_id.

        Raises:
            UnknownWorkspace: If the id is not registered
            ForgeError: If the registered root is not a directory
        """
        key = (workspace_id or "").strip()
        if not key:
            raise ForgeError("workspaceId is required")
        root = self._workspaces.get(key)
        if root is None:
            raise UnknownWorkspace(f"Unknown workspaceId: {key}")
        if not root.is_dir():
            raise ForgeError(f"Workspace root is not a directory: {root}")
        logger.debug("Resolved workspace %s -> %s", key, root)
        return root
