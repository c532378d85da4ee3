"""Identifier validation and execution path resolution.

Resolution reads the template lock and manifest but never writes anything.
"""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import (
    InvalidIdentifier,
    NoTemplateInstalled,
    TemplateMissing,
    UnsafePath,
    UnsupportedSchema,
)
from ..tasks.schema import read_json_file
from .lock import read_installed_template_lock, templates_dir

logger = logging.getLogger(__name__)

TEMPLATE_SCHEMA = "forge-template-v1"
MAX_ID_LENGTH = 64
SLUG_PATTERN = "^[a-z0-9][a-z0-9-]*[a-z0-9]$"


def _is_lower_alnum(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("0" <= ch <= "9")


def validate_slug(value: str, field_name: str = "planId") -> str:
    """Validate a slug identifier and return it trimmed.

    Args:
        value: Raw identifier
        field_name: Name used in error messages

    Returns:
        The trimmed identifier

    Raises:
        InvalidIdentifier: If the identifier is empty, too long or malformed
    """
    slug = (value or "").strip()
    if not slug:
        raise InvalidIdentifier(f"{field_name} is required")
    if len(slug) > MAX_ID_LENGTH:
        raise InvalidIdentifier(f"{field_name} is too long")
    if not _is_lower_alnum(slug[0]) or not _is_lower_alnum(slug[-1]):
        raise InvalidIdentifier(f"{field_name} must start and end with [a-z0-9]")
    for ch in slug:
        if not (_is_lower_alnum(ch) or ch == "-"):
            raise InvalidIdentifier(f"{field_name} must match {SLUG_PATTERN}")
    return slug


def validate_plan_id(plan_id: str) -> str:
    return validate_slug(plan_id, "planId")


def validate_relative_file_path(rel: str) -> Path:
    """Validate a template-relative entrypoint path.

    Raises:
        UnsafePath: If the path is empty, absolute or contains '..'
    """
    trimmed = (rel or "").strip()
    if not trimmed:
        raise UnsafePath("template file path is empty")

    # Reject absolute forms of either flavour regardless of the host platform.
    posix = PurePosixPath(trimmed)
    windows = PureWindowsPath(trimmed)
    if posix.is_absolute() or windows.is_absolute() or windows.drive or windows.root:
        raise UnsafePath(f"template file path must be relative: {trimmed}")
    if ".." in posix.parts or ".." in windows.parts:
        raise UnsafePath(f"template file path may not use '..': {trimmed}")

    return Path(posix)


class TemplateHooks(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    post_plan: str = Field(alias="postPlan")
    pre_execute: str = Field(alias="preExecute")
    post_step: str = Field(alias="postStep")


class TemplateEntrypoints(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    phases: str
    execute_prompt: str = Field(alias="executePrompt")
    hooks: TemplateHooks
    plan_prompt: Optional[str] = Field(default=None, alias="planPrompt")
    plan_schema: Optional[str] = Field(default=None, alias="planSchema")
    state_schema: Optional[str] = Field(default=None, alias="stateSchema")
    required_skills: list[str] = Field(default_factory=list, alias="requiredSkills")


class TemplateManifest(BaseModel):
    """Parsed template.json."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_tag: str = Field(alias="schema")
    id: Optional[str] = None
    title: Optional[str] = None
    version: Optional[str] = None
    files: list[str] = Field(default_factory=list)
    entrypoints: TemplateEntrypoints


def read_template_manifest(template_root: Path) -> TemplateManifest:
    """Load template.json from template_root and check its schema tag.

    Raises:
        InvalidJson: If the manifest is unreadable or has the wrong shape
        UnsupportedSchema: If the schema tag is not forge-template-v1
    """
    manifest = read_json_file(template_root / "template.json", TemplateManifest)
    if manifest.schema_tag.strip() != TEMPLATE_SCHEMA:
        raise UnsupportedSchema(
            f"Unsupported template.json schema (expected {TEMPLATE_SCHEMA}): "
            f"{manifest.schema_tag}"
        )
    return manifest


@dataclass(frozen=True)
class ExecutionPaths:
    """Every location the engine touches for one plan."""

    plan_id: str
    workspace_root: Path
    template_root: Path
    plan_dir: Path
    plan_path: Path
    state_path: Path
    progress_path: Path
    generated_plan_md_path: Path
    generated_execute_prompt_path: Path
    phases_path: Path
    post_plan_hook_path: Path
    pre_execute_hook_path: Path
    post_step_hook_path: Path


def resolve_execution_paths(workspace_root: Path, plan_id: str) -> ExecutionPaths:
    """Resolve the path bundle for plan_id inside workspace_root.

    Args:
        workspace_root: Workspace root directory
        plan_id: Plan identifier (trimmed before validation)

    Returns:
        ExecutionPaths for the plan

    Raises:
        InvalidIdentifier: Bad plan id
        NoTemplateInstalled: No lock record
        TemplateMissing: Installed template folder is gone or belongs to another template
        UnsupportedSchema: Manifest schema tag mismatch
        UnsafePath: An entrypoint escapes the template root
        InvalidJson: Lock or manifest unreadable
    """
    workspace_root = Path(workspace_root)
    normalized_id = validate_plan_id(plan_id)

    lock = read_installed_template_lock(workspace_root)
    if lock is None:
        raise NoTemplateInstalled("No Forge template installed.")

    template_id = validate_slug(lock.installed_template_id, "installedTemplateId")
    template_root = templates_dir(workspace_root) / template_id
    if not template_root.is_dir():
        raise TemplateMissing("Installed Forge template folder is missing.")

    manifest = read_template_manifest(template_root)
    if manifest.id is not None and manifest.id.strip() != template_id:
        raise TemplateMissing(
            f"Installed Forge template mismatch: lock names {template_id}, "
            f"template.json declares {manifest.id}"
        )
    entrypoints = manifest.entrypoints
    phases_rel = validate_relative_file_path(entrypoints.phases)
    validate_relative_file_path(entrypoints.execute_prompt)
    post_plan_rel = validate_relative_file_path(entrypoints.hooks.post_plan)
    pre_execute_rel = validate_relative_file_path(entrypoints.hooks.pre_execute)
    post_step_rel = validate_relative_file_path(entrypoints.hooks.post_step)

    plan_dir = workspace_root / "plans" / normalized_id
    logger.debug(
        "Resolved plan %s with template %s at %s",
        normalized_id,
        template_id,
        template_root,
    )

    return ExecutionPaths(
        plan_id=normalized_id,
        workspace_root=workspace_root,
        template_root=template_root,
        plan_dir=plan_dir,
        plan_path=plan_dir / "plan.json",
        state_path=plan_dir / "state.json",
        progress_path=plan_dir / "progress.md",
        generated_plan_md_path=plan_dir / "plan.md",
        generated_execute_prompt_path=plan_dir / "execute-prompt.md",
        phases_path=template_root / phases_rel,
        post_plan_hook_path=template_root / post_plan_rel,
        pre_execute_hook_path=template_root / pre_execute_rel,
        post_step_hook_path=template_root / post_step_rel,
    )
