"""Unit tests for identifier validation and path resolution."""

import json
import shutil

import pytest

from forge.errors import (
    InvalidIdentifier,
    InvalidJson,
    NoTemplateInstalled,
    TemplateMissing,
    UnsafePath,
    UnsupportedSchema,
)
from forge.templates.lock import read_installed_template_lock
from forge.templates.paths import (
    resolve_execution_paths,
    validate_plan_id,
    validate_relative_file_path,
)


@pytest.mark.parametrize("plan_id", ["a1", "demo", "my-plan-2", "0-9", "x" * 64])
def test_valid_plan_ids_accepted(plan_id):
    assert validate_plan_id(plan_id) == plan_id


def test_plan_id_is_trimmed():
    assert validate_plan_id("  demo  ") == "demo"


@pytest.mark.parametrize(
    "plan_id, message",
    [
        ("", "planId is required"),
        ("   ", "planId is required"),
        ("x" * 65, "planId is too long"),
        ("-demo", "planId must start and end with [a-z0-9]"),
        ("demo-", "planId must start and end with [a-z0-9]"),
        ("Demo", "planId must start and end with [a-z0-9]"),
        ("de_mo", "planId must match ^[a-z0-9][a-z0-9-]*[a-z0-9]$"),
        ("deMo", "planId must match ^[a-z0-9][a-z0-9-]*[a-z0-9]$"),
        ("de mo", "planId must match ^[a-z0-9][a-z0-9-]*[a-z0-9]$"),
    ],
)
def test_invalid_plan_ids_rejected(plan_id, message):
    with pytest.raises(InvalidIdentifier) as exc:
        validate_plan_id(plan_id)
    assert str(exc.value) == message


def test_single_character_plan_id_accepted():
    assert validate_plan_id("a") == "a"


@pytest.mark.parametrize("rel", ["phases.json", "scripts/post-step.mjs", "./a/b.json"])
def test_relative_paths_accepted(rel):
    assert not validate_relative_file_path(rel).is_absolute()


@pytest.mark.parametrize(
    "rel, fragment",
    [
        ("", "template file path is empty"),
        ("/etc/passwd", "must be relative"),
        ("C:\\tmp\\x.json", "must be relative"),
        ("../outside.json", "may not use '..'"),
        ("scripts/../../x.sh", "may not use '..'"),
    ],
)
def test_unsafe_paths_rejected(rel, fragment):
    with pytest.raises(UnsafePath) as exc:
        validate_relative_file_path(rel)
    assert fragment in str(exc.value)


def test_resolve_builds_plan_paths(workspace):
    paths = resolve_execution_paths(workspace.root, " demo ")

    assert paths.plan_id == "demo"
    assert paths.template_root == workspace.template_root
    assert paths.plan_dir == workspace.root / "plans" / "demo"
    assert paths.plan_path.name == "plan.json"
    assert paths.state_path.name == "state.json"
    assert paths.progress_path.name == "progress.md"
    assert paths.generated_plan_md_path.name == "plan.md"
    assert paths.generated_execute_prompt_path.name == "execute-prompt.md"
    assert paths.phases_path == workspace.template_root / "phases.json"
    assert paths.post_step_hook_path == workspace.template_root / "scripts" / "post-step.py"


def test_resolve_does_not_touch_filesystem(workspace):
    resolve_execution_paths(workspace.root, "demo")
    assert not (workspace.root / "plans").exists()


def test_resolve_without_lock(bare_workspace):
    with pytest.raises(NoTemplateInstalled, match="No Forge template installed."):
        resolve_execution_paths(bare_workspace.root, "demo")


def test_resolve_with_missing_template_folder(workspace):
    shutil.rmtree(workspace.template_root)

    with pytest.raises(TemplateMissing, match="Installed Forge template folder is missing."):
        resolve_execution_paths(workspace.root, "demo")


def test_resolve_rejects_foreign_manifest_schema(workspace):
    manifest_path = workspace.template_root / "template.json"
    manifest = json.loads(manifest_path.read_text())
    manifest["schema"] = "forge-template-v2"
    manifest_path.write_text(json.dumps(manifest))

    with pytest.raises(UnsupportedSchema, match="expected forge-template-v1"):
        resolve_execution_paths(workspace.root, "demo")


def test_resolve_rejects_escaping_hook(workspace):
    manifest_path = workspace.template_root / "template.json"
    manifest = json.loads(manifest_path.read_text())
    manifest["entrypoints"]["hooks"]["postStep"] = "../../evil.py"
    manifest_path.write_text(json.dumps(manifest))

    with pytest.raises(UnsafePath):
        resolve_execution_paths(workspace.root, "demo")


def test_resolve_rejects_invalid_plan_id_before_reading_lock(bare_workspace):
    with pytest.raises(InvalidIdentifier):
        resolve_execution_paths(bare_workspace.root, "Bad_Id")


def test_lock_reader(workspace, bare_workspace):
    lock = read_installed_template_lock(workspace.root)
    assert lock.installed_template_id == "test-loop"
    assert lock.schema_tag == "forge-template-lock-v1"
    assert read_installed_template_lock(bare_workspace.root) is None


def test_lock_reader_rejects_garbage(workspace):
    (workspace.root / ".agent" / "template-lock.json").write_text("{not json")
    with pytest.raises(InvalidJson):
        read_installed_template_lock(workspace.root)


def test_resolve_rejects_traversing_template_id(workspace):
    lock_file = workspace.root / ".agent" / "template-lock.json"
    lock = json.loads(lock_file.read_text())
    lock["installedTemplateId"] = "../escape"
    lock_file.write_text(json.dumps(lock))

    with pytest.raises(InvalidIdentifier, match="installedTemplateId"):
        resolve_execution_paths(workspace.root, "demo")


def test_resolve_rejects_manifest_for_another_template(workspace):
    manifest_path = workspace.template_root / "template.json"
    manifest = json.loads(manifest_path.read_text())
    manifest["id"] = "someone-else"
    manifest_path.write_text(json.dumps(manifest))

    with pytest.raises(TemplateMissing, match="template.json declares someone-else"):
        resolve_execution_paths(workspace.root, "demo")
