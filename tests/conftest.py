"""Shared fixtures: a throwaway workspace with an installed template."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

TEMPLATE_ID = "test-loop"

# Hooks are plain Python scripts run as `<python> <script> --context <file>`.
POST_PLAN_HOOK = """\
import json
import sys
from pathlib import Path

ctx = json.loads(Path(sys.argv[2]).read_text())
plan_dir = Path(ctx["planDir"])
with open(plan_dir / "hook-calls.log", "a") as f:
    f.write("post-plan\\n")

plan = json.loads(Path(ctx["planPath"]).read_text())
phases = json.loads((Path(ctx["templateRoot"]) / "phases.json").read_text())["phases"]
state = {
    "$schema": "state-v2",
    "plan_id": plan["id"],
    "iteration": 0,
    "tasks": [
        {
            "id": task["id"],
            "status": "pending",
            "attempts": 0,
            "phases": [{"id": phase["id"], "status": "pending"} for phase in phases],
        }
        for task in plan["tasks"]
    ],
}
Path(ctx["statePath"]).write_text(json.dumps(state, indent=2) + "\\n")
"""

PRE_EXECUTE_HOOK = """\
import json
import sys
from pathlib import Path

ctx = json.loads(Path(sys.argv[2]).read_text())
plan_dir = Path(ctx["planDir"])
with open(plan_dir / "hook-calls.log", "a") as f:
    f.write("pre-execute\\n")
plan = json.loads(Path(ctx["planPath"]).read_text())
Path(ctx["generatedPlanMdPath"]).write_text("# " + plan["goal"] + "\\n")
"""

POST_STEP_HOOK = """\
import json
import sys
from pathlib import Path

ctx = json.loads(Path(sys.argv[2]).read_text())
plan_dir = Path(ctx["planDir"])
with open(plan_dir / "hook-calls.log", "a") as f:
    f.write("post-step\\n")
counter = plan_dir / ".prompt-count"
count = int(counter.read_text()) + 1 if counter.exists() else 1
counter.write_text(str(count))
Path(ctx["generatedExecutePromptPath"]).write_text(
    "prompt #%d for %s on %s\\n" % (count, ctx["planId"], ctx["todayIso"])
)
"""

DEFAULT_PHASES = [
    {"id": "implement", "checks": ["true"]},
    {"id": "verify", "checks": [{"id": "unit", "title": "Unit tests", "command": "true"}]},
]


class Workspace:
    """Builder and inspector for a test workspace."""

    def __init__(self, root: Path):
        self.root = root
        self.template_root = root / ".agent" / "templates" / TEMPLATE_ID

    def install_template(self, phases: list | None = None, manifest: dict | None = None) -> None:
        agent = self.root / ".agent"
        scripts = self.template_root / "scripts"
        scripts.mkdir(parents=True, exist_ok=True)

        lock = {
            "schema": "forge-template-lock-v1",
            "installedTemplateId": TEMPLATE_ID,
            "installedTemplateVersion": "1.0.0",
            "installedAtIso": "2026-01-01T00:00:00Z",
            "installedFiles": [],
        }
        (agent / "template-lock.json").write_text(json.dumps(lock))

        (scripts / "post-plan.py").write_text(POST_PLAN_HOOK)
        (scripts / "pre-execute.py").write_text(PRE_EXECUTE_HOOK)
        (scripts / "post-step.py").write_text(POST_STEP_HOOK)
        (self.template_root / "prompts").mkdir(exist_ok=True)
        (self.template_root / "prompts" / "execute.md").write_text("Do the work.\n")

        manifest = manifest or {
            "schema": "forge-template-v1",
            "id": TEMPLATE_ID,
            "title": "Test loop",
            "version": "1.0.0",
            "files": [],
            "entrypoints": {
                "phases": "phases.json",
                "executePrompt": "prompts/execute.md",
                "hooks": {
                    "postPlan": "scripts/post-plan.py",
                    "preExecute": "scripts/pre-execute.py",
                    "postStep": "scripts/post-step.py",
                },
            },
        }
        (self.template_root / "template.json").write_text(json.dumps(manifest))
        self.write_phases(phases if phases is not None else DEFAULT_PHASES)

    def write_phases(self, phases: list) -> None:
        payload = {"schema": "forge-phases-v1", "phases": phases}
        (self.template_root / "phases.json").write_text(json.dumps(payload))

    def write_hook(self, name: str, source: str) -> None:
        (self.template_root / "scripts" / name).write_text(source)

    def plan_dir(self, plan_id: str) -> Path:
        return self.root / "plans" / plan_id

    def write_plan(self, plan_id: str, tasks: list[dict], goal: str = "Ship it") -> Path:
        plan_dir = self.plan_dir(plan_id)
        plan_dir.mkdir(parents=True, exist_ok=True)
        plan = {"$schema": "plan-v1", "id": plan_id, "goal": goal, "tasks": tasks}
        path = plan_dir / "plan.json"
        path.write_text(json.dumps(plan, indent=2))
        return path

    def write_state(self, plan_id: str, tasks: list[dict], **extra) -> Path:
        plan_dir = self.plan_dir(plan_id)
        plan_dir.mkdir(parents=True, exist_ok=True)
        state = {"$schema": "state-v2", "plan_id": plan_id, "tasks": tasks, **extra}
        path = plan_dir / "state.json"
        path.write_text(json.dumps(state, indent=2))
        return path

    def read_state(self, plan_id: str) -> dict:
        return json.loads((self.plan_dir(plan_id) / "state.json").read_text())

    def hook_calls(self, plan_id: str) -> list[str]:
        log = self.plan_dir(plan_id) / "hook-calls.log"
        if not log.exists():
            return []
        return log.read_text().split()

    def init_git(self) -> None:
        for args in (
            ["init", "-q"],
            ["config", "user.email", "forge@example.com"],
            ["config", "user.name", "Forge Tests"],
            ["config", "commit.gpgsign", "false"],
        ):
            subprocess.run(["git", *args], cwd=self.root, check=True)

    def git_log(self) -> list[str]:
        result = subprocess.run(
            ["git", "log", "--format=%H %s"],
            cwd=self.root,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            return []
        return result.stdout.splitlines()


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """Workspace with the test template installed."""
    ws = Workspace(tmp_path / "ws")
    ws.root.mkdir()
    ws.install_template()
    return ws


@pytest.fixture
def bare_workspace(tmp_path: Path) -> Workspace:
    """Workspace without any template."""
    ws = Workspace(tmp_path / "bare")
    ws.root.mkdir()
    return ws
