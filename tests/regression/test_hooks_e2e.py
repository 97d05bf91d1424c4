#!/usr/bin/env python3
"""End-to-end tests for the damage-control hook scripts.

Pipes the JSON that Claude Code sends to a PreToolUse hook into each
script and checks the protocol:
1. ALLOW: exit 0, no output
2. ASK: exit 0, permissionDecision JSON on stdout
3. BLOCK: exit 2, "SECURITY: ..." on stderr
4. Malformed input: exit 1, "Error: ..." on stderr
"""

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

SCRIPTS_DIR = _bootstrap._REPO_ROOT / "hooks" / "scripts"
BASH_HOOK = str(SCRIPTS_DIR / "bash_damage_control.py")
EDIT_HOOK = str(SCRIPTS_DIR / "edit_damage_control.py")
WRITE_HOOK = str(SCRIPTS_DIR / "write_damage_control.py")

E2E_CONFIG = {
    "bashToolPatterns": [
        {"pattern": r"\brm\s+-[a-zA-Z]*r[a-zA-Z]*f[a-zA-Z]*\s+/(\s|$)", "reason": "rm -rf on root"},
        {"pattern": r"\brm\s+-[a-zA-Z]*[rR]", "reason": "recursive delete", "ask": True},
    ],
    "zeroAccessPaths": [".env", "*.pem"],
    "readOnlyPaths": ["package-lock.json"],
    "noDeletePaths": ["README.md"],
}


@pytest.fixture
def hook_env(tmp_path):
    """Isolated project dir + HOME with the e2e config installed."""
    project = tmp_path / "project"
    config_dir = project / ".claude" / "damage-control"
    config_dir.mkdir(parents=True)
    (config_dir / "config.json").write_text(json.dumps(E2E_CONFIG))
    home = tmp_path / "home"
    home.mkdir()

    env = os.environ.copy()
    for name in ("CLAUDE_PLUGIN_ROOT", "CLAUDE_HOOK_DRY_RUN", "CLAUDE_DISABLE_HOOKS"):
        env.pop(name, None)
    env["CLAUDE_PROJECT_DIR"] = str(project)
    env["HOME"] = str(home)
    return env


def run_hook(script, payload, env):
    """Pipe payload (dict or raw string) to a hook script."""
    stdin = payload if isinstance(payload, str) else json.dumps(payload)
    return subprocess.run(
        [sys.executable, script],
        input=stdin,
        capture_output=True,
        text=True,
        timeout=30,
        env=env,
    )


def bash(command):
    return {"tool_name": "Bash", "tool_input": {"command": command}}


def write(file_path):
    return {"tool_name": "Write", "tool_input": {"file_path": file_path, "content": "x"}}


# ============================================================
# Bash Hook
# ============================================================


class TestBashHook:
    def test_allow_is_silent(self, hook_env):
        result = run_hook(BASH_HOOK, bash("ls -la"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""
        assert result.stderr == ""

    def test_block(self, hook_env):
        result = run_hook(BASH_HOOK, bash("rm -rf /"), hook_env)
        assert result.returncode == 2
        assert result.stderr.startswith("SECURITY: Blocked: rm -rf on root")
        assert "Command: rm -rf /" in result.stderr
        assert result.stdout == ""

    def test_ask(self, hook_env):
        result = run_hook(BASH_HOOK, bash("rm -rf build"), hook_env)
        assert result.returncode == 0
        output = json.loads(result.stdout)
        assert output["hookSpecificOutput"]["permissionDecision"] == "ask"
        assert output["hookSpecificOutput"]["permissionDecisionReason"] == "recursive delete"

    def test_semantic_git_asks(self, hook_env):
        result = run_hook(BASH_HOOK, bash("git reset --hard HEAD~3"), hook_env)
        assert result.returncode == 0
        assert json.loads(result.stdout)["hookSpecificOutput"]["permissionDecision"] == "ask"

    def test_wrapped_zero_access(self, hook_env):
        result = run_hook(BASH_HOOK, bash("bash -c 'cat .env'"), hook_env)
        assert result.returncode == 2
        assert "zero-access path .env" in result.stderr

    def test_other_tool_ignored(self, hook_env):
        result = run_hook(BASH_HOOK, write(".env"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""

    def test_malformed_json(self, hook_env):
        result = run_hook(BASH_HOOK, "{not json", hook_env)
        assert result.returncode == 1
        assert result.stderr.startswith("Error:")

    def test_wrong_command_type(self, hook_env):
        result = run_hook(BASH_HOOK, {"tool_name": "Bash", "tool_input": {"command": 42}}, hook_env)
        assert result.returncode == 1
        assert "Invalid command type" in result.stderr


# ============================================================
# Edit / Write Hooks
# ============================================================


class TestPathHooks:
    def test_write_zero_access_blocked(self, hook_env):
        result = run_hook(WRITE_HOOK, write(".env"), hook_env)
        assert result.returncode == 2
        assert result.stderr.startswith(
            "SECURITY: Blocked: write to zero-access path .env (no operations allowed)"
        )

    def test_edit_read_only_blocked(self, hook_env):
        payload = {
            "tool_name": "Edit",
            "tool_input": {"file_path": "package-lock.json", "old_string": "a", "new_string": "b"},
        }
        result = run_hook(EDIT_HOOK, payload, hook_env)
        assert result.returncode == 2
        assert "read-only path package-lock.json" in result.stderr

    def test_write_allowed(self, hook_env):
        result = run_hook(WRITE_HOOK, write("src/app.py"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""

    def test_edit_hook_ignores_write(self, hook_env):
        result = run_hook(EDIT_HOOK, write(".env"), hook_env)
        assert result.returncode == 0


# ============================================================
# Modes and Side Effects
# ============================================================


class TestModes:
    def test_dry_run_never_blocks(self, hook_env):
        hook_env["CLAUDE_HOOK_DRY_RUN"] = "1"
        result = run_hook(BASH_HOOK, bash("rm -rf /"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""
        log_file = Path(hook_env["CLAUDE_PROJECT_DIR"]) / ".claude" / "damage-control" / "damage-control.log"
        assert "Would BLOCK Bash" in log_file.read_text()

    def test_disable_switch(self, hook_env):
        hook_env["CLAUDE_DISABLE_HOOKS"] = "other,damage-control"
        result = run_hook(BASH_HOOK, "{not json", hook_env)
        assert result.returncode == 0
        assert result.stderr == ""

    def test_no_config_allows_everything(self, hook_env):
        config_file = Path(hook_env["CLAUDE_PROJECT_DIR"]) / ".claude" / "damage-control" / "config.json"
        config_file.unlink()
        result = run_hook(BASH_HOOK, bash("rm -rf /"), hook_env)
        assert result.returncode == 0

    def test_audit_record_written(self, hook_env):
        run_hook(BASH_HOOK, bash("rm -rf / --password=hunter2"), hook_env)
        audit_dir = Path(hook_env["HOME"]) / ".claude" / "logs" / "damage-control"
        (audit_file,) = audit_dir.glob("*.log")
        record = json.loads(audit_file.read_text().splitlines()[-1])
        assert record["tool"] == "Bash"
        assert record["decision"] == "blocked"
        assert record["pattern_matched"] == "pattern_0"
        assert "hunter2" not in record["command"]


# ============================================================
# Fail-Open at the Process Boundary
# ============================================================


@pytest.fixture
def broken_runner_dir(tmp_path):
    """Copy of the Bash hook whose _hook_runner.py can be replaced."""
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    for name in ("bash_damage_control.py", "_damage_control_utils.py"):
        shutil.copy(SCRIPTS_DIR / name, scripts / name)
    return scripts


class TestFailOpenBoundary:
    def test_import_failure_allows(self, hook_env, broken_runner_dir):
        (broken_runner_dir / "_hook_runner.py").write_text(
            'raise ImportError("shared modules unavailable")\n'
        )
        script = str(broken_runner_dir / "bash_damage_control.py")
        result = run_hook(script, bash("cat .env"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""
        assert "Damage control unavailable: shared modules unavailable" in result.stderr

    def test_unexpected_exception_allows(self, hook_env, broken_runner_dir):
        (broken_runner_dir / "_hook_runner.py").write_text(
            "def run_hook(tool_name, stdin=None):\n"
            '    raise RuntimeError("unexpected failure")\n'
        )
        script = str(broken_runner_dir / "bash_damage_control.py")
        result = run_hook(script, bash("cat .env"), hook_env)
        assert result.returncode == 0
        assert result.stdout == ""
        assert "Hook error: unexpected failure" in result.stderr
        log_file = Path(hook_env["CLAUDE_PROJECT_DIR"]) / ".claude" / "damage-control" / "damage-control.log"
        assert "RuntimeError: unexpected failure" in log_file.read_text()
