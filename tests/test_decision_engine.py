#!/usr/bin/env python3
"""Tests for _decision_engine.py: the full Bash and Edit/Write pipelines.

Run:
    python -m pytest tests/test_decision_engine.py -v
"""

import dataclasses
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))
import _bootstrap  # noqa: F401, E402

import _decision_engine as engine
from _damage_control_utils import MAX_COMMAND_LENGTH, HookInputError
from _decision_engine import (
    Decision,
    Verdict,
    check_command,
    check_path,
    detect_context,
    evaluate_request,
    validate_request,
)
from _pattern_compiler import compile_config

TEST_CONFIG = {
    "bashToolPatterns": [
        {"pattern": r"\brm\s+-[a-zA-Z]*r[a-zA-Z]*f[a-zA-Z]*\s+/(\s|$)", "reason": "rm -rf on root"},
        {"pattern": r"\brm\s+-[a-zA-Z]*[rR]", "reason": "recursive delete", "ask": True},
        {"pattern": r"\bDROP\s+TABLE\b", "reason": "SQL DROP TABLE"},
    ],
    "zeroAccessPaths": [".env", "*.pem", "~/.ssh/"],
    "readOnlyPaths": ["package-lock.json", "/etc/"],
    "noDeletePaths": ["README.md", ".github/"],
    "contexts": {
        "documentation": {
            "enabled": True,
            "detection": {"file_extensions": [".md"]},
            "relaxed_checks": ["bashToolPatterns"],
        },
        "commit_message": {
            "enabled": True,
            "detection": {"command_patterns": [r"^git\s+commit\s+.*-m\s"]},
            "relaxed_checks": ["bashToolPatterns"],
        },
    },
}


@pytest.fixture
def config():
    return compile_config(TEST_CONFIG)


def bash(command):
    return {"tool_name": "Bash", "tool_input": {"command": command}}


# ============================================================
# Bash: Verdicts
# ============================================================


class TestCheckCommand:
    def test_harmless_command_allowed(self, config):
        decision = check_command("ls -la", config)
        assert decision == Decision(Verdict.ALLOW)

    def test_block_pattern(self, config):
        decision = check_command("rm -rf /", config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: rm -rf on root"
        assert decision.pattern_matched == "pattern_0"

    def test_ask_pattern_has_no_blocked_prefix(self, config):
        decision = check_command("rm -rf build", config)
        assert decision.verdict is Verdict.ASK
        assert decision.reason == "recursive delete"
        assert decision.pattern_matched == "pattern_1"

    def test_first_pattern_wins(self, config):
        # "rm -rf /" matches both pattern_0 and pattern_1
        assert check_command("rm -rf /", config).pattern_matched == "pattern_0"

    def test_semantic_git_asks(self, config):
        decision = check_command("git push --force origin main", config)
        assert decision.verdict is Verdict.ASK
        assert decision.pattern_matched == "semantic_git"
        assert decision.semantic_match is True
        assert decision.reason == "git push --force can overwrite remote history without safety checks"

    @pytest.mark.parametrize(
        "command",
        ["git push --force-with-lease", "git checkout -b feature", "git reset --soft HEAD~1"],
    )
    def test_safe_git_allowed(self, config, command):
        assert check_command(command, config).verdict is Verdict.ALLOW

    def test_zero_access_literal(self, config):
        decision = check_command("cat .env", config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: zero-access path .env (no operations allowed)"
        assert decision.pattern_matched == "zero_access_literal"

    def test_zero_access_glob(self, config):
        decision = check_command("openssl x509 -in server.pem", config)
        assert decision.reason == "Blocked: zero-access pattern *.pem (no operations allowed)"
        assert decision.pattern_matched == "zero_access_glob"

    def test_zero_access_boundary(self, config):
        assert check_command("cat .env.example", config).verdict is Verdict.ALLOW

    def test_read_only_read_allowed(self, config):
        assert check_command("cat package-lock.json", config).verdict is Verdict.ALLOW

    def test_read_only_write_blocked(self, config):
        decision = check_command("echo '{}' > package-lock.json", config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: write operation on read-only path package-lock.json"
        assert decision.pattern_matched == "readonly_path"

    def test_read_only_delete_blocked(self, config):
        decision = check_command("rm package-lock.json", config)
        assert decision.reason == "Blocked: delete operation on read-only path package-lock.json"

    def test_read_only_edit_blocked(self, config):
        decision = check_command("sed -i 's/a/b/' /etc/hosts", config)
        assert decision.reason == "Blocked: edit operation on read-only path /etc/"

    def test_no_delete_blocks_delete(self, config):
        decision = check_command("rm README.md", config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: delete operation on no-delete path README.md"
        assert decision.pattern_matched == "nodelete_path"

    def test_no_delete_allows_modification(self, config):
        assert check_command("echo hi >> README.md", config).verdict is Verdict.ALLOW

    def test_oversized_command_asks(self, config):
        decision = check_command("a" * (MAX_COMMAND_LENGTH + 1), config)
        assert decision.verdict is Verdict.ASK
        assert decision.pattern_matched == "command_too_large"

    def test_command_at_limit_is_analyzed(self, config):
        assert check_command("a" * MAX_COMMAND_LENGTH, config).verdict is Verdict.ALLOW

    def test_decision_is_immutable(self, config):
        decision = check_command("ls", config)
        with pytest.raises(dataclasses.FrozenInstanceError):
            decision.verdict = Verdict.BLOCK


# ============================================================
# Bash: Unwrapping
# ============================================================


class TestUnwrappedCommands:
    @pytest.mark.parametrize(
        "wrapped",
        [
            'bash -c "rm -rf /tmp/x"',
            "sh -c 'rm -rf /tmp/x'",
            "env FOO=1 rm -rf /tmp/x",
            "python3 -c \"import os; os.system('rm -rf /tmp/x')\"",
        ],
    )
    def test_same_decision_as_direct(self, config, wrapped):
        direct = check_command("rm -rf /tmp/x", config)
        decision = check_command(wrapped, config)
        assert (decision.verdict, decision.reason, decision.pattern_matched) == (
            direct.verdict,
            direct.reason,
            direct.pattern_matched,
        )
        assert decision.was_unwrapped is True
        assert direct.was_unwrapped is False

    def test_wrapped_git_is_analyzed(self, config):
        decision = check_command("bash -c 'git reset --hard'", config)
        assert decision.semantic_match is True
        assert decision.was_unwrapped is True

    def test_text_outside_wrapper_still_checked(self, config):
        decision = check_command('cat .env; bash -c "ls"', config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.pattern_matched == "zero_access_literal"


# ============================================================
# Contexts
# ============================================================


class TestContexts:
    def test_documentation_detected_for_path_tools(self, config):
        assert detect_context("Write", {"file_path": "docs/guide.md"}, config) == "documentation"
        assert detect_context("Edit", {"file_path": "README.md"}, config) == "documentation"
        assert detect_context("Write", {"file_path": "src/app.py"}, config) is None

    def test_documentation_not_detected_for_bash(self, config):
        assert detect_context("Bash", {"command": "cat README.md"}, config) is None

    def test_commit_message_detected(self, config):
        assert detect_context("Bash", bash('git commit -m "x"')["tool_input"], config) == "commit_message"

    def test_disabled_context_never_matches(self):
        disabled = dict(TEST_CONFIG)
        disabled["contexts"] = {
            "commit_message": {
                "enabled": False,
                "detection": {"command_patterns": [r"^git\s+commit"]},
                "relaxed_checks": ["bashToolPatterns"],
            }
        }
        config = compile_config(disabled)
        assert detect_context("Bash", {"command": 'git commit -m "x"'}, config) is None

    def test_commit_message_relaxes_patterns(self, config):
        command = 'git commit -m "DROP TABLE users is now guarded"'
        assert check_command(command, config).verdict is Verdict.BLOCK
        decision = evaluate_request(bash(command), config)
        assert decision.verdict is Verdict.ALLOW
        assert decision.context == "commit_message"

    def test_context_does_not_relax_zero_access(self, config):
        decision = evaluate_request(bash('git commit -m "stop tracking .env"'), config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.pattern_matched == "zero_access_literal"
        assert decision.context == "commit_message"

    def test_documentation_relaxes_read_only(self, project_dir):
        relaxed = dict(TEST_CONFIG)
        relaxed["readOnlyPaths"] = ["docs/"]
        relaxed["contexts"] = {
            "documentation": {
                "enabled": True,
                "detection": {"file_extensions": [".md"]},
                "relaxed_checks": ["readOnlyPaths"],
            }
        }
        config = compile_config(relaxed)
        allowed = evaluate_request({"tool_name": "Write", "tool_input": {"file_path": "docs/guide.md"}}, config)
        blocked = evaluate_request({"tool_name": "Write", "tool_input": {"file_path": "docs/diagram.png"}}, config)
        assert allowed.verdict is Verdict.ALLOW
        assert allowed.context == "documentation"
        assert blocked.verdict is Verdict.BLOCK


# ============================================================
# Edit / Write
# ============================================================


class TestCheckPath:
    def test_zero_access(self, project_dir, config):
        decision = check_path(".env", config, tool_name="Write")
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: write to zero-access path .env (no operations allowed)"
        assert decision.pattern_matched == "zero_access_literal"

    def test_zero_access_glob(self, project_dir, config):
        decision = check_path("certs/server.pem", config, tool_name="Edit")
        assert decision.reason == "Blocked: edit to zero-access path *.pem (no operations allowed)"
        assert decision.pattern_matched == "zero_access_glob"

    def test_read_only(self, project_dir, config):
        decision = check_path("package-lock.json", config, tool_name="Edit")
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Blocked: edit to read-only path package-lock.json"
        assert decision.pattern_matched == "readonly_path"

    @pytest.mark.parametrize("path", ["src/app.py", ".env.example", "README.md"])
    def test_allowed(self, project_dir, config, path):
        assert check_path(path, config).verdict is Verdict.ALLOW

    def test_null_byte_blocked(self, project_dir, config):
        decision = check_path("safe.txt\x00.env", config)
        assert decision.verdict is Verdict.BLOCK
        assert decision.reason == "Invalid file path (contains null byte)"


# ============================================================
# Request Orchestration
# ============================================================


class TestEvaluateRequest:
    @pytest.mark.parametrize(
        "request_data",
        [
            "not an object",
            {"tool_name": 3},
            {"tool_name": "Bash", "tool_input": ["ls"]},
            {"tool_name": "Bash", "tool_input": {"command": ["rm", "-rf"]}},
            {"tool_name": "Write", "tool_input": {"file_path": 7}},
        ],
    )
    def test_malformed_input_raises(self, config, request_data):
        with pytest.raises(HookInputError):
            evaluate_request(request_data, config)

    def test_validate_request_defaults(self):
        assert validate_request({"tool_name": "Bash", "tool_input": None}) == ("Bash", {})

    def test_unknown_tool_allowed(self, config):
        request = {"tool_name": "Read", "tool_input": {"file_path": ".env"}}
        assert evaluate_request(request, config).verdict is Verdict.ALLOW

    def test_empty_command_allowed(self, config):
        assert evaluate_request(bash(""), config).verdict is Verdict.ALLOW

    def test_missing_file_path_allowed(self, config):
        request = {"tool_name": "Edit", "tool_input": {}}
        assert evaluate_request(request, config).verdict is Verdict.ALLOW

    def test_dispatch(self, project_dir, config):
        assert evaluate_request(bash("cat .env"), config).verdict is Verdict.BLOCK
        write = {"tool_name": "Write", "tool_input": {"file_path": ".env", "content": "x"}}
        assert evaluate_request(write, config).verdict is Verdict.BLOCK

    def test_internal_error_fails_open(self, config, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "check_command", explode)
        decision = evaluate_request(bash("rm -rf /"), config)
        assert decision.verdict is Verdict.ALLOW
        assert decision.reason == "Internal error (fail-open): RuntimeError"


def test_audit_labels():
    assert [v.audit_label for v in Verdict] == ["allowed", "blocked", "ask"]
