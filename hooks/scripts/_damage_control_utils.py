#!/usr/bin/env python3
"""Shared utilities for the Damage Control hooks.

This module provides the ambient plumbing used by every hook:
- Configuration loading from config.json (3-step resolution chain)
- Configuration validation (warn, never abort)
- Bounded regex search (ReDoS defense via the `regex` package)
- Diagnostic logging with rotation
- Audit records (JSONL) with secret redaction
- Dry-run mode and the disable switch
- Hook response helpers

Config resolution chain:
    1. $CLAUDE_PROJECT_DIR/.claude/damage-control/config.json (user custom)
    2. $CLAUDE_PLUGIN_ROOT/assets/damage-control.default.json (plugin default)
    3. Empty rule sets (nothing enforced, WARN logged)

Note on log_damage_control():
    - Silent fail if CLAUDE_PROJECT_DIR not set
    - Silent fail on file write errors
    - This is intentional to avoid breaking hooks on logging issues

Design Principles:
    1. Fail-Open: configuration problems exclude the offending rule, and
       unexpected errors during evaluation allow the operation. A guard that
       wedges the agent is worse than one that under-enforces one rule.
    2. Fail-Fast on malformed hook input (there is no safe default verdict).
    3. Every user-supplied regex runs with a timeout.
"""

import json
import os
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import regex

# ============================================================
# Constants
# ============================================================

HOOK_NAME = "damage-control"
"""Name used by the CLAUDE_DISABLE_HOOKS switch and in file locations."""

DISABLE_HOOKS_ENV = "CLAUDE_DISABLE_HOOKS"
"""Comma-separated list of hook names to disable. For hook development only."""

DRY_RUN_ENV = "CLAUDE_HOOK_DRY_RUN"
"""Environment variable to enable dry-run mode.
Set to "1", "true", or "yes" to enable."""

MAX_COMMAND_LENGTH = 100_000
"""Commands longer than this are not analyzed; they require confirmation."""

MAX_COMMAND_PREVIEW_LENGTH = 100
"""Maximum command length echoed on stderr when blocking."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display. Paths longer than this are truncated."""

AUDIT_FIELD_MAX_LENGTH = 200
"""Maximum length of the command/file_path field in an audit record."""

MAX_LOG_SIZE_BYTES = 1_000_000
"""Maximum log file size before rotation (1 MB)."""

REGEX_TIMEOUT_SECONDS = 0.5
"""Timeout for a single user-supplied regex evaluation."""

REDACTED_MARKER = "***REDACTED***"

CONFIG_SECTIONS = ("bashToolPatterns", "zeroAccessPaths", "readOnlyPaths", "noDeletePaths")
PATH_SECTIONS = ("zeroAccessPaths", "readOnlyPaths", "noDeletePaths")
CONTEXT_NAMES = ("documentation", "commit_message")


# ============================================================
# Errors
# ============================================================


class HookInputError(ValueError):
    """The hook payload could not be understood.

    Fatal for the current invocation only: the hook reports it on stderr
    and exits non-zero without emitting a verdict.
    """


# ============================================================
# Environment
# ============================================================


def get_project_dir() -> str:
    """Get and validate project directory from environment variable.

    Returns:
        Project directory path, or empty string if not set or invalid.
    """
    project_dir = os.environ.get("CLAUDE_PROJECT_DIR", "")
    if not project_dir:
        return ""

    # Note: Cannot call log_damage_control() here - would cause infinite
    # recursion because log_damage_control() calls get_project_dir()
    if not os.path.isdir(project_dir):
        return ""

    return project_dir


def _get_plugin_root() -> str:
    """Get the plugin root directory from environment variable."""
    return os.environ.get("CLAUDE_PLUGIN_ROOT", "")


def is_dry_run() -> bool:
    """Check if running in dry-run (simulation) mode.

    In dry-run mode, hooks log what they WOULD do but never
    block or ask.

    Enable by setting environment variable:
        CLAUDE_HOOK_DRY_RUN=1

    Returns:
        True if dry-run mode is enabled.
    """
    value = os.environ.get(DRY_RUN_ENV, "").lower()
    return value in ("1", "true", "yes")


def is_hook_disabled() -> bool:
    """Check whether CLAUDE_DISABLE_HOOKS names this hook."""
    disabled = os.environ.get(DISABLE_HOOKS_ENV, "")
    return HOOK_NAME in [name.strip() for name in disabled.split(",")]


# ============================================================
# Diagnostic Logging with Rotation
# ============================================================


def _rotate_log_if_needed(log_file: Path) -> None:
    """Rotate log file if it exceeds MAX_LOG_SIZE_BYTES.

    Rotation strategy:
    - If log exceeds size limit, rename to <name>.1 (overwriting any existing backup)
    - This keeps exactly one backup for debugging recent issues
    - Silent fail on any error (non-critical operation)

    Args:
        log_file: Path to the log file to check/rotate.
    """
    try:
        if not log_file.exists():
            return

        if log_file.stat().st_size < MAX_LOG_SIZE_BYTES:
            return

        backup_file = log_file.with_name(log_file.name + ".1")

        # On Windows, we need to remove the target first if it exists
        if backup_file.exists():
            backup_file.unlink()

        log_file.rename(backup_file)
    except Exception:
        # Silent fail - rotation is non-critical
        pass


def log_damage_control(level: str, message: str) -> None:
    """Log a diagnostic event to damage-control.log.

    Log format:
        TIMESTAMP [LEVEL] [DRY-RUN] MESSAGE

    Features:
    - Automatic rotation when log exceeds MAX_LOG_SIZE_BYTES
    - Keeps one backup file (.log.1) for debugging
    - Silent fail on any error - never breaks hook execution

    Args:
        level: Log level (INFO, WARN, ERROR, BLOCK, ASK, ALLOW)
        message: Message to log.
    """
    project_dir = get_project_dir()
    if not project_dir:
        return

    log_file = Path(project_dir) / ".claude" / HOOK_NAME / f"{HOOK_NAME}.log"

    try:
        timestamp = datetime.now().isoformat(timespec="seconds")
        mode = "[DRY-RUN] " if is_dry_run() else ""
        line = f"{timestamp} [{level}] {mode}{message}\n"

        log_file.parent.mkdir(parents=True, exist_ok=True)
        _rotate_log_if_needed(log_file)

        with open(log_file, "a", encoding="utf-8") as f:
            f.write(line)
    except Exception:
        # Silent fail - don't break hook on log error
        pass


# ============================================================
# Configuration
# ============================================================


def empty_config() -> dict[str, Any]:
    """Return a configuration with no rules and no contexts."""
    return {
        "bashToolPatterns": [],
        "zeroAccessPaths": [],
        "readOnlyPaths": [],
        "noDeletePaths": [],
        "contexts": {},
    }


def _read_config_file(config_path: Path) -> dict[str, Any] | None:
    """Read one candidate config file.

    Returns:
        The parsed document, or None if it is missing or unusable.
        Never raises.
    """
    if not config_path.exists():
        return None
    try:
        with open(config_path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        log_damage_control(
            "ERROR",
            f"Invalid JSON in {config_path}: {e}\n"
            "  Skipping this file. Fix JSON syntax to restore its rules.",
        )
        return None
    except OSError as e:
        log_damage_control(
            "ERROR",
            f"Failed to read {config_path}: {e}\n  Check file permissions.",
        )
        return None

    if not isinstance(document, dict):
        log_damage_control(
            "ERROR",
            f"Config root in {config_path} must be an object, got {type(document).__name__}",
        )
        return None
    return document


def load_config() -> dict[str, Any]:
    """Load the raw configuration.

    Resolution chain:
        1. $CLAUDE_PROJECT_DIR/.claude/damage-control/config.json
        2. $CLAUDE_PLUGIN_ROOT/assets/damage-control.default.json
        3. Empty rule sets

    Not cached: the hook entry point loads once and compiles the result
    into an immutable CompiledConfig that it passes around.

    Returns:
        Normalized configuration dict. Never raises.
    """
    candidates: list[Path] = []

    # Step 1 -- User custom config
    project_dir = get_project_dir()
    if project_dir:
        candidates.append(Path(project_dir) / ".claude" / HOOK_NAME / "config.json")

    # Step 2 -- Plugin default config
    plugin_root = _get_plugin_root()
    if plugin_root:
        candidates.append(Path(plugin_root) / "assets" / f"{HOOK_NAME}.default.json")

    for config_path in candidates:
        document = _read_config_file(config_path)
        if document is None:
            continue
        log_damage_control("INFO", f"Loaded config from {config_path}")
        for problem in validate_config(document):
            log_damage_control("WARN", f"Config validation: {problem}")
        return normalize_config(document)

    # Step 3 -- Nothing usable
    log_damage_control(
        "WARN",
        "No usable config.json found - no damage-control rules are active.\n"
        f"  Searched: {', '.join(str(p) for p in candidates) or '(no locations configured)'}",
    )
    return empty_config()


def normalize_config(document: Any) -> dict[str, Any]:
    """Coerce a parsed document into the expected section types.

    Sections of the wrong type become empty; list entries are passed
    through unchanged (the pattern compiler drops bad entries one by one).

    Args:
        document: Parsed configuration (anything).

    Returns:
        Config dict with every section present.
    """
    config = empty_config()
    if not isinstance(document, dict):
        return config

    for section in CONFIG_SECTIONS:
        value = document.get(section, [])
        if isinstance(value, list):
            config[section] = value

    contexts = document.get("contexts", {})
    if isinstance(contexts, dict):
        config["contexts"] = {
            name: block for name, block in contexts.items() if isinstance(block, dict)
        }
    return config


def validate_config(config: Any) -> list[str]:
    """Validate damage-control configuration.

    Performs structural and semantic validation:
    - Checks section types
    - Validates regex pattern syntax
    - Checks path entries are strings
    - Checks context blocks

    Args:
        config: Parsed configuration document.

    Returns:
        List of validation error messages (empty if valid).
    """
    if not isinstance(config, dict):
        return [f"Config root must be an object, got {type(config).__name__}"]

    errors = []

    patterns = config.get("bashToolPatterns", [])
    if not isinstance(patterns, list):
        errors.append("bashToolPatterns must be a list")
        patterns = []
    for i, p in enumerate(patterns):
        if not isinstance(p, dict):
            errors.append(f"bashToolPatterns[{i}] must be an object")
            continue
        pattern = p.get("pattern", "")
        if not pattern or not isinstance(pattern, str):
            errors.append(f"bashToolPatterns[{i}] missing 'pattern' field")
            continue
        try:
            regex.compile(pattern)
        except regex.error as e:
            errors.append(f"Invalid regex in bashToolPatterns[{i}]: {e}")
        if "ask" in p and not isinstance(p["ask"], bool):
            errors.append(f"bashToolPatterns[{i}].ask must be boolean")

    for section in PATH_SECTIONS:
        paths = config.get(section, [])
        if not isinstance(paths, list):
            errors.append(f"{section} must be a list")
            continue
        for i, path in enumerate(paths):
            if not isinstance(path, str):
                errors.append(f"{section}[{i}] must be a string, got {type(path).__name__}")

    contexts = config.get("contexts", {})
    if not isinstance(contexts, dict):
        errors.append("contexts must be an object")
        return errors
    for name, block in contexts.items():
        if name not in CONTEXT_NAMES:
            errors.append(f"Unknown context '{name}' (supported: {', '.join(CONTEXT_NAMES)})")
            continue
        if not isinstance(block, dict):
            errors.append(f"contexts.{name} must be an object")
            continue
        enabled = block.get("enabled")
        if enabled is not None and not isinstance(enabled, bool):
            errors.append(f"contexts.{name}.enabled must be boolean, got {type(enabled).__name__}")
        relaxed = block.get("relaxed_checks", [])
        if not isinstance(relaxed, list):
            errors.append(f"contexts.{name}.relaxed_checks must be a list")
        detection = block.get("detection", {})
        if not isinstance(detection, dict):
            errors.append(f"contexts.{name}.detection must be an object")
            continue
        for key, value in detection.items():
            if not isinstance(value, list):
                errors.append(f"contexts.{name}.detection.{key} must be a list")
            elif key == "command_patterns":
                for i, pattern in enumerate(value):
                    try:
                        regex.compile(pattern)
                    except (regex.error, TypeError) as e:
                        errors.append(
                            f"Invalid regex in contexts.{name}.detection.command_patterns[{i}]: {e}"
                        )

    return errors


# ============================================================
# Safe Regex with Timeout Defense (ReDoS Prevention)
# ============================================================


def safe_regex_search(
    pattern: "regex.Pattern",
    text: str,
    timeout: float = REGEX_TIMEOUT_SECONDS,
) -> "regex.Match | None":
    """Search with a compiled `regex` pattern under a timeout.

    Args:
        pattern: Compiled pattern from the `regex` package.
        text: Text to search.
        timeout: Timeout in seconds (default: REGEX_TIMEOUT_SECONDS).

    Returns:
        Match object if found, None otherwise.
        Returns None on timeout or any matching error: one bad rule
        degrades that rule only.
    """
    try:
        return pattern.search(text, timeout=timeout)
    except TimeoutError:
        log_damage_control(
            "WARN",
            f"Regex timeout ({timeout}s) for pattern: {pattern.pattern[:50]}...",
        )
        return None
    except Exception as e:
        log_damage_control("WARN", f"Unexpected regex error: {e}")
        return None


# ============================================================
# Hook Response Helpers
# ============================================================


def ask_response(reason: str) -> dict[str, Any]:
    """Generate an ask response for PreToolUse hook.

    Args:
        reason: Human-readable reason for asking.

    Returns:
        Hook response dict that will prompt user for confirmation.
    """
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "ask",
            "permissionDecisionReason": reason,
        }
    }


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display in logs.

    Shows the end of the path (most relevant part) with ... prefix.
    """
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


def truncate_command(command: str, max_length: int = MAX_COMMAND_PREVIEW_LENGTH) -> str:
    """Truncate command for display, keeping the start and appending '...'."""
    if len(command) <= max_length:
        return command
    return f"{command[:max_length]}..."


# ============================================================
# Audit Log (JSONL)
# ============================================================

_SECRET_PATTERNS = [
    re.compile(r"apikey\s*=\s*[\w\-.]+", re.IGNORECASE),
    re.compile(r"api_key\s*=\s*[\w\-.]+", re.IGNORECASE),
    re.compile(r"token\s*=\s*[\w\-.]{20,}", re.IGNORECASE),
    re.compile(r"bearer\s+[\w\-.]+", re.IGNORECASE),
    re.compile(r"password\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"passwd\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"pwd\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"(?<!\S)-p\S+"),
    re.compile(r"AKIA[0-9A-Z]{16}"),
    re.compile(r"secret\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"credential\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"GITHUB_TOKEN\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"NPM_TOKEN\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"DOCKER_PASSWORD\s*=\s*\S+", re.IGNORECASE),
    re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"),
]


def redact_secrets(command: str) -> str:
    """Replace common secret shapes in a command with REDACTED_MARKER."""
    redacted = command
    for pattern in _SECRET_PATTERNS:
        redacted = pattern.sub(REDACTED_MARKER, redacted)
    return redacted


def _truncate_field(value: str) -> str:
    if len(value) > AUDIT_FIELD_MAX_LENGTH:
        return value[:AUDIT_FIELD_MAX_LENGTH] + "..."
    return value


def get_audit_log_path(now: datetime | None = None) -> Path:
    """Daily audit file: ~/.claude/logs/damage-control/YYYY-MM-DD.log (UTC)."""
    now = now or datetime.now(timezone.utc)
    return Path.home() / ".claude" / "logs" / HOOK_NAME / f"{now.strftime('%Y-%m-%d')}.log"


def _current_dir() -> str:
    """Process cwd, or "unknown" if it has been removed underneath us."""
    try:
        return os.getcwd()
    except OSError:
        return "unknown"


def build_audit_record(tool_name: str, subject: str, decision: Any) -> dict[str, Any]:
    """Build the audit record for one decision.

    Args:
        tool_name: Tool that was evaluated (Bash, Edit, Write).
        subject: The command (Bash) or file path (Edit/Write).
        decision: The Decision produced for this invocation.

    Returns:
        JSON-serializable dict, one line of the audit log.
    """
    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tool": tool_name,
    }
    if tool_name == "Bash":
        record["command"] = _truncate_field(redact_secrets(subject))
    else:
        record["file_path"] = _truncate_field(subject)
    record.update(
        {
            "decision": decision.verdict.audit_label,
            "reason": decision.reason,
            "pattern_matched": decision.pattern_matched,
            "unwrapped": decision.was_unwrapped,
            "semantic_match": decision.semantic_match,
            "context": decision.context,
            "user": os.environ.get("USER", "unknown"),
            "cwd": _current_dir(),
            "session_id": os.environ.get("CLAUDE_SESSION_ID", ""),
        }
    )
    return record


def write_audit_record(record: dict[str, Any], log_path: Path | None = None) -> None:
    """Append one record to the audit log.

    Failures are reported on stderr and otherwise ignored; auditing must
    never change the verdict.
    """
    try:
        log_path = log_path or get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _rotate_log_if_needed(log_path)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except Exception as e:
        print(f"Warning: Failed to write audit log: {e}", file=sys.stderr)
