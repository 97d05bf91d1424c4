#!/usr/bin/env python3
"""Shared entry point for the Damage Control PreToolUse hooks.

Protocol with Claude Code:

    stdin   {"tool_name": ..., "tool_input": {...}}
    ALLOW   no output, exit 0
    ASK     hookSpecificOutput JSON on stdout, exit 0
    BLOCK   "SECURITY: <reason>" on stderr, exit 2
    error   "Error: <message>" on stderr, exit 1 (malformed input only)

Each hook script handles exactly one tool and stays silent for others.
"""

import json
import sys
from typing import Any, TextIO

from _damage_control_utils import (
    HookInputError,
    ask_response,
    build_audit_record,
    is_dry_run,
    is_hook_disabled,
    load_config,
    log_damage_control,
    truncate_command,
    truncate_path,
    write_audit_record,
)
from _decision_engine import BASH_TOOL, Decision, Verdict, evaluate_request, validate_request
from _pattern_compiler import compile_config

EXIT_ALLOW = 0
EXIT_ERROR = 1
EXIT_BLOCK = 2


def read_hook_input(stream: TextIO) -> dict[str, Any]:
    """Parse the hook payload from `stream`.

    Raises:
        HookInputError: On invalid JSON or a non-object payload.
    """
    try:
        data = json.load(stream)
    except json.JSONDecodeError as e:
        raise HookInputError(f"Invalid JSON input: {e}") from e
    if not isinstance(data, dict):
        raise HookInputError(f"Hook input must be a JSON object, got {type(data).__name__}")
    return data


def emit_decision(decision: Decision, tool_name: str, subject: str) -> int:
    """Write the protocol output for `decision` and return the exit code."""
    if decision.verdict is Verdict.BLOCK:
        print(f"SECURITY: {decision.reason}", file=sys.stderr)
        if tool_name == BASH_TOOL:
            print(f"Command: {truncate_command(subject)}", file=sys.stderr)
        else:
            print(f"Path: {subject}", file=sys.stderr)
        return EXIT_BLOCK

    if decision.verdict is Verdict.ASK:
        print(json.dumps(ask_response(decision.reason)))
        return EXIT_ALLOW

    return EXIT_ALLOW


def audit_decision(tool_name: str, subject: str, decision: Decision) -> None:
    """Record `decision` in the audit log. Never raises; the verdict stands."""
    try:
        write_audit_record(build_audit_record(tool_name, subject, decision))
    except Exception as e:
        log_damage_control("ERROR", f"Audit record failed: {type(e).__name__}: {e}")
        print(f"Warning: Failed to write audit log: {e}", file=sys.stderr)


def run_hook(tool_name: str, stdin: TextIO | None = None) -> int:
    """Evaluate one PreToolUse request for `tool_name`.

    Args:
        tool_name: The tool this hook guards ("Bash", "Edit" or "Write").
        stdin: Input stream (defaults to sys.stdin).

    Returns:
        Process exit code.
    """
    if is_hook_disabled():
        return EXIT_ALLOW

    try:
        request = read_hook_input(stdin if stdin is not None else sys.stdin)
        actual_tool, tool_input = validate_request(request)
    except HookInputError as e:
        log_damage_control("ERROR", f"Malformed hook input: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if actual_tool != tool_name:
        return EXIT_ALLOW

    subject = tool_input.get("command" if tool_name == BASH_TOOL else "file_path") or ""
    if not subject:
        return EXIT_ALLOW

    preview = truncate_command(subject) if tool_name == BASH_TOOL else truncate_path(subject)
    log_damage_control("INFO", f"{tool_name} check: {preview}")

    config = compile_config(load_config())
    decision = evaluate_request(request, config)

    audit_decision(tool_name, subject, decision)

    if decision.verdict is Verdict.ALLOW:
        return EXIT_ALLOW

    level = "BLOCK" if decision.verdict is Verdict.BLOCK else "ASK"
    log_damage_control(level, f"{decision.reason} ({tool_name}): {preview}")

    if is_dry_run():
        log_damage_control("DRY-RUN", f"Would {level} {tool_name}: {decision.reason}")
        return EXIT_ALLOW

    return emit_decision(decision, tool_name, subject)
