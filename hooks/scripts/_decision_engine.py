#!/usr/bin/env python3
"""Decision engine: context detection and rule orchestration.

Bash evaluation order (a step is skipped when the active context relaxes
its category):

    0. Oversized command               -> ASK (not analyzed)
    1. Unwrap shell/interpreter wrappers
    2. Semantic git analysis           -> ASK
    3. bashToolPatterns, in order      -> BLOCK (or ASK if the pattern says so)
    4. zeroAccessPaths (any mention)   -> BLOCK
    5. readOnlyPaths (write/edit/...)  -> BLOCK
    6. noDeletePaths (delete only)     -> BLOCK
    7.                                 -> ALLOW

Edit/Write evaluation classifies the target path against zero-access, then
read-only. Patterns, git analysis and no-delete do not apply.

Failure policy is fail-OPEN: an unexpected exception while evaluating a
request yields ALLOW, so a malfunctioning guard never wedges the agent.
Malformed requests are different: they raise HookInputError.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from _damage_control_utils import (
    MAX_COMMAND_LENGTH,
    HookInputError,
    log_damage_control,
    safe_regex_search,
    truncate_path,
)
from _git_semantics import analyze_git_command
from _path_classifier import (
    TIER_OPERATIONS,
    classify_path,
    match_operation,
    match_zero_access_command,
)
from _pattern_compiler import CheckCategory, CompiledConfig, Tier
from _shell_unwrap import unwrap_command

BASH_TOOL = "Bash"
PATH_TOOLS = ("Edit", "Write")


class Verdict(Enum):
    ALLOW = "allow"
    BLOCK = "block"
    ASK = "ask"

    @property
    def audit_label(self) -> str:
        return {"allow": "allowed", "block": "blocked", "ask": "ask"}[self.value]


@dataclass(frozen=True)
class Decision:
    """The outcome of one tool invocation. Never mutated after creation."""

    verdict: Verdict
    reason: str = ""
    pattern_matched: str = ""
    was_unwrapped: bool = False
    semantic_match: bool = False
    context: str | None = None


# ============================================================
# Request Validation
# ============================================================


def validate_request(request: Any) -> tuple[str, dict[str, Any]]:
    """Check the hook payload shape.

    Args:
        request: Parsed stdin payload.

    Returns:
        (tool_name, tool_input).

    Raises:
        HookInputError: If the payload is not usable.
    """
    if not isinstance(request, dict):
        raise HookInputError(f"Hook input must be an object, got {type(request).__name__}")

    tool_name = request.get("tool_name", "")
    if not isinstance(tool_name, str):
        raise HookInputError(f"Invalid tool_name type: {type(tool_name).__name__}")

    tool_input = request.get("tool_input", {})
    if tool_input is None:
        tool_input = {}
    if not isinstance(tool_input, dict):
        raise HookInputError(f"Invalid tool_input type: {type(tool_input).__name__}")

    for key in ("command", "file_path"):
        value = tool_input.get(key)
        if value is not None and not isinstance(value, str):
            raise HookInputError(f"Invalid {key} type: {type(value).__name__}")

    return tool_name, tool_input


# ============================================================
# Context Detection
# ============================================================


def detect_context(
    tool_name: str, tool_input: dict[str, Any], config: CompiledConfig
) -> str | None:
    """Detect the situational context of a tool call.

    Documentation (Edit/Write, by file extension) is checked before
    commit_message (Bash, by command regex). Disabled contexts never match.

    Returns:
        Context name, or None.
    """
    documentation = config.contexts.get("documentation")
    if tool_name in PATH_TOOLS and documentation is not None and documentation.enabled:
        file_path = tool_input.get("file_path") or ""
        if any(file_path.endswith(ext) for ext in documentation.file_extensions):
            return "documentation"

    commit_message = config.contexts.get("commit_message")
    if tool_name == BASH_TOOL and commit_message is not None and commit_message.enabled:
        command = tool_input.get("command") or ""
        for pattern in commit_message.command_patterns:
            if safe_regex_search(pattern, command) is not None:
                return "commit_message"

    return None


# ============================================================
# Bash Commands
# ============================================================


def check_command(
    command: str, config: CompiledConfig, context: str | None = None
) -> Decision:
    """Evaluate a Bash command.

    Rules in steps 3 to 6 are tested against the unwrapped command and,
    if anything was unwrapped, also against the original text, so text
    outside a wrapper is never dropped from inspection.

    Args:
        command: Raw command from tool_input.
        config: Compiled configuration.
        context: Active context name (relaxes its configured checks).

    Returns:
        Decision.
    """
    relaxed = config.relaxed_checks(context)

    if len(command) > MAX_COMMAND_LENGTH:
        log_damage_control(
            "WARN",
            f"Command exceeds size limit ({len(command)} > {MAX_COMMAND_LENGTH} bytes), "
            "requesting confirmation",
        )
        return Decision(
            Verdict.ASK,
            f"Command too large ({len(command)} bytes) to analyze - requires confirmation",
            pattern_matched="command_too_large",
            context=context,
        )

    unwrapped, was_unwrapped = unwrap_command(command)
    texts = (unwrapped, command) if was_unwrapped else (unwrapped,)

    def decide(verdict: Verdict, reason: str, pattern_matched: str, semantic: bool = False):
        return Decision(
            verdict,
            reason,
            pattern_matched=pattern_matched,
            was_unwrapped=was_unwrapped,
            semantic_match=semantic,
            context=context,
        )

    # ========== Semantic git ==========
    if CheckCategory.SEMANTIC_GIT not in relaxed:
        dangerous, git_reason = analyze_git_command(unwrapped)
        if dangerous:
            return decide(Verdict.ASK, git_reason, "semantic_git", semantic=True)

    # ========== Configured patterns ==========
    if CheckCategory.PATTERNS not in relaxed:
        for item in config.patterns:
            if any(safe_regex_search(item.compiled, text) is not None for text in texts):
                if item.ask:
                    return decide(Verdict.ASK, item.reason, item.pattern_id)
                return decide(Verdict.BLOCK, f"Blocked: {item.reason}", item.pattern_id)

    # ========== Zero access (any operation) ==========
    if CheckCategory.ZERO_ACCESS not in relaxed:
        for rule in config.zero_access:
            if any(match_zero_access_command(text, rule) for text in texts):
                kind = "pattern" if rule.is_glob else "path"
                return decide(
                    Verdict.BLOCK,
                    f"Blocked: zero-access {kind} {rule.original} (no operations allowed)",
                    f"zero_access_{'glob' if rule.is_glob else 'literal'}",
                )

    # ========== Read only, then no delete (operation-aware) ==========
    for tier, pattern_id in ((Tier.READ_ONLY, "readonly_path"), (Tier.NO_DELETE, "nodelete_path")):
        if CheckCategory.for_tier(tier) in relaxed:
            continue
        operations = TIER_OPERATIONS[tier]
        for rule in config.rules_for(tier):
            for text in texts:
                match = match_operation(text, rule, operations, tier.description)
                if match.blocked:
                    return decide(Verdict.BLOCK, match.reason, pattern_id)

    return decide(Verdict.ALLOW, "", "")


# ============================================================
# Edit / Write Paths
# ============================================================


def check_path(
    file_path: str,
    config: CompiledConfig,
    context: str | None = None,
    tool_name: str = "Write",
) -> Decision:
    """Evaluate the target path of an Edit or Write call.

    Args:
        file_path: Target path from tool_input.
        config: Compiled configuration.
        context: Active context name.
        tool_name: Tool being evaluated (used in the reason).

    Returns:
        Decision.
    """
    # Check for null bytes (path injection attack)
    if "\x00" in file_path:
        return Decision(
            Verdict.BLOCK,
            "Invalid file path (contains null byte)",
            pattern_matched="null_byte",
            context=context,
        )

    match = classify_path(file_path, config, config.relaxed_checks(context))
    if not match.blocked:
        return Decision(Verdict.ALLOW, context=context)

    verb = tool_name.lower()
    if match.tier is Tier.ZERO_ACCESS:
        reason = f"Blocked: {verb} to zero-access path {match.rule.original} (no operations allowed)"
        pattern_id = f"zero_access_{'glob' if match.rule.is_glob else 'literal'}"
    else:
        reason = f"Blocked: {verb} to read-only path {match.rule.original}"
        pattern_id = "readonly_path"
    return Decision(Verdict.BLOCK, reason, pattern_matched=pattern_id, context=context)


# ============================================================
# Request Orchestration
# ============================================================


def evaluate_request(request: Any, config: CompiledConfig) -> Decision:
    """Produce the decision for one hook request.

    Raises:
        HookInputError: If the payload is malformed (fail fast).

    Returns:
        Decision. Unexpected errors during evaluation return ALLOW
        (fail-open).
    """
    tool_name, tool_input = validate_request(request)

    try:
        context = detect_context(tool_name, tool_input, config)

        if tool_name == BASH_TOOL:
            command = tool_input.get("command") or ""
            if not command:
                return Decision(Verdict.ALLOW, context=context)
            return check_command(command, config, context)

        if tool_name in PATH_TOOLS:
            file_path = tool_input.get("file_path") or ""
            if not file_path:
                log_damage_control("WARN", f"{tool_name} called without file_path")
                return Decision(Verdict.ALLOW, context=context)
            return check_path(file_path, config, context, tool_name)

        return Decision(Verdict.ALLOW, context=context)
    except Exception as e:
        # Fail-open: availability over strictness
        subject = tool_input.get("command") or tool_input.get("file_path") or ""
        log_damage_control(
            "ERROR",
            f"Evaluation error ({tool_name}: {truncate_path(str(subject))}): "
            f"{type(e).__name__}: {e}",
        )
        return Decision(Verdict.ALLOW, f"Internal error (fail-open): {type(e).__name__}")
