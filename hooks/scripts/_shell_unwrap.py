#!/usr/bin/env python3
"""Shell wrapper unwrapping.

Extracts the effective command from wrapper invocations so rules see what
actually runs:

    bash -c "rm -rf build"                         -> rm -rf build
    python3 -c "import os; os.system('rm x')"      -> rm x
    env DEBUG=1 rm -rf build                       -> rm -rf build

Wrappers may nest. Unwrapping is a loop bounded by MAX_UNWRAP_DEPTH so
adversarial nesting cannot run away; whatever remains after the last
permitted step is returned as-is.

Known limitation: quoting is matched non-greedily to the next identical
quote character; escaped quotes inside the inner command end it early.
"""

import re

MAX_UNWRAP_DEPTH = 5
"""Maximum number of wrapper layers removed from one command."""

SHELL_WRAPPERS = ("bash", "sh", "zsh", "ksh", "dash")

_SHELL_PATTERNS = tuple(
    re.compile(rf"\b{shell}\s+-c\s+([\"'])(.+?)\1", re.DOTALL) for shell in SHELL_WRAPPERS
)
_PYTHON_PATTERN = re.compile(r"\bpython[23]?\s+-c\s+([\"'])(.+?)\1", re.DOTALL)

# env must start the command (or follow whitespace / a separator) so that
# ".env" in "cat .env foo" is not mistaken for a wrapper.
_ENV_PATTERN = re.compile(
    r"(?:^|(?<=[\s;&|(]))env\s+(?:[A-Za-z_][A-Za-z0-9_]*=\S+\s+)*(.+)", re.DOTALL
)

_SUBPROCESS_CALL = r"subprocess\.(?:run|call|check_call|check_output|Popen)"
_SYSTEM_CALL_PATTERNS = (
    re.compile(r"os\.system\s*\(\s*[\"']([^\"']+)[\"']\s*\)"),
    re.compile(_SUBPROCESS_CALL + r"\s*\(\s*[\"']([^\"']+)[\"']\s*\)"),
)
_SYSTEM_LIST_PATTERN = re.compile(_SUBPROCESS_CALL + r"\s*\(\s*\[([^\]]+)\]")
_STRING_LITERAL = re.compile(r"[\"']([^\"']+)[\"']")


def extract_system_call(python_code: str) -> str | None:
    """Find the shell command a Python snippet passes to the OS.

    Handles os.system("..."), subprocess.<fn>("...") and the list form
    subprocess.<fn>(["rm", "-rf", "x"]) (joined with spaces).

    Args:
        python_code: Code passed to python -c.

    Returns:
        The command string, or None if no literal system call is found.
    """
    if not python_code:
        return None

    for pattern in _SYSTEM_CALL_PATTERNS:
        match = pattern.search(python_code)
        if match:
            return match.group(1)

    match = _SYSTEM_LIST_PATTERN.search(python_code)
    if match:
        parts = _STRING_LITERAL.findall(match.group(1))
        if parts:
            return " ".join(parts)

    return None


def _unwrap_once(command: str) -> str | None:
    """Remove one wrapper layer, or return None if there is none."""
    for pattern in _SHELL_PATTERNS:
        match = pattern.search(command)
        if match:
            return match.group(2)

    match = _PYTHON_PATTERN.search(command)
    if match:
        code = match.group(2)
        return extract_system_call(code) or code

    match = _ENV_PATTERN.search(command)
    if match:
        return match.group(1)

    return None


def unwrap_command(command: str, max_depth: int = MAX_UNWRAP_DEPTH) -> tuple[str, bool]:
    """Extract the innermost effective command from nested wrappers.

    Args:
        command: Raw command string.
        max_depth: Maximum number of layers to remove.

    Returns:
        (effective_command, was_unwrapped). was_unwrapped is True when at
        least one layer was removed.
    """
    if not command or not command.strip():
        return command, False

    current = command.strip()
    depth = 0
    while depth < max_depth:
        inner = _unwrap_once(current)
        if inner is None or not inner.strip():
            break
        current = inner.strip()
        depth += 1

    return current, depth > 0
