#!/usr/bin/env python3
"""Bash Damage Control Hook.

Checks Bash commands before execution:
1. Shell wrappers are unwrapped (bash -c, python -c, env)
2. Destructive git commands ask for confirmation
3. bashToolPatterns block (or ask)
4. zeroAccessPaths block any mention
5. readOnlyPaths block modifying operations
6. noDeletePaths block deletion

Design Principles:
- Fail-Open: If the hook itself fails, allow the operation
- Thin wrapper: All logic in run_hook()
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _damage_control_utils import log_damage_control
    from _hook_runner import run_hook
except ImportError as e:
    # Fail-open: damage control unavailable = allow
    print(f"Damage control unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> int:
    """Main hook entry point."""
    return run_hook("Bash")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        log_damage_control("ERROR", f"Bash damage control error: {type(e).__name__}: {e}")
        print(f"Hook error: {e}", file=sys.stderr)
        sys.exit(0)
