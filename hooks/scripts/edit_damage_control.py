#!/usr/bin/env python3
"""Edit Damage Control Hook.

Blocks edits to zeroAccessPaths and readOnlyPaths.
Edits to documentation files follow the documentation context.
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _damage_control_utils import log_damage_control
    from _hook_runner import run_hook
except ImportError as e:
    print(f"Damage control unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> int:
    """Main hook entry point."""
    return run_hook("Edit")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        log_damage_control("ERROR", f"Edit damage control error: {type(e).__name__}: {e}")
        print(f"Hook error: {e}", file=sys.stderr)
        sys.exit(0)
