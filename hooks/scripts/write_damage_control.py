#!/usr/bin/env python3
"""Write Damage Control Hook.

Protects files from being overwritten:
1. Blocking zeroAccess paths (secrets, credentials)
2. Blocking readOnly paths (lock files, system configuration)

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
    print(f"Damage control unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> int:
    """Main hook entry point."""
    return run_hook("Write")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        log_damage_control("ERROR", f"Write damage control error: {type(e).__name__}: {e}")
        print(f"Hook error: {e}", file=sys.stderr)
        sys.exit(0)
