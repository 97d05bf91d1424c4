#!/usr/bin/env python3
"""Semantic analysis of git commands.

Keyword matching on "git" either over-blocks safe idioms (git checkout -b)
or under-blocks dangerous ones spelled with combined short flags
(git clean -xfd). This module reads the subcommand and its arguments
instead:

    checkout  safe with -b/--branch; dangerous with "-- <paths>", --force,
              -f or a short-flag cluster containing f
    push      safe with --force-with-lease (checked first, even if --force
              is also present); dangerous with --force, -f or a cluster
              containing f
    reset     safe with --soft/--mixed; dangerous with --hard
    clean     dangerous with -f, -d, --force or a cluster containing f or d

Every other subcommand gets no opinion. A dangerous result means "ask a
human", never "block".
"""

# Global options that consume the following token (git -C <dir> push ...)
_GLOBAL_OPTIONS_WITH_VALUE = frozenset({"-C", "-c", "--git-dir", "--work-tree", "--namespace"})

NOT_DANGEROUS: tuple[bool, str] = (False, "")


def _has_short_cluster(args: list[str], letters: str) -> bool:
    """True if any single-dash flag group (-xfd) contains one of `letters`."""
    for arg in args:
        if arg.startswith("-") and not arg.startswith("--") and len(arg) > 1:
            if any(letter in arg[1:] for letter in letters):
                return True
    return False


def _split_subcommand(tokens: list[str]) -> tuple[str, list[str]]:
    """Skip git's global options and return (subcommand, args)."""
    i = 1
    while i < len(tokens) and tokens[i].startswith("-"):
        if tokens[i] in _GLOBAL_OPTIONS_WITH_VALUE:
            i += 2
        else:
            # --no-pager, --bare, --git-dir=..., -p, ...
            i += 1
    if i >= len(tokens):
        return "", []
    return tokens[i], tokens[i + 1 :]


def _analyze_checkout(args: list[str]) -> tuple[bool, str]:
    if "-b" in args or "--branch" in args:
        return NOT_DANGEROUS

    if "--" in args and args.index("--") < len(args) - 1:
        return True, "git checkout with -- discards uncommitted changes"

    if "--force" in args or "-f" in args:
        return True, "git checkout --force discards uncommitted changes"

    if _has_short_cluster(args, "f"):
        return True, "git checkout -f discards uncommitted changes"

    return NOT_DANGEROUS


def _analyze_push(args: list[str]) -> tuple[bool, str]:
    # Lease wins even alongside --force; see DESIGN.md
    if "--force-with-lease" in " ".join(args):
        return NOT_DANGEROUS

    if "--force" in args:
        return True, "git push --force can overwrite remote history without safety checks"

    if "-f" in args or _has_short_cluster(args, "f"):
        return True, "git push -f can overwrite remote history without safety checks"

    return NOT_DANGEROUS


def _analyze_reset(args: list[str]) -> tuple[bool, str]:
    if "--soft" in args or "--mixed" in args:
        return NOT_DANGEROUS

    if "--hard" in args:
        return True, "git reset --hard permanently discards uncommitted changes"

    return NOT_DANGEROUS


def _analyze_clean(args: list[str]) -> tuple[bool, str]:
    if (
        "-f" in args
        or "-d" in args
        or "--force" in args
        or _has_short_cluster(args, "fd")
    ):
        return True, "git clean removes untracked files permanently"

    return NOT_DANGEROUS


_SUBCOMMAND_ANALYZERS = {
    "checkout": _analyze_checkout,
    "push": _analyze_push,
    "reset": _analyze_reset,
    "clean": _analyze_clean,
}


def analyze_git_command(command: str) -> tuple[bool, str]:
    """Decide whether a git command is destructive.

    Args:
        command: Command text, already unwrapped.

    Returns:
        (dangerous, reason). (False, "") for non-git commands and for git
        subcommands without a policy.
    """
    if not command or not command.strip():
        return NOT_DANGEROUS

    command = command.strip()
    if not command.startswith("git "):
        return NOT_DANGEROUS

    tokens = command.split()
    subcommand, args = _split_subcommand(tokens)
    analyzer = _SUBCOMMAND_ANALYZERS.get(subcommand)
    if analyzer is None:
        return NOT_DANGEROUS
    return analyzer(args)
