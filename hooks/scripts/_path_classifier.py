#!/usr/bin/env python3
"""Path protection for the Damage Control hooks.

Two views of the same PathRules:

1. Path Classifier (Edit/Write): a target file path is compared against the
   zero-access and read-only tiers with literal and glob semantics.
2. Command Operation Matcher (Bash): a path rule is located inside command
   text behind an operation prefix (redirect, tee, sed -i, mv, rm, chmod...).
   Which operations count depends on the tier the rule came from:

   | Tier        | read | write/append/edit/move/chmod/truncate | delete |
   |-------------|------|----------------------------------------|--------|
   | zero-access | no   | no                                     | no     |
   | read-only   | yes  | no                                     | no     |
   | no-delete   | yes  | yes                                    | no     |

   Zero-access rules are operation-agnostic: any mention blocks.

All matchers are compiled with the rule (see _pattern_compiler); this
module only searches.
"""

import os
import posixpath
from dataclasses import dataclass

from _damage_control_utils import get_project_dir, safe_regex_search
from _pattern_compiler import (
    OPERATION_TEMPLATES,
    CheckCategory,
    CompiledConfig,
    OperationKind,
    OperationTemplate,
    PathRule,
    Tier,
)

# ============================================================
# Operation Sets
# ============================================================

READ_ONLY_OPERATIONS = frozenset(OperationKind)
NO_DELETE_OPERATIONS = frozenset({OperationKind.DELETE})

TIER_OPERATIONS = {
    Tier.READ_ONLY: READ_ONLY_OPERATIONS,
    Tier.NO_DELETE: NO_DELETE_OPERATIONS,
}


def templates_for(operations: frozenset[OperationKind]) -> tuple[OperationTemplate, ...]:
    return tuple(t for t in OPERATION_TEMPLATES if t.kind in operations)


# ============================================================
# Command Operation Matcher
# ============================================================


@dataclass(frozen=True)
class OperationMatch:
    blocked: bool
    operation: str = ""
    rule: PathRule | None = None
    reason: str = ""


NO_OPERATION_MATCH = OperationMatch(blocked=False)


def match_operation(
    command: str,
    rule: PathRule,
    operations: frozenset[OperationKind],
    description: str = "protected path",
) -> OperationMatch:
    """Check whether command applies one of `operations` to `rule`'s path.

    Args:
        command: Command text (already unwrapped by the caller).
        rule: The path rule to look for.
        operations: Operation kinds that are forbidden for this rule.
        description: Tier description used in the block reason.

    Returns:
        OperationMatch; blocked is True on the first matching template.
    """
    for template, matcher in rule.operation_matchers:
        if template.kind not in operations:
            continue
        if safe_regex_search(matcher, command) is not None:
            return OperationMatch(
                blocked=True,
                operation=template.label,
                rule=rule,
                reason=f"Blocked: {template.label} operation on {description} {rule.original}",
            )
    return NO_OPERATION_MATCH


def match_zero_access_command(command: str, rule: PathRule) -> bool:
    """Any mention of a zero-access path in the command is a match."""
    return any(
        safe_regex_search(matcher, command) is not None for matcher in rule.command_matchers
    )


# ============================================================
# Path Classifier
# ============================================================


@dataclass(frozen=True)
class PathMatch:
    blocked: bool
    tier: Tier | None = None
    rule: PathRule | None = None


NO_PATH_MATCH = PathMatch(blocked=False)

CLASSIFIED_TIERS = (Tier.ZERO_ACCESS, Tier.READ_ONLY)
"""Tiers checked for Edit/Write targets, in priority order. No-delete is Bash-only."""


def _to_matching_form(path: str) -> str:
    return os.path.normpath(path).replace("\\", "/")


def normalize_target_path(path: str) -> str:
    """Normalize a tool's target path for matching.

    - Expands ~
    - Resolves relative paths against the project directory, when known
    - Collapses . and .. and duplicate separators
    - Uses forward slashes
    """
    expanded = os.path.expanduser(path)
    if not os.path.isabs(expanded):
        project_dir = get_project_dir()
        if project_dir:
            expanded = os.path.join(project_dir, expanded)
    return _to_matching_form(expanded)


def _project_relative(target: str) -> str | None:
    project_dir = get_project_dir()
    if not project_dir:
        return None
    project = _to_matching_form(project_dir)
    # Use + "/" so /work/ops does not claim /work/ops-2
    if target.startswith(project + "/"):
        return target[len(project) + 1 :]
    return None


def _match_glob_rule(target: str, rule: PathRule) -> bool:
    basename = posixpath.basename(target)
    candidates = [basename, target]
    relative = _project_relative(target)
    if relative is not None:
        candidates.append(relative)

    for matcher in rule.path_matchers:
        for candidate in candidates:
            if safe_regex_search(matcher, candidate) is not None:
                return True
    return False


def _literal_forms(rule: PathRule) -> list[str]:
    forms = [rule.original, rule.expanded]
    project_dir = get_project_dir()
    if project_dir:
        forms.extend(
            os.path.join(project_dir, form) for form in (rule.original, rule.expanded)
            if not os.path.isabs(form) and not form.startswith("~")
        )
    return list(dict.fromkeys(_to_matching_form(form) for form in forms))


def _match_literal_rule(target: str, rule: PathRule) -> bool:
    for form in _literal_forms(rule):
        if target == form:
            return True
        # Separator-aware containment: /a/b is inside a/ but /a/bc is not
        if target.startswith(form.rstrip("/") + "/"):
            return True

    # A bare name (".env", ".git/") protects that name anywhere
    name = rule.original.rstrip("/")
    if name and "/" not in name and not name.startswith("~"):
        components = target.split("/")
        if rule.is_directory:
            return name in components
        return components[-1] == name
    return False


def match_path_rule(path: str, rule: PathRule) -> bool:
    """Match a tool's target path against one rule."""
    target = normalize_target_path(path)
    if rule.is_glob:
        return _match_glob_rule(target, rule)
    return _match_literal_rule(target, rule)


def classify_path(
    path: str,
    config: CompiledConfig,
    relaxed: frozenset[CheckCategory] = frozenset(),
    tiers: tuple[Tier, ...] = CLASSIFIED_TIERS,
) -> PathMatch:
    """Classify a target path against the protection tiers.

    Tiers are evaluated in priority order; a tier relaxed by the active
    context is skipped. The first matching rule blocks, so zero-access
    shadows read-only.

    Args:
        path: Target path from the tool input.
        config: Compiled configuration.
        relaxed: Check categories relaxed by the active context.
        tiers: Tiers to evaluate, highest priority first.

    Returns:
        PathMatch with the blocking tier and rule, or NO_PATH_MATCH.
    """
    for tier in tiers:
        if CheckCategory.for_tier(tier) in relaxed:
            continue
        for rule in config.rules_for(tier):
            if match_path_rule(path, rule):
                return PathMatch(blocked=True, tier=tier, rule=rule)
    return NO_PATH_MATCH
