#!/usr/bin/env python3
"""Pattern compiler for the Damage Control hooks.

Turns the raw (already parsed) configuration into ready-to-evaluate
matchers, once per process:

- bashToolPatterns  -> CompiledPattern (tagged pattern_<index>)
- *Paths sections   -> PathRule (glob or literal, raw + home-expanded forms)
- contexts          -> ContextRule (detection rules + relaxed checks)

Everything produced here is immutable. Bad entries are dropped with a
WARN in the diagnostic log; compilation never aborts.
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import regex

from _damage_control_utils import log_damage_control

# Boundary look-arounds that keep a rule for ".env" from matching
# ".env.example" or "prod.env" inside command text.
BOUNDARY_BEFORE = r"(?<![\w.-])"
BOUNDARY_AFTER = r"(?![\w.-])"


class Tier(Enum):
    """Path protection tiers. Values are the config section names."""

    ZERO_ACCESS = "zeroAccessPaths"
    READ_ONLY = "readOnlyPaths"
    NO_DELETE = "noDeletePaths"

    @property
    def description(self) -> str:
        return {
            Tier.ZERO_ACCESS: "zero-access path",
            Tier.READ_ONLY: "read-only path",
            Tier.NO_DELETE: "no-delete path",
        }[self]


class CheckCategory(Enum):
    """Rule categories a context may relax. Values are the config spellings."""

    PATTERNS = "bashToolPatterns"
    ZERO_ACCESS = "zeroAccessPaths"
    READ_ONLY = "readOnlyPaths"
    NO_DELETE = "noDeletePaths"
    SEMANTIC_GIT = "semantic_git"

    @classmethod
    def for_tier(cls, tier: Tier) -> "CheckCategory":
        if tier is Tier.ZERO_ACCESS:
            return cls.ZERO_ACCESS
        if tier is Tier.READ_ONLY:
            return cls.READ_ONLY
        if tier is Tier.NO_DELETE:
            return cls.NO_DELETE
        raise ValueError(f"Unhandled tier: {tier}")


# ============================================================
# Operation Templates
# ============================================================


class OperationKind(Enum):
    WRITE = "write"
    APPEND = "append"
    EDIT = "edit"
    MOVE_COPY = "move/copy"
    DELETE = "delete"
    PERMISSION = "permission"
    TRUNCATE = "truncate"


@dataclass(frozen=True)
class OperationTemplate:
    """An operation prefix regex; the path regex is appended to it.

    Attributes:
        kind: Operation family used to pick templates per tier.
        label: Operation name used in block reasons (move, copy, chmod...).
        prefix: Regex source that must immediately precede the path.
    """

    kind: OperationKind
    label: str
    prefix: str

    def build(self, path_source: str) -> str:
        return self.prefix + path_source


OPERATION_TEMPLATES: tuple[OperationTemplate, ...] = (
    OperationTemplate(OperationKind.WRITE, "write", r"(?<!>)>(?!>)\s*"),
    OperationTemplate(OperationKind.WRITE, "write", r"\btee\s+(?!.*-a).*"),
    OperationTemplate(OperationKind.APPEND, "append", r">>\s*"),
    OperationTemplate(OperationKind.APPEND, "append", r"\btee\s+-a\s+.*"),
    OperationTemplate(OperationKind.APPEND, "append", r"\btee\s+.*-a.*"),
    OperationTemplate(OperationKind.EDIT, "edit", r"\bsed\s+-i.*"),
    OperationTemplate(OperationKind.EDIT, "edit", r"\bperl\s+-[^\s]*i.*"),
    OperationTemplate(OperationKind.EDIT, "edit", r"\bawk\s+-i\s+inplace.*"),
    OperationTemplate(OperationKind.MOVE_COPY, "move", r"\bmv\s+.*\s+"),
    OperationTemplate(OperationKind.MOVE_COPY, "copy", r"\bcp\s+.*\s+"),
    OperationTemplate(OperationKind.DELETE, "delete", r"\brm\s+.*"),
    OperationTemplate(OperationKind.DELETE, "delete", r"\bunlink\s+.*"),
    OperationTemplate(OperationKind.DELETE, "delete", r"\brmdir\s+.*"),
    OperationTemplate(OperationKind.DELETE, "delete", r"\bshred\s+.*"),
    OperationTemplate(OperationKind.PERMISSION, "chmod", r"\bchmod\s+.*"),
    OperationTemplate(OperationKind.PERMISSION, "chown", r"\bchown\s+.*"),
    OperationTemplate(OperationKind.PERMISSION, "chgrp", r"\bchgrp\s+.*"),
    OperationTemplate(OperationKind.TRUNCATE, "truncate", r"\btruncate\s+.*"),
    OperationTemplate(OperationKind.TRUNCATE, "truncate", r":\s*>\s*"),
)


@dataclass(frozen=True)
class CompiledPattern:
    pattern_id: str
    expression: str
    reason: str
    ask: bool
    compiled: "regex.Pattern"


@dataclass(frozen=True)
class PathRule:
    """One configured path, preprocessed for path and command matching.

    Attributes:
        original: The path exactly as configured.
        expanded: Home-expanded form (equal to original when there is no ~).
        is_glob: True when the path contains *, ? or [.
        is_directory: True for literal rules ending in /.
        command_sources: Regex sources that find this path inside command
            text, one per distinct form. Operation templates are prepended.
        command_flags: Flags for command_sources (globs are case-insensitive).
        path_matchers: Anchored, case-insensitive glob matchers for path
            text (glob rules only), raw form first.
        command_matchers: command_sources compiled with command_flags.
        operation_matchers: (template, matcher) for every operation
            template and source, in template order.
    """

    original: str
    expanded: str
    is_glob: bool
    is_directory: bool
    command_sources: tuple[str, ...]
    command_flags: int
    path_matchers: tuple["regex.Pattern", ...] = ()
    command_matchers: tuple["regex.Pattern", ...] = ()
    operation_matchers: tuple[tuple[OperationTemplate, "regex.Pattern"], ...] = ()


@dataclass(frozen=True)
class ContextRule:
    name: str
    enabled: bool
    file_extensions: tuple[str, ...]
    command_patterns: tuple["regex.Pattern", ...]
    relaxed_checks: frozenset[CheckCategory]


@dataclass(frozen=True)
class CompiledConfig:
    """Immutable, process-wide compiled configuration.

    Built explicitly by compile_config() in the hook entry point and passed
    by reference; never modified afterwards.
    """

    patterns: tuple[CompiledPattern, ...] = ()
    zero_access: tuple[PathRule, ...] = ()
    read_only: tuple[PathRule, ...] = ()
    no_delete: tuple[PathRule, ...] = ()
    contexts: Mapping[str, ContextRule] = field(default_factory=lambda: MappingProxyType({}))

    def rules_for(self, tier: Tier) -> tuple[PathRule, ...]:
        if tier is Tier.ZERO_ACCESS:
            return self.zero_access
        if tier is Tier.READ_ONLY:
            return self.read_only
        if tier is Tier.NO_DELETE:
            return self.no_delete
        raise ValueError(f"Unhandled tier: {tier}")

    def relaxed_checks(self, context: str | None) -> frozenset[CheckCategory]:
        rule = self.contexts.get(context) if context else None
        return rule.relaxed_checks if rule else frozenset()


# ============================================================
# Glob Translation
# ============================================================


def is_glob_pattern(pattern: str) -> bool:
    return "*" in pattern or "?" in pattern or "[" in pattern


def glob_to_command_regex(glob_pattern: str) -> str:
    """Translate a glob for searching inside command text.

    Wildcards stay within one whitespace-free path component:
    * -> [^\\s/]*   ? -> [^\\s/]   everything else literal.
    """
    parts = []
    for char in glob_pattern:
        if char == "*":
            parts.append(r"[^\s/]*")
        elif char == "?":
            parts.append(r"[^\s/]")
        else:
            parts.append(re.escape(char))
    return "".join(parts)


def glob_to_path_regex(glob_pattern: str) -> str:
    """Translate a glob for anchored matching against a whole path or name.

    * -> .*   ? -> .   everything else literal (including [ and ]).
    """
    parts = []
    for char in glob_pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return "^" + "".join(parts) + "$"


def literal_command_regex(path: str, is_directory: bool) -> str:
    """Regex source that finds a literal path inside command text.

    File rules must end at a non-word boundary. Directory rules match the
    directory itself or anything beneath it.
    """
    if is_directory:
        return BOUNDARY_BEFORE + re.escape(path.rstrip("/")) + r"(?:/|" + BOUNDARY_AFTER + ")"
    return BOUNDARY_BEFORE + re.escape(path) + BOUNDARY_AFTER


def _unique(items) -> tuple:
    return tuple(dict.fromkeys(items))


# ============================================================
# Compilation
# ============================================================


def compile_patterns(patterns: list[Any]) -> tuple[CompiledPattern, ...]:
    """Compile bashToolPatterns in configured order.

    Each entry keeps its configured index as its identifier, so ids stay
    stable when an earlier entry is dropped.
    """
    compiled: list[CompiledPattern] = []

    for idx, item in enumerate(patterns):
        if not isinstance(item, dict):
            log_damage_control("WARN", f"Skipping bashToolPatterns[{idx}]: not an object")
            continue
        expression = item.get("pattern", "")
        if not expression or not isinstance(expression, str):
            log_damage_control(
                "WARN", f"Skipping bashToolPatterns[{idx}]: missing or non-string pattern"
            )
            continue

        try:
            matcher = regex.compile(expression, regex.IGNORECASE)
        except regex.error as e:
            log_damage_control(
                "WARN", f"Invalid regex pattern at index {idx}: {expression} - {e}"
            )
            continue

        compiled.append(
            CompiledPattern(
                pattern_id=f"pattern_{idx}",
                expression=expression,
                reason=str(item.get("reason", "Matched dangerous pattern")),
                ask=item.get("ask") is True,
                compiled=matcher,
            )
        )

    return tuple(compiled)


def _compile_command_matchers(sources: tuple[str, ...], flags: int):
    """Compile a rule's sources on their own and behind every operation template."""
    command_matchers = tuple(regex.compile(source, flags) for source in sources)
    operation_matchers = tuple(
        (template, regex.compile(template.build(source), flags))
        for template in OPERATION_TEMPLATES
        for source in sources
    )
    return command_matchers, operation_matchers


def compile_path_rule(path: str) -> PathRule | None:
    """Preprocess one configured path. Returns None if it cannot be used."""
    expanded = os.path.expanduser(path)

    if is_glob_pattern(path):
        command_sources = _unique(
            BOUNDARY_BEFORE + glob_to_command_regex(form) + BOUNDARY_AFTER
            for form in (path, expanded)
        )
        try:
            path_matchers = tuple(
                regex.compile(glob_to_path_regex(form), regex.IGNORECASE)
                for form in _unique([path, expanded])
            )
            command_matchers, operation_matchers = _compile_command_matchers(
                command_sources, regex.IGNORECASE
            )
        except regex.error as e:
            log_damage_control("WARN", f"Invalid glob pattern: {path} - {e}")
            return None
        return PathRule(
            original=path,
            expanded=expanded,
            is_glob=True,
            is_directory=False,
            command_sources=command_sources,
            command_flags=regex.IGNORECASE,
            path_matchers=path_matchers,
            command_matchers=command_matchers,
            operation_matchers=operation_matchers,
        )

    is_directory = path.endswith("/")
    command_sources = _unique(
        literal_command_regex(form, is_directory) for form in (path, expanded)
    )
    try:
        command_matchers, operation_matchers = _compile_command_matchers(command_sources, 0)
    except regex.error as e:
        log_damage_control("WARN", f"Invalid path: {path} - {e}")
        return None
    return PathRule(
        original=path,
        expanded=expanded,
        is_glob=False,
        is_directory=is_directory,
        command_sources=command_sources,
        command_flags=0,
        command_matchers=command_matchers,
        operation_matchers=operation_matchers,
    )


def compile_path_rules(paths: list[Any], section: str = "paths") -> tuple[PathRule, ...]:
    rules = []
    for idx, path in enumerate(paths):
        if not isinstance(path, str) or not path:
            if path:
                log_damage_control("WARN", f"Skipping {section}[{idx}]: not a string")
            continue
        rule = compile_path_rule(path)
        if rule is not None:
            rules.append(rule)
    return tuple(rules)


def _compile_relaxed_checks(name: str, values: Any) -> frozenset[CheckCategory]:
    if not isinstance(values, list):
        return frozenset()
    relaxed = set()
    for value in values:
        try:
            relaxed.add(CheckCategory(value))
        except ValueError:
            log_damage_control("WARN", f"Unknown relaxed check in context {name}: {value!r}")
    return frozenset(relaxed)


def compile_context(name: str, block: Any) -> ContextRule | None:
    """Compile one context block. Malformed blocks are excluded."""
    if not isinstance(block, dict):
        log_damage_control("WARN", f"Skipping context {name}: not an object")
        return None

    detection = block.get("detection") or {}
    if not isinstance(detection, dict):
        detection = {}

    extensions = detection.get("file_extensions") or []
    if not isinstance(extensions, list):
        extensions = []

    command_patterns = []
    raw_patterns = detection.get("command_patterns") or []
    for pattern in raw_patterns if isinstance(raw_patterns, list) else []:
        try:
            command_patterns.append(regex.compile(pattern, regex.IGNORECASE))
        except (regex.error, TypeError) as e:
            log_damage_control("WARN", f"Invalid command pattern in context {name}: {pattern!r} - {e}")

    return ContextRule(
        name=name,
        enabled=block.get("enabled") is True,
        file_extensions=tuple(ext for ext in extensions if isinstance(ext, str) and ext),
        command_patterns=tuple(command_patterns),
        relaxed_checks=_compile_relaxed_checks(name, block.get("relaxed_checks", [])),
    )


def compile_config(config: Mapping[str, Any]) -> CompiledConfig:
    """Compile a normalized raw configuration.

    Args:
        config: Output of load_config() / normalize_config().

    Returns:
        Immutable CompiledConfig.
    """
    contexts = {}
    raw_contexts = config.get("contexts") or {}
    if isinstance(raw_contexts, dict):
        for name, block in raw_contexts.items():
            rule = compile_context(name, block)
            if rule is not None:
                contexts[name] = rule

    def section(name: str) -> list[Any]:
        value = config.get(name)
        return value if isinstance(value, list) else []

    return CompiledConfig(
        patterns=compile_patterns(section("bashToolPatterns")),
        zero_access=compile_path_rules(section("zeroAccessPaths"), "zeroAccessPaths"),
        read_only=compile_path_rules(section("readOnlyPaths"), "readOnlyPaths"),
        no_delete=compile_path_rules(section("noDeletePaths"), "noDeletePaths"),
        contexts=MappingProxyType(contexts),
    )
