"""
jira-to-pr Safety Gate

Validates a generated change set before anything touches disk or git
history. Every rule is evaluated independently and every violation is
reported; errors block, warnings only inform.

  - Limit errors (file count, line count) downgrade to warnings with
    the allow_large_diff override.
  - Validation errors (tool config files, path traversal, absolute
    paths) are never overridable.
  - Advisories (sensitive filenames, missing test updates) never block.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from loguru import logger

from jira_to_pr.config_loader import TOOL_CONFIG_FILES, SafetyConfig
from jira_to_pr.models import ChangeSet, SafetyVerdict


@dataclass(frozen=True)
class SafetyLimits:
    max_files_to_change: int = 10
    max_lines_changed: int = 500

    @classmethod
    def from_config(cls, config: SafetyConfig) -> "SafetyLimits":
        return cls(
            max_files_to_change=config.max_files_to_change,
            max_lines_changed=config.max_lines_changed,
        )


@dataclass(frozen=True)
class SafetyOverrides:
    allow_large_diff: bool = False
    allow_missing_tests: bool = False


# ---------------------------------------------------------------------------
# Path classification
# ---------------------------------------------------------------------------

SENSITIVE_PATTERN = re.compile(
    r"\.(env|key|pem|p12|pfx)\b|secret|credential|password|id_rsa",
    re.IGNORECASE,
)

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")

TEST_FILE_PATTERNS = [
    re.compile(p) for p in (
        r"\.test\.[jt]sx?$",
        r"\.spec\.[jt]sx?$",
        r"(^|/)__tests__/",
        r"(^|/)tests?/",
        r"_test\.[jt]sx?$",
        r"\.test\.py$",
        r"_test\.py$",
        r"(^|/)test_[^/]*\.py$",
        r"(^|/)conftest\.py$",
        r"\.spec\.rb$",
        r"_spec\.rb$",
        r"_test\.go$",
    )
]

NON_BEHAVIORAL_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\.md$",
        r"\.rst$",
        r"\.txt$",
        r"\.json$",
        r"\.ya?ml$",
        r"\.toml$",
        r"\.ini$",
        r"\.cfg$",
        r"\.lock$",
        r"\.env",
        r"\.gitignore$",
        r"\.prettierrc",
        r"\.eslint",
        r"tsconfig",
        r"package-lock\.json$",
        r"pnpm-lock\.yaml$",
        r"yarn\.lock$",
        r"LICENSE",
        r"CHANGELOG",
        r"README",
    )
]


def _parts(path: str) -> list[str]:
    return [p for p in re.split(r"[\\/]", path) if p]


def is_traversal(path: str) -> bool:
    return ".." in _parts(path)


def is_absolute(path: str) -> bool:
    return path.startswith(("/", "\\")) or bool(_WINDOWS_DRIVE.match(path))


def is_forbidden(path: str) -> bool:
    parts = _parts(path)
    return bool(parts) and parts[-1] in TOOL_CONFIG_FILES


def is_sensitive(path: str) -> bool:
    return bool(SENSITIVE_PATTERN.search(path))


def is_test_file(path: str) -> bool:
    normalized = path.replace("\\", "/")
    return any(p.search(normalized) for p in TEST_FILE_PATTERNS)


def is_behavioral_file(path: str) -> bool:
    name = PurePosixPath(path.replace("\\", "/")).name
    return not any(p.search(name) for p in NON_BEHAVIORAL_PATTERNS)


def repo_has_tests(all_files: list[str]) -> bool:
    return any(is_test_file(f) for f in all_files)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def validate_test_coverage(change_set: ChangeSet, all_files: list[str]) -> list[str]:
    """Advisory only: warn when a tested repo gets behavioural changes without tests."""
    if not repo_has_tests(all_files):
        return []

    behavioral = [
        c for c in change_set.changes
        if c.operation != "delete" and is_behavioral_file(c.path) and not is_test_file(c.path)
    ]
    tests = [c for c in change_set.changes if is_test_file(c.path)]

    if behavioral and not tests:
        return ["No test updates included. This repo has tests - consider adding coverage."]
    return []


def evaluate(
    change_set: ChangeSet,
    all_files: list[str],
    limits: SafetyLimits,
    overrides: SafetyOverrides | None = None,
) -> SafetyVerdict:
    overrides = overrides or SafetyOverrides()
    errors: list[str] = []
    warnings: list[str] = []

    file_count = len(change_set.changes)
    if file_count > limits.max_files_to_change:
        msg = f"Too many files changed: {file_count} > {limits.max_files_to_change}"
        (warnings if overrides.allow_large_diff else errors).append(msg)

    total_lines = change_set.total_content_lines()
    if total_lines > limits.max_lines_changed:
        msg = f"Too many lines changed: {total_lines} > {limits.max_lines_changed}"
        (warnings if overrides.allow_large_diff else errors).append(msg)

    for change in change_set.changes:
        path = change.path
        if is_forbidden(path):
            errors.append(f"Refusing to modify jira-to-pr configuration file: {path}")
        if is_traversal(path):
            errors.append(f"Suspicious path (parent directory traversal): {path}")
        if is_absolute(path):
            errors.append(f"Absolute path not allowed: {path}")
        if is_sensitive(path):
            warnings.append(f"Potentially sensitive file: {path}")

    if not overrides.allow_missing_tests:
        warnings.extend(validate_test_coverage(change_set, all_files))

    verdict = SafetyVerdict(errors=errors, warnings=warnings)
    logger.debug(
        f"[SAFETY] {file_count} files, {total_lines} lines, "
        f"{len(errors)} errors, {len(warnings)} warnings"
    )
    return verdict


def check_tree_consistency(change_set: ChangeSet, all_files: list[str]) -> SafetyVerdict:
    """Creations must target new paths; modifications and deletions existing ones."""
    existing = set(all_files)
    errors = []

    for change in change_set.changes:
        if change.operation == "create" and change.path in existing:
            errors.append(f"Cannot create {change.path}: file already exists")
        elif change.operation in ("modify", "delete") and change.path not in existing:
            errors.append(f"Cannot {change.operation} {change.path}: file does not exist")

    return SafetyVerdict(errors=errors)
