"""
jira-to-pr Diff Engine

Line-level LCS diff used to preview every change before it touches disk
or git history, plus the rich rendering of that preview.

Tie-break: at every LCS anchor all removals are emitted before all
insertions, so a substitution always reads "- old" then "+ new".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal

from loguru import logger
from rich.markup import escape

from jira_to_pr.models import FileChange
from jira_to_pr.output import OutputSink

DiffKind = Literal["add", "remove", "context", "separator"]

PREVIEW_LINES = 20


@dataclass(frozen=True)
class DiffLine:
    kind: DiffKind
    text: str = ""
    count: int = 0  # elided lines, separators only


# ---------------------------------------------------------------------------
# Core Algorithm
# ---------------------------------------------------------------------------

def split_lines(text: str) -> list[str]:
    return text.split("\n") if text else []


def _lcs_pairs(a: list[str], b: list[str]) -> list[tuple[int, int]]:
    """Index pairs (i, j) of one longest common subsequence, in order."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

    pairs: list[tuple[int, int]] = []
    i, j = m, n
    while i > 0 and j > 0:
        if a[i - 1] == b[j - 1]:
            pairs.append((i - 1, j - 1))
            i -= 1
            j -= 1
        elif dp[i - 1][j] >= dp[i][j - 1]:
            i -= 1
        else:
            j -= 1

    pairs.reverse()
    return pairs


def diff(old_text: str, new_text: str) -> list[DiffLine]:
    """Compute a minimal line edit script turning old_text into new_text."""
    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)

    result: list[DiffLine] = []
    old_idx = new_idx = 0

    for i, j in _lcs_pairs(old_lines, new_lines) + [(len(old_lines), len(new_lines))]:
        result.extend(DiffLine("remove", line) for line in old_lines[old_idx:i])
        result.extend(DiffLine("add", line) for line in new_lines[new_idx:j])
        if i < len(old_lines) and j < len(new_lines):
            result.append(DiffLine("context", old_lines[i]))
        old_idx, new_idx = i + 1, j + 1

    return result


def has_changes(lines: list[DiffLine]) -> bool:
    return any(line.kind in ("add", "remove") for line in lines)


def collapse_context(lines: list[DiffLine], window_size: int = 3) -> list[DiffLine]:
    """
    Keep only lines within window_size of a change. Every elided run
    becomes one separator carrying its length, so separator counts plus
    shown lines always add up to len(lines).
    """
    if not lines:
        return []

    change_indices = [i for i, line in enumerate(lines) if line.kind in ("add", "remove")]
    if not change_indices:
        return [DiffLine("separator", count=len(lines))]

    shown = [False] * len(lines)
    for idx in change_indices:
        for i in range(max(0, idx - window_size), min(len(lines), idx + window_size + 1)):
            shown[i] = True

    result: list[DiffLine] = []
    skipped = 0
    for line, keep in zip(lines, shown):
        if keep:
            if skipped:
                result.append(DiffLine("separator", count=skipped))
                skipped = 0
            result.append(line)
        else:
            skipped += 1
    if skipped:
        result.append(DiffLine("separator", count=skipped))

    return result


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

_HEADER_STYLE = {
    "create": ("+++", "green", "new file"),
    "modify": ("~~~", "yellow", "modified"),
    "delete": ("---", "red", "deleted"),
}


def format_diff_line(line: DiffLine, old_no: int | None = None, new_no: int | None = None) -> str:
    if line.kind == "separator":
        return f"[cyan]  ... {line.count} unchanged lines ...[/]"

    gutter = f"[dim]{'' if old_no is None else old_no:>4} {'' if new_no is None else new_no:>4} │ [/]"
    text = escape(line.text)
    if line.kind == "add":
        return f"{gutter}[green]+ {text}[/]"
    if line.kind == "remove":
        return f"{gutter}[red]- {text}[/]"
    return f"{gutter}[dim]  {text}[/]"


def _render_preview(sink: OutputSink, text: str, sign: str, color: str) -> None:
    lines = split_lines(text)
    for idx, line in enumerate(lines[:PREVIEW_LINES], start=1):
        sink.print(f"[{color}]{sign} {idx:>3} │ {escape(line)}[/]", highlight=False)
    if len(lines) > PREVIEW_LINES:
        sink.print(f"[cyan]  ... and {len(lines) - PREVIEW_LINES} more lines[/]")


def render_file_diff(sink: OutputSink, change: FileChange, original: str | None) -> None:
    icon, color, label = _HEADER_STYLE[change.operation]
    sink.print(f"\n[{color}]{icon}[/] [bold]{escape(change.path)}[/] [dim]({label})[/]", highlight=False)
    sink.print("[dim]" + "─" * 60 + "[/]")

    if change.operation == "create":
        _render_preview(sink, change.content or "", "+", "green")
    elif change.operation == "delete":
        _render_preview(sink, original or "", "-", "red")
    else:
        full = diff(original or "", change.content or "")
        if not has_changes(full):
            sink.print("[dim]  (no changes)[/]")
            return

        old_no = new_no = 1
        for line in collapse_context(full, 3):
            if line.kind == "separator":
                sink.print(format_diff_line(line), highlight=False)
                old_no += line.count
                new_no += line.count
            elif line.kind == "remove":
                sink.print(format_diff_line(line, old_no=old_no), highlight=False)
                old_no += 1
            elif line.kind == "add":
                sink.print(format_diff_line(line, new_no=new_no), highlight=False)
                new_no += 1
            else:
                sink.print(format_diff_line(line, old_no, new_no), highlight=False)
                old_no += 1
                new_no += 1

    sink.print()


def render_diff_summary(sink: OutputSink, changes: list[FileChange]) -> None:
    counts = {"create": 0, "modify": 0, "delete": 0}
    for change in changes:
        counts[change.operation] += 1

    parts = []
    if counts["create"]:
        parts.append(f"[green]{counts['create']} created[/]")
    if counts["modify"]:
        parts.append(f"[yellow]{counts['modify']} modified[/]")
    if counts["delete"]:
        parts.append(f"[red]{counts['delete']} deleted[/]")

    sink.print("\n[bold]📊 Change Summary:[/] " + ", ".join(parts))


def render_all_diffs(
    sink: OutputSink,
    changes: list[FileChange],
    read_original: Callable[[str], str | None],
) -> None:
    sink.print("\n[bold]📝 Diff Preview:[/]")

    for change in changes:
        original = None
        if change.operation in ("modify", "delete"):
            original = read_original(change.path)
            if original is None:
                logger.warning(f"[DIFF] No original content for {change.path}")
        render_file_diff(sink, change, original)

    render_diff_summary(sink, changes)
