"""Pretty formatting utilities for CLI output."""

import shutil
import sys
from typing import IO, Callable, List, Optional

from ..spr.rebase import RebaseSummary, RootOutcome, RootState
from ..spr.stack import RowKind, RowState, Stack, StackRow

ROW_SYMBOLS = {
    RowState.PENDING: "○",
    RowState.IN_PROGRESS: "◐",
    RowState.SUCCESS: "✓",
    RowState.ERROR: "✗",
}

ROOT_SYMBOLS = {
    RootState.PENDING: "○",
    RootState.IN_PROGRESS: "◐",
    RootState.SUCCESS: "✓",
    RootState.SKIPPED: "✓",
    RootState.CONFLICT: "✗",
    RootState.ERROR: "✗",
}


def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    try:
        return shutil.get_terminal_size().columns
    except OSError:
        return 80


def header(text: str, use_emoji: bool = True) -> str:
    """Create a boxed header with optional emoji."""
    width = max(get_term_width(), len(text) + 8)

    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "🥞 " if use_emoji else ""
    # The emoji renders two columns wide
    text_width = len(text) + (3 if use_emoji else 0)

    result = [
        f"┌{h_line}┐",
        f"{v_line} {emoji}{text}{' ' * (width - text_width - 3)}{v_line}",
        f"└{h_line}┘"
    ]

    return "\n".join(result)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)


def format_row(row: StackRow, pr_url: Optional[Callable[[int], str]] = None) -> List[str]:
    """Lines for one stack row."""
    if row.kind == RowKind.TRUNK:
        return [f"◆ {row.title}"]
    if row.kind == RowKind.MERGED:
        return [f"✓ #{row.pr_number} {row.title} (merged)"]

    symbol = ROW_SYMBOLS[row.state]
    title = row.title or "(no description)"
    line = f"{symbol} {row.short_id} {title}"
    if row.pr_number is not None:
        line += f"  #{row.pr_number}"
    if row.needs_sync and row.state == RowState.PENDING:
        line += "  (needs sync)"
    if row.conflict:
        line += "  conflict"
    lines = [line]
    if row.error:
        lines.append(f"    error: {row.error}")
    elif pr_url is not None and row.pr_number is not None:
        lines.append(f"    {pr_url(row.pr_number)}")
    return lines


def format_stack(stack: Stack, pr_url: Optional[Callable[[int], str]] = None) -> str:
    """Render the stack tip first, trunk last."""
    lines: List[str] = []
    for i, row in enumerate(stack.rows):
        lines.extend(f"   {line}" for line in format_row(row, pr_url))
        if i < len(stack.rows) - 1:
            lines.append("   │")
    return "\n".join(lines)


def print_stack(stack: Stack, pr_url: Optional[Callable[[int], str]] = None,
                file: Optional[IO[str]] = None) -> None:
    if file is None:
        file = sys.stdout
    print("", file=file)
    print(format_stack(stack, pr_url), file=file)
    print("", file=file)


def format_root(outcome: RootOutcome) -> str:
    root = outcome.root
    title = root.description.split("\n", 1)[0] or "(no description)"
    line = f"{ROOT_SYMBOLS[outcome.state]} {root.short_id} {title}"
    if outcome.state == RootState.SKIPPED:
        line += "  skipped (already in trunk)"
    elif outcome.state == RootState.CONFLICT:
        line += "  conflict"
    elif outcome.state == RootState.ERROR and outcome.error:
        line += f"  {outcome.error}"
    return line


def format_rebase_summary(summary: RebaseSummary) -> str:
    """Per-root outcomes followed by a one-line total."""
    if summary.up_to_date:
        return "Already up to date - no stacks to rebase."

    lines = [f"Rebased onto {summary.trunk_name}:", ""]
    lines.extend(f"   {format_root(o)}" for o in summary.outcomes)
    lines.append("")

    success = summary.count(RootState.SUCCESS)
    skipped = summary.count(RootState.SKIPPED)
    conflicts = summary.count(RootState.CONFLICT)
    errors = summary.count(RootState.ERROR)
    if not (skipped or conflicts or errors):
        lines.append(f"{success} stack(s) rebased successfully.")
    else:
        parts = []
        if success:
            parts.append(f"{success} rebased")
        if skipped:
            parts.append(f"{skipped} skipped")
        if conflicts:
            parts.append(f"{conflicts} with conflicts")
        if errors:
            parts.append(f"{errors} failed")
        lines.append(", ".join(parts) + ".")
        if conflicts:
            lines.append("Resolve conflicts with `jj resolve` or by editing the conflicted revisions.")
    return "\n".join(lines)
