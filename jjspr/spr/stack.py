"""Display projection of a revision stack and the stack comment built from it."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..github.types import PullRequest
from ..state import StackEntry
from ..typing import Change, ChangeID

STACK_COMMENT_MARKER = "<!-- managed-by: jjspr -->"
STACK_COMMENT_FOOTER = "*Stack managed with jjspr*"


class RowKind(str, Enum):
    REVISION = "revision"
    MERGED = "merged"
    TRUNK = "trunk"


class RowState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class StackRow:
    """One line of the stack: a local revision, a merged PR or trunk."""
    kind: RowKind
    title: str
    change_id: Optional[ChangeID] = None
    branch: str = ""
    pr_number: Optional[int] = None
    needs_sync: bool = False
    state: RowState = RowState.PENDING
    error: Optional[str] = None
    conflict: bool = False

    @property
    def short_id(self) -> str:
        return self.change_id[:8] if self.change_id else ""

    @property
    def is_mutable(self) -> bool:
        return self.kind == RowKind.REVISION


@dataclass(frozen=True)
class Stack:
    """Rows in display order: tip first, then merged PRs, then trunk."""
    rows: Tuple[StackRow, ...]
    trunk_name: str

    @classmethod
    def build(cls, changes: List[Change], trunk_name: str,
              prs_by_branch: Optional[Mapping[str, PullRequest]] = None,
              needs_sync: Optional[Mapping[ChangeID, bool]] = None,
              merged: Optional[Mapping[str, StackEntry]] = None) -> "Stack":
        """Project changes (ancestors first) into display rows.

        merged holds store entries of merged pull requests whose change is no
        longer local; they are listed newest PR first.
        """
        prs_by_branch = prs_by_branch or {}
        needs_sync = needs_sync or {}
        rows: List[StackRow] = []
        local_ids = {c.change_id for c in changes}

        for change in reversed(changes):
            if change.immutable:
                continue
            pr = prs_by_branch.get(change.branch_name)
            rows.append(StackRow(
                kind=RowKind.REVISION,
                title=change.title,
                change_id=change.change_id,
                branch=change.branch_name,
                pr_number=pr.number if pr else None,
                needs_sync=needs_sync.get(change.change_id, False),
                conflict=change.conflict,
            ))

        merged_entries = [(cid, e) for cid, e in (merged or {}).items() if cid not in local_ids]
        merged_entries.sort(key=lambda item: item[1].pr_number, reverse=True)
        for change_id, entry in merged_entries:
            rows.append(StackRow(
                kind=RowKind.MERGED,
                title=entry.title,
                change_id=ChangeID(change_id),
                branch=entry.branch,
                pr_number=entry.pr_number,
                state=RowState.SUCCESS,
            ))

        rows.append(StackRow(kind=RowKind.TRUNK, title=trunk_name, branch=trunk_name))
        return cls(rows=tuple(rows), trunk_name=trunk_name)

    def mutable_rows(self) -> List[StackRow]:
        """Rows for local revisions, excluding merged PRs and trunk."""
        return [r for r in self.rows if r.is_mutable]

    def _replace_row(self, change_id: str, **changes: object) -> "Stack":
        rows = tuple(
            replace(r, **changes) if r.is_mutable and r.change_id == change_id else r  # type: ignore[arg-type]
            for r in self.rows
        )
        return replace(self, rows=rows)

    def with_state(self, change_id: str, state: RowState, error: Optional[str] = None) -> "Stack":
        """Copy of the stack with one revision's display state changed."""
        return self._replace_row(change_id, state=state, error=error)

    def with_pr_number(self, change_id: str, pr_number: int) -> "Stack":
        return self._replace_row(change_id, pr_number=pr_number)

    def with_states(self, change_ids: Iterable[str], state: RowState) -> "Stack":
        stack = self
        for change_id in change_ids:
            stack = stack.with_state(change_id, state)
        return stack


def render_stack_comment(stack: Stack, current_pr_number: int, show_titles: bool = False) -> str:
    """Build the Markdown stack comment for one pull request.

    The result only depends on the rows' PR numbers, kinds and (optionally)
    titles, so an unchanged stack always renders the same text.
    """
    lines: List[str] = [STACK_COMMENT_MARKER, "**Pull Request Stack**", ""]
    for row in stack.rows:
        if row.kind == RowKind.TRUNK or row.pr_number is None:
            continue
        line = f"- #{row.pr_number}"
        if show_titles and row.title:
            line += f" {row.title}"
        if row.kind == RowKind.MERGED:
            line += " (merged)"
        elif row.pr_number == current_pr_number:
            line += " ←"
        lines.append(line)
    lines.extend(["", "---", STACK_COMMENT_FOOTER])
    return "\n".join(lines)


def stack_comment_bodies(stack: Stack, show_titles: bool = False) -> Dict[int, str]:
    """Comment body for every local revision that has a pull request."""
    return {
        row.pr_number: render_stack_comment(stack, row.pr_number, show_titles)
        for row in stack.mutable_rows()
        if row.pr_number is not None
    }
