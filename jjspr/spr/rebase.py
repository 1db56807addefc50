"""Rebase local stacks onto the latest trunk."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..typing import JJInterface, JJSprError, RebaseResult, StackRoot

logger = logging.getLogger(__name__)

# Local bookmarks plus the working copy
DEFAULT_REBASE_HEADS = "bookmarks() | @"


class RootState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass(frozen=True)
class RootOutcome:
    """What happened to one stack root."""
    root: StackRoot
    state: RootState
    error: Optional[str] = None

    @classmethod
    def from_result(cls, root: StackRoot, result: RebaseResult) -> "RootOutcome":
        if result.skipped_empty:
            return cls(root, RootState.SKIPPED)
        if result.has_conflict:
            return cls(root, RootState.CONFLICT)
        return cls(root, RootState.SUCCESS)


@dataclass
class RebaseSummary:
    trunk_name: str
    outcomes: List[RootOutcome] = field(default_factory=list)

    def count(self, state: RootState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)

    @property
    def up_to_date(self) -> bool:
        return not self.outcomes

    @property
    def failed(self) -> bool:
        return any(o.state == RootState.ERROR for o in self.outcomes)


def sync_stacks(jj_cmd: JJInterface, heads: str = DEFAULT_REBASE_HEADS,
                on_progress: Optional[Callable[[RootOutcome], None]] = None) -> RebaseSummary:
    """Fetch, then rebase every stack root under heads onto trunk().

    A failing rebase is recorded on its root and the remaining roots are
    still processed. Fetch and root discovery failures propagate.
    """
    jj_cmd.git_fetch()
    trunk_name = jj_cmd.get_trunk_name()
    roots = jj_cmd.get_stack_roots_to_rebase(heads)
    summary = RebaseSummary(trunk_name=trunk_name)
    if not roots:
        logger.debug("No stacks to rebase")
        return summary

    for root in roots:
        if on_progress:
            on_progress(RootOutcome(root, RootState.IN_PROGRESS))
        try:
            outcome = RootOutcome.from_result(root, jj_cmd.rebase(root.change_id, "trunk()"))
        except JJSprError as e:
            logger.error(f"Rebase of {root.short_id} failed: {e}")
            outcome = RootOutcome(root, RootState.ERROR, str(e))
        summary.outcomes.append(outcome)
        if on_progress:
            on_progress(outcome)
    return summary
