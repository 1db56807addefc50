"""Base resolution and sync-need evaluation.

Everything here is pure: no jj or GitHub calls, so the same inputs always
give the same answers.
"""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, List, Mapping, Optional, Set

from ..github.types import PullRequest, PullRequestOptions
from ..typing import Change, ChangeID

logger = logging.getLogger(__name__)


def syncable_changes(changes: List[Change]) -> List[Change]:
    """Mutable changes with a description, in the order given."""
    return [c for c in changes if not c.immutable and c.description.strip()]


def is_draft(title: str) -> bool:
    """Titles mentioning WIP (any case) become draft pull requests."""
    return "wip" in title.lower()


def open_branch_set(existing_prs: Mapping[str, PullRequest], changes: List[Change]) -> Set[str]:
    """Branches that have, or will have after this run, an open pull request."""
    branches = {branch for branch, pr in existing_prs.items() if pr.is_open}
    branches.update(c.branch_name for c in syncable_changes(changes))
    return branches


def resolve_base(change: Change, changes_by_id: Mapping[str, Change],
                 open_branches: AbstractSet[str], trunk_name: str) -> str:
    """Walk first parents until a branch a pull request can target is found."""
    seen: Set[str] = {change.change_id}
    parent_id = change.first_parent
    while parent_id is not None and parent_id not in seen:
        seen.add(parent_id)
        parent = changes_by_id.get(parent_id)
        if parent is None:
            # Left the revset, most likely landed on trunk
            logger.debug(f"{change.short_id}: parent {parent_id[:8]} is outside the stack, targeting {trunk_name}")
            return trunk_name
        if parent.immutable:
            return parent.bookmarks[0] if parent.bookmarks else trunk_name
        if parent.branch_name in open_branches:
            return parent.branch_name
        parent_id = parent.first_parent
    return trunk_name


def desired_options(change: Change, base: str) -> PullRequestOptions:
    """The pull request fields a change should end up with."""
    title = change.title
    return PullRequestOptions(
        title=title,
        body=change.body,
        branch=change.branch_name,
        base=base,
        draft=is_draft(title),
    )


def needs_sync(change: Change, existing: Optional[PullRequest], base: str) -> bool:
    """Whether the change's pull request is missing or out of date."""
    if existing is None:
        return True
    if existing.head_sha != change.commit_id:
        return True
    desired = desired_options(change, base)
    # GitHub trims trailing whitespace from bodies
    return (existing.title != desired.title
            or existing.body.rstrip() != desired.body.rstrip()
            or existing.base_ref != desired.base
            or existing.draft != desired.draft)


@dataclass
class SyncPlan:
    """Per-change sync decisions for one loaded stack."""
    bases: Dict[ChangeID, str] = field(default_factory=dict)
    needs_sync: Dict[ChangeID, bool] = field(default_factory=dict)

    @property
    def any_needed(self) -> bool:
        return any(self.needs_sync.values())

    def changes_to_sync(self, changes: List[Change]) -> List[Change]:
        """Changes needing sync, in the order given."""
        return [c for c in changes if self.needs_sync.get(c.change_id)]


def evaluate(changes: List[Change], existing_prs: Mapping[str, PullRequest], trunk_name: str) -> SyncPlan:
    """Decide which changes need a push or pull request update."""
    changes_by_id = {c.change_id: c for c in changes}
    open_branches = open_branch_set(existing_prs, changes)
    plan = SyncPlan()
    for change in syncable_changes(changes):
        base = resolve_base(change, changes_by_id, open_branches, trunk_name)
        plan.bases[change.change_id] = base
        plan.needs_sync[change.change_id] = needs_sync(change, existing_prs.get(change.branch_name), base)
        logger.debug(f"{change.short_id}: base={base} needs_sync={plan.needs_sync[change.change_id]}")
    return plan
