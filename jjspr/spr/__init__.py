"""Stacked PR implementation."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config.models import JJSprConfig
from ..github import GitHubClient
from ..github.types import PullRequest
from ..jj import submit_revset
from ..state import AssociationStore, PRState, StackEntry, state_file_path
from ..typing import Change, ChangeID, JJInterface, JJSprError
from ..util import run_concurrently
from .reconcile import SyncPlan, desired_options, evaluate, open_branch_set, resolve_base, syncable_changes
from .stack import STACK_COMMENT_MARKER, RowState, Stack, stack_comment_bodies

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Everything read during the load phase of a submit."""
    changes: List[Change]
    trunk_name: str
    prs_by_branch: Dict[str, PullRequest]
    plan: SyncPlan
    stack: Stack
    store: AssociationStore

    @property
    def needs_sync(self) -> bool:
        return self.plan.any_needed

    @property
    def revisions_to_sync(self) -> List[Change]:
        """Changes needing sync, base to tip."""
        return self.plan.changes_to_sync(self.changes)


@dataclass(frozen=True)
class RevisionSyncResult:
    """Outcome of creating or updating one revision's pull request."""
    change_id: ChangeID
    branch: str
    title: str
    pr_number: Optional[int] = None
    created: bool = False
    error: Optional[JJSprError] = None


@dataclass
class SyncOutcome:
    """Results of the API phase, in stack order (base to tip)."""
    results: List[RevisionSyncResult] = field(default_factory=list)
    stack: Optional[Stack] = None

    @property
    def error(self) -> Optional[JJSprError]:
        """First error in stack order, if any task failed."""
        for result in self.results:
            if result.error is not None:
                return result.error
        return None

    @property
    def synced(self) -> List[RevisionSyncResult]:
        return [r for r in self.results if r.error is None]

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(frozen=True)
class CommentSummary:
    created: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated


class StackedPR:
    """Keeps a jj revision stack and its GitHub pull requests in sync."""

    def __init__(self, config: JJSprConfig, github: GitHubClient, jj_cmd: JJInterface):
        """Initialize with config, GitHub and jj clients."""
        self.config = config
        self.github = github
        self.jj_cmd = jj_cmd
        self.concurrency: int = config.tool.concurrency
        self.cancel = threading.Event()

    def load(self, revset: Optional[str] = None) -> LoadResult:
        """Read the stack, its pull requests and stored state, and decide what to sync."""
        revset = revset or self.config.repo.default_revset
        self.jj_cmd.git_fetch()
        changes = self.jj_cmd.get_changes(submit_revset(revset))
        store = AssociationStore.load(state_file_path(self.jj_cmd.root(), self.config.tool.state_file))
        trunk_name = self.jj_cmd.get_trunk_name()

        planned = syncable_changes(changes)
        prs_by_branch: Dict[str, PullRequest] = {}
        if planned:
            prs_by_branch = self.github.get_pull_requests_for_branches(
                [c.branch_name for c in planned], self.cancel)

        for change in planned:
            pr = prs_by_branch.get(change.branch_name)
            if pr is not None:
                store.set(change.change_id, StackEntry(
                    pr_number=pr.number, branch=change.branch_name, state=PRState.OPEN, title=change.title))

        self.refresh_departed_entries(store, changes)

        plan = evaluate(changes, prs_by_branch, trunk_name)
        stack = Stack.build(changes, trunk_name, prs_by_branch, plan.needs_sync, store.merged_entries())
        logger.debug(f"Loaded {len(changes)} changes, {len(planned)} to track, "
                     f"{sum(plan.needs_sync.values())} need sync")
        return LoadResult(changes=changes, trunk_name=trunk_name, prs_by_branch=prs_by_branch,
                          plan=plan, stack=stack, store=store)

    def refresh_departed_entries(self, store: AssociationStore, changes: List[Change]) -> None:
        """Refresh stored entries whose change left the local stack.

        Merged pull requests are kept and marked merged. Pull requests closed
        without merging, or that no longer exist, are forgotten.
        """
        local_ids = {c.change_id for c in changes}
        departed = {cid: e for cid, e in store.entries.items() if cid not in local_ids}
        if not departed:
            return

        fetched = self.github.get_pull_requests([e.pr_number for e in departed.values()], self.cancel)
        for change_id, entry in departed.items():
            pr = fetched.get(entry.pr_number)
            if pr is None:
                logger.debug(f"Forgetting {change_id[:8]}: #{entry.pr_number} no longer exists")
                store.remove(change_id)
            elif pr.merged:
                store.set(change_id, entry.model_copy(update={"state": PRState.MERGED}))
            elif pr.state == "closed":
                logger.debug(f"Forgetting {change_id[:8]}: #{entry.pr_number} was closed")
                store.remove(change_id)

    def push_revisions(self, loaded: LoadResult) -> None:
        """Push every revision needing sync, base first, one at a time.

        The first failure raises PushError and nothing after it is pushed.
        """
        for change in loaded.revisions_to_sync:
            logger.debug(f"Pushing {change.short_id} to {change.branch_name}")
            self.jj_cmd.git_push(change.change_id)

    def sync_revisions(self, loaded: LoadResult) -> SyncOutcome:
        """Push, then create or update pull requests for revisions needing sync.

        Push failures raise immediately. API failures are collected per
        revision; every task runs to completion and the outcome carries the
        first error in stack order.
        """
        to_sync = loaded.revisions_to_sync
        if not to_sync:
            return SyncOutcome(stack=loaded.stack)

        start_time = time.time()
        self.push_revisions(loaded)
        logger.debug(f"Push phase took {time.time() - start_time:.2f} seconds")

        changes_by_id = {c.change_id: c for c in loaded.changes}
        open_branches = open_branch_set(loaded.prs_by_branch, loaded.changes)
        lock = threading.Lock()
        collected: Dict[ChangeID, RevisionSyncResult] = {}

        def sync_one(change: Change) -> None:
            base = resolve_base(change, changes_by_id, open_branches, loaded.trunk_name)
            opts = desired_options(change, base)
            with lock:
                existing = loaded.prs_by_branch.get(change.branch_name)
            try:
                if existing is not None:
                    self.github.update_pull_request(existing.number, opts)
                    result = RevisionSyncResult(change.change_id, change.branch_name, opts.title,
                                                pr_number=existing.number)
                else:
                    pr = self.github.create_pull_request(opts)
                    with lock:
                        loaded.prs_by_branch[change.branch_name] = pr
                    result = RevisionSyncResult(change.change_id, change.branch_name, opts.title,
                                                pr_number=pr.number, created=True)
            except JJSprError as e:
                logger.error(f"{change.short_id}: {e}")
                result = RevisionSyncResult(change.change_id, change.branch_name, opts.title, error=e)
            with lock:
                collected[change.change_id] = result

        start_time = time.time()
        run_concurrently(sync_one, to_sync, self.concurrency, self.cancel)
        logger.debug(f"API phase took {time.time() - start_time:.2f} seconds")

        results = [collected[c.change_id] for c in to_sync]
        stack = loaded.stack
        for result in results:
            if result.error is not None:
                stack = stack.with_state(result.change_id, RowState.ERROR, str(result.error))
                continue
            assert result.pr_number is not None
            loaded.store.set(result.change_id, StackEntry(
                pr_number=result.pr_number, branch=result.branch, state=PRState.OPEN, title=result.title))
            stack = stack.with_pr_number(result.change_id, result.pr_number)
            stack = stack.with_state(result.change_id, RowState.SUCCESS)
        loaded.stack = stack
        return SyncOutcome(results=results, stack=stack)

    def update_comments(self, loaded: LoadResult) -> CommentSummary:
        """Create or refresh the stack comment on every open pull request in the stack.

        Saves the association store afterwards.
        """
        bodies = stack_comment_bodies(loaded.stack, self.config.repo.show_pr_titles_in_stack)
        existing = self.github.get_pr_comments_containing(list(bodies), STACK_COMMENT_MARKER, self.cancel)

        created = updated = unchanged = 0
        for number, body in bodies.items():
            comment = existing.get(number)
            if comment is None:
                self.github.create_pr_comment(number, body)
                created += 1
            elif comment.body != body:
                self.github.update_pr_comment(number, comment.id, body)
                updated += 1
            else:
                unchanged += 1
        logger.debug(f"Stack comments: {created} created, {updated} updated, {unchanged} unchanged")

        loaded.store.save()
        return CommentSummary(created=created, updated=updated, unchanged=unchanged)
