"""jj interfaces and implementation."""

import json
import logging
import shlex
import subprocess
from typing import Any, Dict, List, Optional, Sequence

from ..config.models import JJSprConfig
from ..typing import (
    Change, ChangeID, CommitID, JJInterface, PushError, QueryError, RebaseResult, StackRoot
)

# Get module logger
logger = logging.getLogger(__name__)

# One JSON object per line; %s is replaced with the user's git_push_bookmark template
LOG_TEMPLATE = (
    '"{\\"id\\": \\"" ++ change_id ++ "\\", '
    '\\"commit_id\\": \\"" ++ commit_id ++ "\\", '
    '\\"immutable\\": " ++ immutable ++ ", '
    '\\"conflict\\": " ++ conflict ++ ", '
    '\\"description\\": " ++ json(description) ++ ", '
    '\\"bookmarks\\": " ++ json(bookmarks) ++ ", '
    '\\"git_push_bookmark\\": \\"" ++ %s ++ "\\", '
    '\\"parents\\": " ++ json(parents) ++ "}\\n"'
)

DEFAULT_PUSH_BOOKMARK_TEMPLATE = '"push-" ++ change_id.short()'


class JJCommandError(Exception):
    """A jj subprocess exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str):
        super().__init__(f"jj {' '.join(args[:3])} failed ({returncode}): {stderr.strip()}")
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr


def submit_revset(revset: str) -> str:
    """Revset covering trunk up to the user's revset, without empty changes."""
    return f"trunk()::({revset}) & ~empty()"


def stack_roots_revset(heads: str) -> str:
    """Roots of the stacks under heads that are not yet descendants of trunk."""
    return f"roots((trunk()..({heads})) ~ trunk()::) & mutable()"


def _bookmark_names(raw: Any) -> List[str]:
    names: List[str] = []
    for bookmark in raw or []:
        if isinstance(bookmark, str):
            names.append(bookmark)
        elif isinstance(bookmark, dict) and bookmark.get("name"):
            # Remote bookmarks carry a "remote" key; only local names are usable as bases
            if bookmark.get("remote"):
                continue
            names.append(str(bookmark["name"]))
    return names


def _parent_ids(raw: Any) -> List[ChangeID]:
    parents: List[ChangeID] = []
    for parent in raw or []:
        if isinstance(parent, str):
            parents.append(ChangeID(parent))
        elif isinstance(parent, dict) and parent.get("change_id"):
            parents.append(ChangeID(str(parent["change_id"])))
    return parents


def parse_change(data: Dict[str, Any]) -> Change:
    """Build a Change from one decoded log line, validating required fields."""
    try:
        change_id = str(data["id"])
        commit_id = str(data["commit_id"])
    except KeyError as e:
        raise QueryError(f"jj log output is missing field {e}") from e
    if not change_id or not commit_id:
        raise QueryError("jj log output has an empty change or commit id")

    change = Change(
        change_id=ChangeID(change_id),
        commit_id=CommitID(commit_id),
        immutable=bool(data.get("immutable", False)),
        description=str(data.get("description") or ""),
        branch_name=str(data.get("git_push_bookmark") or ""),
        bookmarks=tuple(_bookmark_names(data.get("bookmarks"))),
        parents=tuple(_parent_ids(data.get("parents"))),
        conflict=bool(data.get("conflict", False)),
    )

    if not change.immutable:
        if not change.branch_name:
            raise QueryError(f"change {change.short_id} has no push bookmark name")
        if not change.parents:
            raise QueryError(f"change {change.short_id} has no parents")
    return change


def parse_changes(output: str) -> List[Change]:
    """Parse jj log output (one JSON object per line) into changes."""
    changes: List[Change] = []
    for line_no, line in enumerate(output.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise QueryError(f"malformed jj log output on line {line_no}: {e}") from e
        if not isinstance(data, dict):
            raise QueryError(f"malformed jj log output on line {line_no}: expected an object")
        changes.append(parse_change(data))
    return changes


class RealJJ(JJInterface):
    """jj implementation backed by the jj binary."""

    def __init__(self, config: JJSprConfig, cwd: Optional[str] = None):
        """Initialize with config."""
        self.config = config
        self.cwd = cwd
        self._push_bookmark_template: Optional[str] = None

    def run_cmd(self, args: Sequence[str]) -> str:
        """Run a jj command and return its stdout."""
        display = ["<template>" if i > 0 and args[i - 1] == "-T" else a for i, a in enumerate(args)]
        message = f"> jj {shlex.join(display)}"
        if self.config.user.log_jj_commands:
            logger.info(message)
        else:
            logger.debug(message)
        try:
            result = subprocess.run(
                ["jj", *args], cwd=self.cwd, capture_output=True, text=True, check=False
            )
        except FileNotFoundError as e:
            raise JJCommandError(args, 127, "jj executable not found") from e
        if result.returncode != 0:
            logger.debug(f"jj stderr: {result.stderr.strip()}")
            raise JJCommandError(args, result.returncode, result.stderr)
        return result.stdout

    def push_bookmark_template(self) -> str:
        """The user's templates.git_push_bookmark setting."""
        if self._push_bookmark_template is None:
            try:
                template = self.run_cmd(["config", "get", "templates.git_push_bookmark"]).strip()
            except JJCommandError as e:
                raise QueryError(f"get template 'git_push_bookmark': {e}") from e
            self._push_bookmark_template = template or DEFAULT_PUSH_BOOKMARK_TEMPLATE
        return self._push_bookmark_template

    def get_changes(self, revset: str) -> List[Change]:
        """List changes matching revset, ancestors first."""
        template = LOG_TEMPLATE % self.push_bookmark_template()
        try:
            output = self.run_cmd(["log", "--no-graph", "--reversed", "-T", template, "-r", revset])
        except JJCommandError as e:
            raise QueryError(str(e)) from e
        changes = parse_changes(output)
        logger.debug(f"get_changes({revset!r}): {len(changes)} changes")
        return changes

    def git_push(self, change_id: ChangeID) -> None:
        """Push the change's bookmark, creating it if needed."""
        try:
            self.run_cmd(["git", "push", "--remote", self.config.repo.github_remote,
                          "-c", f"change_id({change_id})"])
        except JJCommandError as e:
            raise PushError(change_id, e.stderr.strip() or str(e)) from e

    def git_fetch(self) -> None:
        """Fetch from the configured remote."""
        try:
            self.run_cmd(["git", "fetch", "--remote", self.config.repo.github_remote])
        except JJCommandError as e:
            raise QueryError(f"git fetch: {e}") from e

    def get_trunk_name(self) -> str:
        """Name of the first bookmark on trunk(), or the configured fallback."""
        trunk = self.get_changes("trunk()")
        if trunk and trunk[0].bookmarks:
            return trunk[0].bookmarks[0]
        return self.config.repo.trunk_branch

    def get_remote_url(self, name: str) -> str:
        """URL of the named git remote."""
        try:
            output = self.run_cmd(["git", "remote", "list"])
        except JJCommandError as e:
            raise QueryError(f"jj git remote list: {e}") from e
        for line in output.splitlines():
            trimmed = line.strip()
            if not trimmed:
                continue
            parts = trimmed.split(None, 1)
            if len(parts) != 2:
                raise QueryError(f"unknown remote format {line!r}")
            if parts[0] == name:
                return parts[1].strip()
        raise QueryError(f"remote named {name!r} not found")

    def root(self) -> str:
        """Workspace root directory."""
        try:
            return self.run_cmd(["root"]).strip()
        except JJCommandError as e:
            raise QueryError(f"not in a jj workspace: {e}") from e

    def get_stack_roots_to_rebase(self, heads: str) -> List[StackRoot]:
        """Roots of local stacks under heads that are not based on trunk."""
        return [
            StackRoot(change_id=c.change_id, description=c.description, bookmarks=c.bookmarks)
            for c in self.get_changes(stack_roots_revset(heads))
        ]

    def rebase(self, change_id: ChangeID, destination: str) -> RebaseResult:
        """Rebase change_id and its descendants, abandoning commits that become empty."""
        descendants = [c.change_id for c in self.get_changes(f"change_id({change_id})::")]
        try:
            self.run_cmd(["rebase", "-s", f"change_id({change_id})", "-d", destination,
                          "--skip-emptied"])
        except JJCommandError as e:
            raise QueryError(f"rebase {change_id[:8]}: {e}") from e

        if not descendants:
            descendants = [change_id]
        survivors = self.get_changes(" | ".join(f"change_id({d})" for d in descendants))
        surviving_ids = {c.change_id for c in survivors}
        return RebaseResult(
            change_id=change_id,
            has_conflict=any(c.conflict for c in survivors),
            skipped_empty=change_id not in surviving_ids,
        )
