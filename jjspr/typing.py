"""Common types used across the codebase."""

from dataclasses import dataclass, field
from typing import List, NewType, Optional, Protocol, Tuple

# NewTypes for jj identifiers
ChangeID = NewType('ChangeID', str)
CommitID = NewType('CommitID', str)


class JJSprError(Exception):
    """Base class for every error jjspr reports."""


class QueryError(JJSprError):
    """Reading the revision graph from jj failed."""


class PushError(JJSprError):
    """Pushing a change's bookmark failed."""

    def __init__(self, change_id: str, message: str):
        super().__init__(f"push {change_id[:8]}: {message}")
        self.change_id = change_id


class APIError(JJSprError):
    """A GitHub API call failed."""


class AmbiguousRemoteState(APIError):
    """More than one open pull request exists for a single branch."""

    def __init__(self, branch: str, count: int):
        super().__init__(f"branch {branch!r} unexpectedly has {count} open pull requests")
        self.branch = branch
        self.count = count


class StateIOError(JJSprError):
    """The persisted association store could not be read or written."""


class ConfigError(JJSprError):
    """Configuration could not be determined (remote, token, ...)."""


@dataclass(frozen=True)
class Change:
    """A revision in the local jj revision graph."""
    change_id: ChangeID
    commit_id: CommitID
    immutable: bool = False
    description: str = ""
    branch_name: str = ""
    bookmarks: Tuple[str, ...] = ()
    parents: Tuple[ChangeID, ...] = ()
    conflict: bool = False

    @property
    def short_id(self) -> str:
        return self.change_id[:8]

    @property
    def title(self) -> str:
        """First line of the description."""
        return self.description.split("\n", 1)[0].rstrip()

    @property
    def body(self) -> str:
        """Everything after the first line, without surrounding blank lines."""
        parts = self.description.split("\n", 1)
        if len(parts) < 2:
            return ""
        return parts[1].lstrip("\n").rstrip()

    @property
    def first_parent(self) -> Optional[ChangeID]:
        return self.parents[0] if self.parents else None


@dataclass(frozen=True)
class RebaseResult:
    """Outcome of rebasing one stack root."""
    change_id: ChangeID
    has_conflict: bool = False
    skipped_empty: bool = False


@dataclass(frozen=True)
class StackRoot:
    """Root of a local stack that is not yet based on trunk."""
    change_id: ChangeID
    description: str = ""
    bookmarks: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def short_id(self) -> str:
        return self.change_id[:8]


class JJInterface(Protocol):
    """What the engine expects from the jj collaborator."""

    def get_changes(self, revset: str) -> List[Change]:
        """List changes matching revset, ancestors first."""
        ...

    def git_push(self, change_id: ChangeID) -> None:
        """Push the change's bookmark, creating it if needed."""
        ...

    def git_fetch(self) -> None:
        """Fetch from the git remote."""
        ...

    def get_trunk_name(self) -> str:
        """Name of the trunk bookmark."""
        ...

    def get_remote_url(self, name: str) -> str:
        """URL of the named git remote."""
        ...

    def root(self) -> str:
        """Workspace root directory."""
        ...

    def get_stack_roots_to_rebase(self, heads: str) -> List[StackRoot]:
        """Roots of local stacks not yet based on trunk."""
        ...

    def rebase(self, change_id: ChangeID, destination: str) -> RebaseResult:
        """Rebase change_id and descendants onto destination."""
        ...
