"""Persisted mapping from jj change ids to the pull requests created for them."""

import logging
import os
import tempfile
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from ..typing import StateIOError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class PRState(str, Enum):
    """State of a tracked pull request."""
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class StackEntry(BaseModel):
    """A tracked pull request for one change."""
    pr_number: int = Field(alias="prNumber")
    branch: str
    state: PRState = PRState.OPEN
    title: str = ""

    class Config:
        """Pydantic config."""
        populate_by_name = True


class StateFile(BaseModel):
    """On-disk document."""
    version: int = STATE_VERSION
    entries: Dict[str, StackEntry] = Field(default_factory=dict)


def state_file_path(workspace_root: str, file_name: str) -> str:
    """Location of the state file inside the workspace's .jj directory."""
    return os.path.join(workspace_root, ".jj", file_name)


class AssociationStore:
    """Change id -> pull request associations that survive rewrites.

    Loading never fails: a missing, unreadable or corrupt file gives an empty
    store. Saving is only done after a fully successful run and raises
    StateIOError on failure.
    """

    def __init__(self, path: Optional[str] = None, entries: Optional[Dict[str, StackEntry]] = None):
        self.path = path
        self.entries: Dict[str, StackEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: str) -> "AssociationStore":
        """Load the store from path, falling back to an empty store."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            logger.debug(f"No state file at {path}, starting empty")
            return cls(path)
        except OSError as e:
            logger.warning(f"Could not read state file {path}, starting empty: {e}")
            return cls(path)

        try:
            data = StateFile.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt state file {path}: {e.error_count()} error(s)")
            return cls(path)

        if data.version != STATE_VERSION:
            logger.warning(f"Ignoring state file {path} with unsupported version {data.version}")
            return cls(path)

        logger.debug(f"Loaded {len(data.entries)} state entries from {path}")
        return cls(path, data.entries)

    def save(self) -> None:
        """Write the store atomically."""
        if not self.path:
            raise StateIOError("state path not set")
        document = StateFile(version=STATE_VERSION, entries=self.entries)
        payload = document.model_dump_json(by_alias=True, indent=2)
        directory = os.path.dirname(self.path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".jjspr-state-", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.write("\n")
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StateIOError(f"save state to {self.path}: {e}") from e
        logger.debug(f"Saved {len(self.entries)} state entries to {self.path}")

    def get(self, change_id: str) -> Optional[StackEntry]:
        return self.entries.get(change_id)

    def set(self, change_id: str, entry: StackEntry) -> None:
        self.entries[change_id] = entry

    def remove(self, change_id: str) -> None:
        self.entries.pop(change_id, None)

    def is_merged(self, change_id: str) -> bool:
        entry = self.entries.get(change_id)
        return entry is not None and entry.state == PRState.MERGED

    def merged_entries(self) -> Dict[str, StackEntry]:
        """All entries whose pull request was merged."""
        return {cid: e for cid, e in self.entries.items() if e.state == PRState.MERGED}
