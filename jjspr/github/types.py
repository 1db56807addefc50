"""Type definitions for GitHub API objects."""

from typing import Optional
from pydantic import BaseModel

class PullRequest(BaseModel):
    """Snapshot of a pull request as read from GitHub."""
    number: int
    title: str
    body: str = ""
    base_ref: str
    head_ref: str
    head_sha: str = ""
    draft: bool = False
    state: str = "open"
    merged: bool = False

    class Config:
        """Pydantic config."""
        frozen = True

    @property
    def is_open(self) -> bool:
        return self.state == "open"

class PullRequestOptions(BaseModel):
    """Fields used when creating or updating a pull request."""
    title: str
    body: str
    branch: str
    base: str
    draft: bool = False

    class Config:
        """Pydantic config."""
        frozen = True

class IssueComment(BaseModel):
    """A comment on a pull request's conversation."""
    id: int
    body: Optional[str] = None

    class Config:
        """Pydantic config."""
        frozen = True

class Repo(BaseModel):
    """A GitHub repository."""
    owner: str
    name: str

    class Config:
        """Pydantic config."""
        frozen = True

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"
