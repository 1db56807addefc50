"""Pydantic models for config types."""

from typing import Optional
from pydantic import BaseModel, Field

class RepoConfig(BaseModel):
    """Repository configuration."""
    github_remote: str = "origin"
    github_host: str = "github.com"
    trunk_branch: str = "main"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None
    default_revset: str = "@"
    show_pr_titles_in_stack: bool = False

    class Config:
        """Pydantic config."""
        extra = "allow"

class UserConfig(BaseModel):
    """User configuration."""
    log_jj_commands: bool = True

    class Config:
        """Pydantic config."""
        extra = "allow"

class ToolConfig(BaseModel):
    """Tool configuration."""
    concurrency: int = Field(default=8, ge=1)
    state_file: str = "jjspr-state.json"

    class Config:
        """Pydantic config."""
        extra = "allow"

class JJSprConfig(BaseModel):
    """Full jjspr configuration."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)

    class Config:
        """Pydantic config."""
        extra = "allow"
