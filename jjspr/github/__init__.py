"""GitHub interfaces and implementation."""

import os
import logging
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, runtime_checkable
from urllib.parse import urlparse

import requests
import yaml
from github import GithubException, UnknownObjectException

from ..config.models import JJSprConfig
from ..typing import APIError, AmbiguousRemoteState, ConfigError
from ..util import ensure, run_concurrently
from .types import IssueComment, PullRequest, PullRequestOptions, Repo

# Get module logger
logger = logging.getLogger(__name__)

# Define protocols for GitHub objects
@runtime_checkable
class GitHubRefProtocol(Protocol):
    """Protocol for GitHub ref objects (base/head references)."""
    @property
    def ref(self) -> str:
        """Get the ref name (e.g., 'main', 'push-abcdefgh')."""
        ...

    @property
    def sha(self) -> str:
        """Get the commit SHA."""
        ...

@runtime_checkable
class GitHubIssueCommentProtocol(Protocol):
    """Protocol for comments on a pull request's conversation."""
    @property
    def id(self) -> int:
        ...

    @property
    def body(self) -> Optional[str]:
        ...

    def edit(self, body: str) -> None:
        """Replace the comment body."""
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int:
        ...

    @property
    def title(self) -> str:
        ...

    @property
    def body(self) -> Optional[str]:
        ...

    @property
    def state(self) -> str:
        """Get the PR state (open, closed)."""
        ...

    @property
    def merged(self) -> bool:
        ...

    @property
    def draft(self) -> bool:
        ...

    @property
    def base(self) -> GitHubRefProtocol:
        ...

    @property
    def head(self) -> GitHubRefProtocol:
        ...

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             state: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

    def convert_to_draft(self) -> None:
        ...

    def mark_ready_for_review(self) -> None:
        ...

    def get_issue_comments(self) -> List[GitHubIssueCommentProtocol]:
        ...

    def get_issue_comment(self, id: int) -> GitHubIssueCommentProtocol:
        ...

    def create_issue_comment(self, body: str) -> GitHubIssueCommentProtocol:
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        ...

    def get_pulls(self, state: str = "open", head: str = "",
                  base: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake)."""
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        ...


def get_repo_from_remote(remote: str, host: str = "github.com") -> Repo:
    """Return repo information from a remote URL.

    Supports HTTPS and SSH forms, with or without a trailing .git:
    - https://github.com/owner/name.git
    - git@github.com:owner/name.git
    - ssh://git@github.com/owner/name.git
    """
    remote = remote.strip()
    if remote.startswith(("https://", "ssh://")):
        parsed = urlparse(remote)
        remote_host = parsed.hostname or ""
        path = parsed.path.lstrip("/")
    elif "@" in remote and ":" in remote:
        user_host, path = remote.split(":", 1)
        remote_host = user_host.split("@", 1)[1]
    else:
        raise ConfigError(f"unknown remote format {remote!r}")

    if remote_host != host:
        raise ConfigError(f"only {host} remotes are allowed, got {remote_host!r}")

    if path.endswith(".git"):
        path = path[:-len(".git")]
    parts = [p for p in path.split("/") if p]
    if len(parts) != 2:
        raise ConfigError(f"expected remote path of the form owner/name, got {path!r}")
    return Repo(owner=parts[0], name=parts[1])


def find_github_token(host: str = "github.com") -> Optional[str]:
    """Find GitHub token from env vars, gh CLI config, or `gh auth token`."""
    for var in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(var)
        if token:
            return token

    # Then try gh CLI config at ~/.config/gh/hosts.yml
    try:
        gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                gh_config = yaml.safe_load(f)
            host_config = gh_config.get(host) if isinstance(gh_config, dict) else None
            if isinstance(host_config, dict):
                token = host_config.get("oauth_token")
                if isinstance(token, str) and token:
                    return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")

    # Finally ask gh itself, which also covers keyring storage
    try:
        result = subprocess.run(["gh", "auth", "token", "--hostname", host],
                                capture_output=True, text=True, check=False)
    except FileNotFoundError:
        logger.debug("gh CLI not installed")
        return None
    token = result.stdout.strip()
    if result.returncode == 0 and token:
        return token
    return None


@contextmanager
def api_call(description: str) -> Iterator[None]:
    """Translate PyGithub and transport failures into APIError."""
    try:
        yield
    except (GithubException, requests.exceptions.RequestException) as e:
        raise APIError(f"{description}: {e}") from e


def to_pull_request(gh_pr: GitHubPullRequestProtocol) -> PullRequest:
    """Convert a PyGithub (or fake) pull request into our record."""
    state = gh_pr.state
    return PullRequest(
        number=gh_pr.number,
        title=gh_pr.title or "",
        body=gh_pr.body or "",
        base_ref=gh_pr.base.ref,
        head_ref=gh_pr.head.ref,
        head_sha=gh_pr.head.sha,
        draft=bool(gh_pr.draft),
        state=state,
        # Only closed PRs can be merged; avoids a lazy fetch on list results
        merged=bool(gh_pr.merged) if state == "closed" else False,
    )


class GitHubClient:
    """GitHub client implementation."""
    def __init__(self, config: JJSprConfig, github_client: PyGithubProtocol,
                 repo: Optional[Repo] = None):
        """Initialize with config and GitHub client implementation.

        Args:
            config: The configuration
            github_client: GitHub client implementation (real or fake)
            repo: Repository to operate on; defaults to the configured owner/name
        """
        self.config = config
        self.client = github_client
        if repo is None:
            owner = config.repo.github_repo_owner
            name = config.repo.github_repo_name
            if not owner or not name:
                raise ConfigError("GitHub repository owner/name could not be determined")
            repo = Repo(owner=owner, name=name)
        self.repo_info = repo
        self.concurrency = config.tool.concurrency
        self._repo: Optional[GitHubRepoProtocol] = None
        self._repo_lock = threading.Lock()

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        with self._repo_lock:
            if self._repo is None:
                with api_call(f"get repo {self.repo_info.full_name}"):
                    self._repo = self.client.get_repo(self.repo_info.full_name)
            return ensure(self._repo)

    def get_pull_requests_for_branches(self, branches: Sequence[str],
                                       cancel: Optional[threading.Event] = None) -> Dict[str, PullRequest]:
        """Get the open pull request for each branch.

        Expects at most one open pull request per branch and raises
        AmbiguousRemoteState otherwise. Branches without one are omitted.
        """
        lock = threading.Lock()
        result: Dict[str, PullRequest] = {}
        owner = self.repo_info.owner

        def lookup(branch: str) -> None:
            logger.info(f"> github find pull request for {branch}")
            with api_call(f"list pull requests for {branch}"):
                pulls = self.repo.get_pulls(state="open", head=f"{owner}:{branch}")
                prs = [to_pull_request(pr) for pr in pulls]
            prs = [pr for pr in prs if pr.is_open and pr.head_ref == branch]
            if not prs:
                return
            if len(prs) > 1:
                raise AmbiguousRemoteState(branch, len(prs))
            with lock:
                result[branch] = prs[0]

        run_concurrently(lookup, list(dict.fromkeys(branches)), self.concurrency, cancel)
        logger.debug(f"Found open pull requests for {len(result)}/{len(branches)} branches")
        return result

    def get_pull_request(self, number: int) -> Optional[PullRequest]:
        """Get a pull request by number, or None if it no longer exists."""
        logger.info(f"> github get #{number}")
        with api_call(f"get pull request #{number}"):
            try:
                return to_pull_request(self.repo.get_pull(number))
            except UnknownObjectException:
                logger.debug(f"Pull request #{number} not found")
                return None

    def get_pull_requests(self, numbers: Sequence[int],
                          cancel: Optional[threading.Event] = None) -> Dict[int, Optional[PullRequest]]:
        """Fetch several pull requests by number concurrently."""
        unique = list(dict.fromkeys(numbers))
        fetched = run_concurrently(self.get_pull_request, unique, self.concurrency, cancel)
        return dict(zip(unique, fetched))

    def create_pull_request(self, opts: PullRequestOptions) -> PullRequest:
        """Create a new pull request."""
        logger.info(f"> github create {opts.branch} -> {opts.base} : {opts.title}")
        with api_call(f"create pull request for {opts.branch}"):
            gh_pr = self.repo.create_pull(title=opts.title, body=opts.body, base=opts.base,
                                          head=opts.branch, draft=opts.draft)
            return to_pull_request(gh_pr)

    def update_pull_request(self, number: int, opts: PullRequestOptions) -> None:
        """Update title, body, base and draft state of an existing pull request."""
        logger.info(f"> github update #{number} : {opts.title}")
        with api_call(f"update pull request #{number}"):
            gh_pr = self.repo.get_pull(number)
            gh_pr.edit(title=opts.title, body=opts.body, base=opts.base)
            if bool(gh_pr.draft) != opts.draft:
                if opts.draft:
                    logger.info(f"> github convert #{number} to draft")
                    gh_pr.convert_to_draft()
                else:
                    logger.info(f"> github mark #{number} ready for review")
                    gh_pr.mark_ready_for_review()

    def get_pr_comments_containing(self, numbers: Sequence[int], contents: str,
                                   cancel: Optional[threading.Event] = None) -> Dict[int, IssueComment]:
        """Return, per pull request, the last comment containing contents."""
        lock = threading.Lock()
        result: Dict[int, IssueComment] = {}

        def list_comments(number: int) -> None:
            logger.info(f"> github list comments #{number}")
            with api_call(f"list comments on #{number}"):
                comments = [IssueComment(id=c.id, body=c.body)
                            for c in self.repo.get_pull(number).get_issue_comments()]
            matching = [c for c in comments if contents in (c.body or "")]
            if matching:
                with lock:
                    result[number] = matching[-1]

        run_concurrently(list_comments, list(dict.fromkeys(numbers)), self.concurrency, cancel)
        return result

    def create_pr_comment(self, number: int, body: str) -> IssueComment:
        """Add a comment to a pull request."""
        logger.info(f"> github add comment #{number}")
        with api_call(f"comment on #{number}"):
            comment = self.repo.get_pull(number).create_issue_comment(body)
            return IssueComment(id=comment.id, body=comment.body)

    def update_pr_comment(self, number: int, comment_id: int, body: str) -> None:
        """Replace the body of an existing comment."""
        logger.info(f"> github update comment #{number}/{comment_id}")
        with api_call(f"update comment {comment_id} on #{number}"):
            self.repo.get_pull(number).get_issue_comment(comment_id).edit(body)

    def pull_request_url(self, number: int) -> str:
        return f"https://{self.config.repo.github_host}/{self.repo_info.full_name}/pull/{number}"
