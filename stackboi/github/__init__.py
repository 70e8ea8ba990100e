"""GitHub interfaces and implementation."""

import os
import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence, TypeVar, runtime_checkable

import click
import requests
from github import BadCredentialsException, GithubException

from ..config.models import StackboiConfig
from ..errors import (
    HostingRequestFailed,
    NotAuthenticated,
    PRAlreadyExists,
    RepositoryNotOnGitHub,
    TransientNetworkFailure,
)
from ..models import PullRequest
from ..util import retry_once
from .types import parse_pr_payload, to_pull_request

T = TypeVar('T')

# Get module logger
logger = logging.getLogger(__name__)

STACK_LABEL_PREFIX = "stack:"

# Define protocols for GitHub objects
@runtime_checkable
class GitHubUserProtocol(Protocol):
    """Protocol for GitHub user objects (real or fake)."""
    @property
    def login(self) -> str:
        """Get the user's login name."""
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int:
        """Get the PR number."""
        ...

    @property
    def raw_data(self) -> Dict[str, object]:
        """Get the REST payload the object was built from."""
        ...

    def label_names(self) -> List[str]:
        """Get the names of the labels on the PR."""
        ...

    def add_to_labels(self, *labels: str) -> None:
        """Add labels to the pull request."""
        ...

    def remove_from_labels(self, label: str) -> None:
        """Remove a label from the pull request."""
        ...

    def edit(self, base: Optional[str] = None, body: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        ...

    def get_pulls(self, state: str = "open", head: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional head filtering."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        ...

    def create_label(self, name: str, color: str, description: str) -> None:
        """Create a repository label."""
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake).

    This protocol defines the interface that both the real PyGithub library
    and our fake implementation must satisfy.
    """
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name or ID."""
        ...

    def get_user(self) -> GitHubUserProtocol:
        """Get the authenticated user."""
        ...

def find_github_token() -> Optional[str]:
    """Find GitHub token from env var or gh CLI config."""
    import yaml
    from pathlib import Path

    # First try environment variables
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
                if gh_config and "github.com" in gh_config:
                    github_config: Dict[str, object] = gh_config["github.com"]
                    token = github_config.get("oauth_token")
                    if isinstance(token, str) and token:
                        return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
    return None

def _is_already_exists(e: HostingRequestFailed) -> bool:
    if e.status != 422:
        return False
    text = str(e.data).lower()
    return "already_exists" in text or "already exists" in text

class GitHubClient:
    """GitHub client implementation."""
    def __init__(self, config: StackboiConfig, github_client: PyGithubProtocol):
        """Initialize with config and GitHub client implementation.

        Args:
            config: The configuration
            github_client: GitHub client implementation (real or fake)
        """
        self.config = config
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            if not owner or not name:
                raise RepositoryNotOnGitHub(self.config.repo.github_remote)
            self._repo = self._call("get repo", lambda: self.client.get_repo(f"{owner}/{name}"))
        return self._repo

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        """Run a PyGithub call, mapping its failures onto our error taxonomy."""
        try:
            return fn()
        except BadCredentialsException as e:
            raise NotAuthenticated(f"GitHub rejected the credentials during {what}") from e
        except GithubException as e:
            if e.status >= 500:
                raise TransientNetworkFailure(f"GitHub returned {e.status} during {what}") from e
            raise HostingRequestFailed(what, e.status, e.data) from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientNetworkFailure(f"Network error during {what}: {e}") from e

    def authenticated_login(self) -> str:
        """Login of the token's user; raises NotAuthenticated when the token is bad."""
        return self._call("get user", lambda: self.client.get_user().login)

    def find_pr(self, branch: str) -> Optional[PullRequest]:
        """Find the pull request whose head is branch.

        An open PR wins over closed/merged ones; otherwise the newest one.
        """
        owner = self.config.repo.github_repo_owner
        logger.info(f"> github find pr : {branch}")

        def query() -> List[Dict[str, object]]:
            pulls = self.repo.get_pulls(state="all", head=f"{owner}:{branch}")
            return [pr.raw_data for pr in pulls]

        raw_pulls = retry_once(lambda: self._call(f"find pr {branch}", query), f"find pr {branch}")
        candidates: List[PullRequest] = []
        for raw in raw_pulls:
            payload = parse_pr_payload(raw)
            if payload is None or payload.head.ref != branch:
                continue
            candidates.append(to_pull_request(payload))
        if not candidates:
            logger.debug(f"No PR found for branch {branch}")
            return None
        candidates.sort(key=lambda pr: (pr.state == 'open', pr.number), reverse=True)
        return candidates[0]

    def create_pr(self, base: str, head: str, title: str, body: str,
                  labels: Sequence[str], draft: bool = False) -> Optional[PullRequest]:
        """Create a pull request. Returns None when the response could not be parsed."""
        logger.info(f"> github create : {head} -> {base} : {title}")
        try:
            gh_pr = self._call(f"create pr {head}",
                               lambda: self.repo.create_pull(title=title, body=body, base=base,
                                                             head=head, draft=draft))
        except HostingRequestFailed as e:
            if e.status == 422 and "pull request already exists" in str(e.data).lower():
                raise PRAlreadyExists(head) from e
            raise
        if labels:
            logger.info(f"> github add labels #{gh_pr.number} : {list(labels)}")
            self._call("add labels", lambda: gh_pr.add_to_labels(*labels))
        payload = parse_pr_payload(gh_pr.raw_data)
        return to_pull_request(payload) if payload else None

    def ensure_label(self, name: str, description: str, color: str) -> None:
        """Create a repository label, treating 'already exists' as success."""
        logger.info(f"> github create label : {name}")
        try:
            self._call(f"create label {name}",
                       lambda: self.repo.create_label(name=name, color=color, description=description))
        except HostingRequestFailed as e:
            if not _is_already_exists(e):
                raise
            logger.debug(f"Label {name} already exists")

    def set_position_label(self, number: int, label: str) -> None:
        """Make label the only stack position label on PR number."""
        gh_pr = self._call(f"get pr #{number}", lambda: self.repo.get_pull(number))
        current = self._call(f"get labels #{number}", gh_pr.label_names)
        for old in current:
            if old.startswith(STACK_LABEL_PREFIX) and old != label:
                logger.info(f"> github remove label #{number} : {old}")
                self._call("remove label", lambda: gh_pr.remove_from_labels(old))
        if label not in current:
            logger.info(f"> github add labels #{number} : {[label]}")
            self._call("add labels", lambda: gh_pr.add_to_labels(label))

    def update_base(self, number: int, base: str) -> None:
        gh_pr = self._call(f"get pr #{number}", lambda: self.repo.get_pull(number))
        payload = parse_pr_payload(gh_pr.raw_data)
        if payload is not None and payload.base.ref == base:
            return
        logger.info(f"> github update base #{number} : {base}")
        self._call(f"update base #{number}", lambda: gh_pr.edit(base=base))

    def update_body(self, number: int, body: str) -> None:
        """Replace the PR body, skipping the call when nothing changed."""
        gh_pr = self._call(f"get pr #{number}", lambda: self.repo.get_pull(number))
        payload = parse_pr_payload(gh_pr.raw_data)
        if payload is not None and (payload.body or "") == body:
            logger.debug(f"Body of #{number} unchanged")
            return
        logger.info(f"> github update body #{number}")
        self._call(f"update body #{number}", lambda: gh_pr.edit(body=body))

    def open_in_browser(self, url: str) -> None:
        logger.info(f"> github open : {url}")
        click.launch(url)

def create_github_client(config: StackboiConfig, token: Optional[str] = None) -> GitHubClient:
    """Create a GitHub client backed by real PyGithub."""
    from github import Auth, Github
    from .adapters import PyGithubAdapter

    token = token or find_github_token()
    if not token:
        raise NotAuthenticated("No GitHub token found. Set GITHUB_TOKEN or log in with 'gh auth login'.")
    base_url = None
    if config.repo.github_host and config.repo.github_host != "github.com":
        base_url = f"https://{config.repo.github_host}/api/v3"
    real_github = Github(auth=Auth.Token(token), base_url=base_url) if base_url else Github(auth=Auth.Token(token))
    return GitHubClient(config, PyGithubAdapter(real_github))
