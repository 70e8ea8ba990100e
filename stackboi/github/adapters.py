"""Adapter classes to wrap PyGithub objects with our protocol interfaces."""

from typing import Dict, List, Optional
import logging

from github import Github
from github.Repository import Repository
from github.PullRequest import PullRequest as PyGithubPullRequest
from github.GithubObject import NotSet

from . import (
    PyGithubProtocol,
    GitHubRepoProtocol,
    GitHubPullRequestProtocol,
    GitHubUserProtocol,
)

logger = logging.getLogger(__name__)


class PyGithubUserAdapter(GitHubUserProtocol):
    """Adapter for PyGithub NamedUser or AuthenticatedUser objects."""

    def __init__(self, user: object) -> None:
        self._user = user

    @property
    def login(self) -> str:
        """Get the user's login name."""
        return getattr(self._user, 'login')


class PyGithubPullRequestAdapter(GitHubPullRequestProtocol):
    """Adapter for PyGithub PullRequest objects."""

    def __init__(self, pr: PyGithubPullRequest) -> None:
        self._pr = pr

    @property
    def number(self) -> int:
        return self._pr.number

    @property
    def raw_data(self) -> Dict[str, object]:
        return self._pr.raw_data

    def label_names(self) -> List[str]:
        return [label.name for label in self._pr.get_labels()]

    def add_to_labels(self, *labels: str) -> None:
        """Add labels to the pull request."""
        self._pr.add_to_labels(*labels)

    def remove_from_labels(self, label: str) -> None:
        self._pr.remove_from_labels(label)

    def edit(self, base: Optional[str] = None, body: Optional[str] = None) -> None:
        """Edit the pull request."""
        # Convert None to NotSet for PyGithub
        self._pr.edit(
            base=base if base is not None else NotSet,
            body=body if body is not None else NotSet
        )


class PyGithubRepoAdapter(GitHubRepoProtocol):
    """Adapter for PyGithub Repository objects."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        return PyGithubPullRequestAdapter(self._repo.get_pull(number))

    def get_pulls(self, state: str = "open", head: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional head filtering."""
        # Convert empty strings to NotSet for PyGithub
        pulls = self._repo.get_pulls(state=state, head=head if head else NotSet)
        return [PyGithubPullRequestAdapter(pr) for pr in pulls]

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        pr = self._repo.create_pull(title=title, body=body, base=base, head=head, draft=draft)
        return PyGithubPullRequestAdapter(pr)

    def create_label(self, name: str, color: str, description: str) -> None:
        self._repo.create_label(name=name, color=color, description=description)


class PyGithubAdapter(PyGithubProtocol):
    """Adapter for the main PyGithub object."""

    def __init__(self, github: Github) -> None:
        self._github = github

    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        return PyGithubRepoAdapter(self._github.get_repo(full_name_or_id))

    def get_user(self) -> GitHubUserProtocol:
        """Get the authenticated user."""
        return PyGithubUserAdapter(self._github.get_user())
