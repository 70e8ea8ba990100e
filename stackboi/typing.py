"""Common types used across the codebase."""

from typing import List, NewType, Optional, Protocol, Sequence

from .config.models import Stack, StackboiConfig
from .models import PullRequest, RebaseOutcome

# Create NewTypes for commit identifiers
CommitHash = NewType('CommitHash', str)

class GitInterface(Protocol):
    """What the core expects from the local repository."""
    def git_root(self) -> str: ...

    def current_branch(self) -> Optional[str]: ...

    def branch_tip(self, branch: str) -> Optional[CommitHash]: ...

    def commits_between(self, parent: str, head: str) -> List[str]: ...

    def merge_base(self, a: str, b: str) -> Optional[CommitHash]: ...

    def remote_tracking_tip(self, branch: str) -> Optional[CommitHash]: ...

    def remote_url(self, remote: str) -> Optional[str]: ...

    def fetch(self, refs: Sequence[str]) -> None: ...

    def rebase(self, branch: str, onto: str, upstream: Optional[str] = None) -> RebaseOutcome: ...

    def rebase_in_progress(self) -> Optional[str]: ...

    def checkout(self, branch: str) -> None: ...

    def delete_branch(self, branch: str) -> None: ...

class HostingInterface(Protocol):
    """What the core expects from the hosting service."""
    def find_pr(self, branch: str) -> Optional[PullRequest]: ...

    def create_pr(self, base: str, head: str, title: str, body: str,
                  labels: Sequence[str], draft: bool = False) -> Optional[PullRequest]: ...

    def ensure_label(self, name: str, description: str, color: str) -> None: ...

    def open_in_browser(self, url: str) -> None: ...

    def set_position_label(self, number: int, label: str) -> None: ...

    def update_base(self, number: int, base: str) -> None: ...

    def update_body(self, number: int, body: str) -> None: ...
class ConfigStoreProtocol(Protocol):
    """Persistence for the stack list and settings."""
    def load(self) -> StackboiConfig: ...

    def save(self, config: StackboiConfig) -> None: ...

    def load_stacks(self) -> List[Stack]: ...

    def save_stacks(self, stacks: List[Stack]) -> None: ...
