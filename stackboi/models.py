"""Derived records shared by the evaluator, the cascade and the view.

None of these are persisted; they are rebuilt from git and GitHub on every
query.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Literal, Optional, Tuple

from .config.models import Stack

SyncStatus = Literal['up-to-date', 'needs-push', 'needs-rebase', 'conflicts', 'pending-sync', 'unknown']
PRStatus = Literal['open', 'draft', 'merged', 'closed', 'none']
SyncState = Literal['idle', 'fetching', 'rebasing', 'success', 'error']
RebaseOutcome = Literal['success', 'conflict']

@dataclass(frozen=True)
class PullRequest:
    """Pull request as seen by the hosting service."""
    number: int
    url: str
    state: Literal['open', 'closed', 'merged']
    is_draft: bool = False
    base_ref: str = ""
    head_ref: str = ""
    title: str = ""
    labels: Tuple[str, ...] = ()

    @property
    def status(self) -> PRStatus:
        """Collapse state and draft flag into a single PR status."""
        if self.state == 'open' and self.is_draft:
            return 'draft'
        return self.state

    def __str__(self) -> str:
        return f"#{self.number} {self.status}"

@dataclass(frozen=True)
class BranchInfo:
    """Per-branch status row."""
    name: str
    pr_number: Optional[int] = None
    pr_status: PRStatus = 'none'
    sync_status: SyncStatus = 'unknown'

@dataclass(frozen=True)
class StackWithInfo:
    """A stack paired with one BranchInfo per member branch, same order."""
    stack: Stack
    branches: Tuple[BranchInfo, ...] = ()

    def branch(self, name: str) -> Optional[BranchInfo]:
        for info in self.branches:
            if info.name == name:
                return info
        return None

@dataclass
class SyncProgress:
    """Progress of one rebase cascade."""
    state: SyncState = 'idle'
    message: str = ""
    merged_branch: str = ""
    child_branches: Tuple[str, ...] = ()
    current_branch: Optional[str] = None
    error: Optional[str] = None
    branch_statuses: Dict[str, SyncStatus] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.state in ('success', 'error')

    def snapshot(self) -> 'SyncProgress':
        """Copy safe to hand to callbacks."""
        return replace(self, branch_statuses=dict(self.branch_statuses))

@dataclass(frozen=True)
class MergedPRNotification:
    """Emitted once per detected merge."""
    branch_name: str
    pr_number: int
    child_branches: Tuple[str, ...]
    stack_name: str
