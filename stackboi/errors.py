"""Error taxonomy for stackboi operations."""

from typing import Optional


class StackboiError(Exception):
    """Base class for all stackboi errors."""


class NotARepository(StackboiError):
    """Raised when the working directory is not inside a git repository."""

    def __init__(self, path: Optional[str] = None):
        msg = "Not a git repository" if not path else f"Not a git repository: {path}"
        super().__init__(msg)
        self.path = path


class NotAuthenticated(StackboiError):
    """Raised when no usable GitHub credentials are available."""

    def __init__(self, detail: str = "GitHub not authenticated. Set GITHUB_TOKEN or run 'gh auth login' first."):
        super().__init__(detail)


class BranchNotInAnyStack(StackboiError):
    """Raised when a branch is not tracked by any stack."""

    def __init__(self, branch: str):
        super().__init__(f"Branch '{branch}' is not part of any stack")
        self.branch = branch


class BranchIsBaseBranch(StackboiError):
    """Raised when a stack's base branch is used where a stacked branch is required."""

    def __init__(self, branch: str, stack_name: str):
        super().__init__(f"Branch '{branch}' is the base branch of stack '{stack_name}', not a stack branch")
        self.branch = branch
        self.stack_name = stack_name


class PRAlreadyExists(StackboiError):
    """Raised by the hosting layer when a PR for the head branch already exists."""

    def __init__(self, branch: str, number: Optional[int] = None):
        suffix = f": #{number}" if number is not None else ""
        super().__init__(f"PR already exists for branch '{branch}'{suffix}")
        self.branch = branch
        self.number = number


class RebaseConflict(StackboiError):
    """Raised when a rebase stops on unresolved conflicts."""

    def __init__(self, branch: str, detail: str = ""):
        msg = f"Conflicts detected while rebasing '{branch}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.branch = branch


class TransientNetworkFailure(StackboiError):
    """Raised for timeouts, dropped connections and 5xx responses from the host."""


class MalformedHostingResponse(StackboiError):
    """Raised when a hosting payload cannot be parsed."""


class GitCommandFailed(StackboiError):
    """Raised when a git command exits non-zero."""

    def __init__(self, command: str, detail: str = ""):
        super().__init__(f"Git command failed: git {command}" + (f"\n{detail}" if detail else ""))
        self.command = command
        self.detail = detail


class CascadeInProgress(StackboiError):
    """Raised when a cascade is requested for a stack that already has one running."""

    def __init__(self, stack_name: str, merged_branch: str):
        super().__init__(f"A sync is already running for stack '{stack_name}' (merged branch '{merged_branch}')")
        self.stack_name = stack_name
        self.merged_branch = merged_branch


class HostingRequestFailed(StackboiError):
    """Raised when the hosting service rejects a request (4xx other than auth)."""

    def __init__(self, what: str, status: int, data: object = None):
        super().__init__(f"GitHub returned {status} during {what}: {data}")
        self.what = what
        self.status = status
        self.data = data


class RepositoryNotOnGitHub(StackboiError):
    """Raised when the remote URL does not name a GitHub owner and repository."""

    def __init__(self, remote: str = "origin"):
        super().__init__(f"Remote '{remote}' is not a GitHub repository")
        self.remote = remote


class InvalidStack(StackboiError):
    """Raised when a stack would violate its ordering invariants."""
