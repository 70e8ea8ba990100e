"""Pull request orchestration for stacked branches.

Derives the base, title, position label and body of each branch's PR from
the stack ordering, and creates PRs idempotently.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from ..config.models import Stack
from ..errors import (
    HostingRequestFailed,
    NotAuthenticated,
    PRAlreadyExists,
    RepositoryNotOnGitHub,
    StackboiError,
    TransientNetworkFailure,
)
from ..models import PullRequest
from ..session import Session
from ..stack import branch_position, parent_of, require_stack_branch
from ..typing import GitInterface, HostingInterface

logger = logging.getLogger(__name__)

BRANCH_PREFIX_PATTERN = re.compile(r'^(feature|feat|fix|bugfix|hotfix|chore|refactor|docs|test|ci)/', re.IGNORECASE)

TREE_BRANCH = "├─"
TREE_LAST_BRANCH = "└─"
CURRENT_MARKER = " ◀ this PR"
FOOTER = "_Created with [stackboi](https://github.com/stackboi/stackboi)_"

@dataclass(frozen=True)
class CreatePRResult:
    """Outcome of create_or_get."""
    branch: str
    pr_number: int
    pr_url: str
    created: bool

    @property
    def already_existed(self) -> bool:
        return not self.created

def resolve_parent(stack: Stack, branch_name: str) -> str:
    """Base branch for the branch's PR: the previous branch, or the stack base."""
    return parent_of(stack, branch_name)

def generate_title_from_branch_name(branch_name: str) -> str:
    """Generate PR title from branch name.

    Strips a conventional prefix like ``feature/`` and turns the kebab-case
    or snake_case remainder into Title Case.
    """
    clean_name = BRANCH_PREFIX_PATTERN.sub("", branch_name, count=1)
    words = [w for w in re.split(r'[-_]+', clean_name) if w]
    return " ".join(w[0].upper() + w[1:].lower() for w in words)

def derive_title(git: GitInterface, branch_name: str, parent_branch: str) -> str:
    """First commit subject on branch_name that is not on parent_branch."""
    try:
        subjects = git.commits_between(parent_branch, branch_name)
    except StackboiError as e:
        logger.debug(f"Could not list commits {parent_branch}..{branch_name}: {e}")
        subjects = []
    if subjects:
        return subjects[0]
    return generate_title_from_branch_name(branch_name)

def compute_position(stack: Stack, branch_name: str) -> Tuple[int, int]:
    """1-indexed position of the branch and the stack size."""
    return branch_position(stack, branch_name)

def position_label(position: int, total: int) -> str:
    return f"stack:{position}/{total}"

def ensure_stack_label(hosting: HostingInterface, position: int, total: int, color: str) -> str:
    """Create the position label if it is missing and return its name."""
    label = position_label(position, total)
    hosting.ensure_label(label, f"Branch {position} of {total} in stack", color)
    return label

def safe_find_pr(hosting: HostingInterface, branch_name: str) -> Optional[PullRequest]:
    """find_pr that degrades a repeated network failure or a rejected request to 'no PR'."""
    try:
        return hosting.find_pr(branch_name)
    except (TransientNetworkFailure, HostingRequestFailed, RepositoryNotOnGitHub) as e:
        logger.warning(f"Could not look up PR for {branch_name}: {e}")
        return None

def collect_pr_snapshot(hosting: Optional[HostingInterface], stack: Stack) -> Dict[str, PullRequest]:
    """Current PR of every branch in the stack that has one."""
    if hosting is None:
        return {}
    snapshot: Dict[str, PullRequest] = {}
    for branch in stack.branches:
        pr = safe_find_pr(hosting, branch)
        if pr is not None:
            snapshot[branch] = pr
    return snapshot

def render_stack_visualization(stack: Stack, current_branch: Optional[str], hosting_reachable: bool,
                               prs: Optional[Mapping[str, PullRequest]] = None) -> str:
    """Render the stack as a markdown tree for PR bodies.

    Output depends only on the stack order and the PR snapshot, so
    re-rendering an unchanged stack yields identical text.
    """
    prs = prs or {}
    lines: List[str] = ["### Stack Overview", "", "```", f"{stack.base_branch} (base)"]
    for i, branch in enumerate(stack.branches):
        prefix = TREE_LAST_BRANCH if i == len(stack.branches) - 1 else TREE_BRANCH
        pr_info = ""
        pr = prs.get(branch)
        if hosting_reachable and pr is not None:
            pr_info = f" [#{pr.number} {pr.status}]"
        marker = CURRENT_MARKER if branch == current_branch else ""
        lines.append(f"{prefix} {branch}{pr_info}{marker}")
    lines.extend(["```", "", FOOTER])
    return "\n".join(lines)

def _existing_result(branch_name: str, pr: PullRequest) -> CreatePRResult:
    logger.info(f"PR already exists for branch {branch_name}: #{pr.number}")
    return CreatePRResult(branch=branch_name, pr_number=pr.number, pr_url=pr.url, created=False)

def create_or_get(session: Session, branch_name: Optional[str] = None, draft: bool = False,
                  open_browser: Optional[bool] = None) -> CreatePRResult:
    """Create the PR for a stacked branch, or return the one that exists.

    Raises:
        NotAuthenticated: no hosting client.
        BranchNotInAnyStack / BranchIsBaseBranch: the branch is not a stacked branch.
    """
    hosting = session.hosting
    if hosting is None:
        raise NotAuthenticated()

    if branch_name is None:
        branch_name = session.git.current_branch()
        if branch_name is None:
            raise StackboiError("HEAD is detached; pass the branch name explicitly")

    stack = require_stack_branch(session.config, branch_name)

    existing = hosting.find_pr(branch_name)
    if existing is not None:
        return _existing_result(branch_name, existing)

    parent_branch = resolve_parent(stack, branch_name)
    title = derive_title(session.git, branch_name, parent_branch)
    position, total = compute_position(stack, branch_name)
    body = render_stack_visualization(stack, branch_name, True, collect_pr_snapshot(hosting, stack))
    label = ensure_stack_label(hosting, position, total, session.config.settings.label_color)

    try:
        created = hosting.create_pr(base=parent_branch, head=branch_name, title=title,
                                    body=body, labels=[label], draft=draft)
    except PRAlreadyExists:
        # Someone else created it between our lookup and the create
        raced = hosting.find_pr(branch_name)
        if raced is None:
            raise
        return _existing_result(branch_name, raced)

    pr = hosting.find_pr(branch_name) or created
    if pr is None:
        raise StackboiError("PR was created but could not retrieve its information")
    logger.info(f"Created PR #{pr.number} for {branch_name} ({position}/{total}) against {parent_branch}")

    if open_browser is None:
        open_browser = session.config.settings.open_browser
    if open_browser:
        hosting.open_in_browser(pr.url)

    return CreatePRResult(branch=branch_name, pr_number=pr.number, pr_url=pr.url, created=True)

def refresh_stack_prs(session: Session, stack: Stack) -> List[str]:
    """Bring every open PR of the stack in line with the current ordering.

    Updates the position label, the base branch and the stack overview in
    the body. Returns the branches whose PRs were refreshed.
    """
    hosting = session.hosting
    if hosting is None:
        return []
    prs = collect_pr_snapshot(hosting, stack)
    refreshed: List[str] = []
    for branch in stack.branches:
        pr = prs.get(branch)
        if pr is None or pr.state != 'open':
            continue
        position, total = compute_position(stack, branch)
        try:
            label = ensure_stack_label(hosting, position, total, session.config.settings.label_color)
            hosting.set_position_label(pr.number, label)
            hosting.update_base(pr.number, resolve_parent(stack, branch))
            hosting.update_body(pr.number, render_stack_visualization(stack, branch, True, prs))
        except (TransientNetworkFailure, HostingRequestFailed) as e:
            logger.warning(f"Could not refresh PR #{pr.number} for {branch}: {e}")
            continue
        refreshed.append(branch)
    return refreshed
