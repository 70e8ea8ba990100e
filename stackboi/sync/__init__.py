"""Sync status evaluation.

Classifies how a stacked branch relates to its parent's tip and to its own
remote tracking branch. Nothing here writes to the repository.
"""

import concurrent.futures
import logging
from typing import AbstractSet, Callable, Dict, List, Mapping, Optional, Set

from ..config.models import Stack
from ..errors import StackboiError
from ..models import SyncStatus
from ..session import Session
from ..stack import parent_of
from ..typing import GitInterface

logger = logging.getLogger(__name__)

# Highest priority first
STATUS_PRIORITY: List[SyncStatus] = [
    'conflicts',
    'pending-sync',
    'needs-rebase',
    'needs-push',
    'unknown',
    'up-to-date',
]

DiagnosticCallback = Callable[[str, str], None]

def _log_diagnostic(branch: str, message: str) -> None:
    logger.warning(f"Could not determine sync status of {branch}: {message}")

def pick_status(found: AbstractSet[SyncStatus]) -> SyncStatus:
    """Highest-priority status among those that hold."""
    for status in STATUS_PRIORITY:
        if status in found:
            return status
    return 'up-to-date'

def _remote_status(git: GitInterface, branch: str, local: str, pending: bool) -> Optional[SyncStatus]:
    remote = git.remote_tracking_tip(branch)
    if remote is None:
        return 'needs-push'
    if remote == local:
        return None
    base = git.merge_base(local, remote)
    if base == remote:
        # Local ahead
        return 'needs-push'
    if base == local:
        # Remote ahead; pulling is not part of the stack workflow
        return 'pending-sync' if pending else 'unknown'
    # Diverged, e.g. after a local rebase
    return 'needs-push'

def evaluate_branch(git: GitInterface, stack: Stack, branch: str,
                    pending: AbstractSet[str] = frozenset(),
                    conflicts: Optional[Mapping[str, str]] = None,
                    on_diagnostic: Optional[DiagnosticCallback] = None) -> SyncStatus:
    """Compute the sync status of one stacked branch.

    conflicts maps branches a cascade stopped on to the commit they were
    being rebased onto. Never raises: read failures yield 'unknown' and are
    reported through on_diagnostic (default: a warning in the log).
    """
    report = on_diagnostic or _log_diagnostic
    try:
        local = git.branch_tip(branch)
        if local is None:
            report(branch, "local branch not found")
            return 'unknown'

        if git.rebase_in_progress() == branch:
            return 'conflicts'
        if conflicts and branch in conflicts:
            onto = conflicts[branch]
            if git.merge_base(local, onto) != onto:
                return 'conflicts'
            # Finished by hand: the branch now sits on the commit it was being rebased onto
            logger.info(f"Conflict on {branch} has been resolved")

        found: Set[SyncStatus] = set()
        is_pending = branch in pending
        if is_pending:
            found.add('pending-sync')

        parent = parent_of(stack, branch)
        parent_tip = git.branch_tip(parent) or git.remote_tracking_tip(parent)
        if parent_tip is None:
            report(branch, f"parent branch {parent} not found")
            found.add('unknown')
        elif git.merge_base(local, parent_tip) != parent_tip:
            found.add('needs-rebase')

        remote_status = _remote_status(git, branch, local, is_pending)
        if remote_status is not None:
            found.add(remote_status)

        status = pick_status(found)
        logger.debug(f"Sync status of {branch}: {status} (conditions: {sorted(found)})")
        return status
    except StackboiError as e:
        report(branch, str(e))
        return 'unknown'

def evaluate_stack(session: Session, stack: Stack,
                   on_diagnostic: Optional[DiagnosticCallback] = None) -> Dict[str, SyncStatus]:
    """Evaluate every branch of a stack, in stack order.

    Branches are independent, so they are evaluated in a thread pool when
    settings.concurrency > 0.
    """
    pending = session.cascades.pending()
    conflicts = session.cascades.conflicts()
    concurrency = session.config.settings.concurrency

    def evaluate(branch: str) -> SyncStatus:
        return evaluate_branch(session.git, stack, branch, pending, conflicts, on_diagnostic)

    if concurrency > 0 and len(stack.branches) > 1:
        with concurrent.futures.ThreadPoolExecutor(max_workers=concurrency) as executor:
            statuses = list(executor.map(evaluate, stack.branches))
    else:
        statuses = [evaluate(branch) for branch in stack.branches]
    result = dict(zip(stack.branches, statuses))
    for branch in conflicts:
        if result.get(branch) not in (None, 'conflicts', 'unknown'):
            session.cascades.clear_conflict(branch)
    return result
