"""Rebase cascade: replay the children of a merged branch onto its parent.

A cascade moves ``idle -> fetching -> rebasing`` and ends in ``success`` or
``error``. Children are rebased one at a time in stack order; the first
conflict halts the cascade and leaves the later children untouched.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from ..config.models import Stack
from ..errors import GitCommandFailed, RebaseConflict, StackboiError
from ..models import MergedPRNotification, SyncProgress, SyncState, SyncStatus
from ..pr import refresh_stack_prs
from ..session import Session
from ..stack import get_stack, parent_of, remove_branch
from ..typing import CommitHash
from ..util import retry_once

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

class CascadeCancelled(StackboiError):
    """Raised inside a cascade when cancellation is requested between children."""

class RebaseCascade:
    """One cascade instance for one merged branch.

    Instances are single use: run() drives the state machine to a terminal
    state and returns the final progress.
    """

    def __init__(self, session: Session, notification: MergedPRNotification,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.session = session
        self.notification = notification
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()
        self._progress = SyncProgress(
            state='idle',
            message=f"PR #{notification.pr_number} for {notification.branch_name} was merged",
            merged_branch=notification.branch_name,
            child_branches=tuple(notification.child_branches),
        )
        self._original_branch: Optional[str] = None

    @property
    def progress(self) -> SyncProgress:
        return self._progress.snapshot()

    def cancel(self) -> None:
        """Stop before the next child; the child being rebased is finished first."""
        logger.info(f"Cancellation requested for sync of {self.notification.stack_name}")
        self.cancel_event.set()

    def _transition(self, state: SyncState, message: str) -> None:
        logger.debug(f"Cascade {self.notification.stack_name}: {self._progress.state} -> {state}: {message}")
        self._progress.state = state
        self._progress.message = message
        self._notify()

    def _notify(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self._progress.snapshot())

    def _set_status(self, branch: str, status: SyncStatus) -> None:
        self._progress.branch_statuses[branch] = status

    def run(self) -> SyncProgress:
        """Run the cascade to completion.

        Raises:
            CascadeInProgress: another cascade is running for the same stack.
        """
        stack_name = self.notification.stack_name
        registry = self.session.cascades
        registry.begin(stack_name, self._progress)
        children = self._progress.child_branches
        registry.mark_pending(children)
        for child in children:
            self._set_status(child, 'pending-sync')
        try:
            self._original_branch = self.session.git.current_branch()
            stack = get_stack(self.session.config, stack_name)
            if stack is None:
                raise StackboiError(f"No stack named '{stack_name}'")
            self._fetch(stack)
            self._rebase_children(stack)
            self._finish(stack)
        except RebaseConflict as e:
            self._progress.error = str(e)
            self._transition('error', f"Resolve the conflicts in {e.branch}, then run sync again")
        except StackboiError as e:
            logger.error(f"Sync of stack {stack_name} failed: {e}")
            self._progress.error = str(e)
            self._restore_checkout()
            self._transition('error', str(e))
        finally:
            registry.finish(stack_name)
        return self.progress

    def _fetch(self, stack: Stack) -> None:
        git = self.session.git
        parent = parent_of(stack, self.notification.branch_name)
        refs = [parent, self.notification.branch_name, *self._progress.child_branches]
        self._transition('fetching', f"Fetching {', '.join(refs)}")
        retry_once(lambda: git.fetch(refs), "fetch")

    def _rebase_children(self, stack: Stack) -> None:
        git = self.session.git
        merged = self.notification.branch_name
        parent = parent_of(stack, merged)
        onto = git.remote_tracking_tip(parent) or git.branch_tip(parent)
        if onto is None:
            raise StackboiError(f"Cannot find the tip of {parent}")

        children = self._progress.child_branches
        current_tips: Dict[str, CommitHash] = {}
        for branch in (merged, *children):
            tip = git.branch_tip(branch) or git.remote_tracking_tip(branch)
            if tip is not None:
                current_tips[branch] = tip
        original_tips = self.session.cascades.remember_tips(stack.name, merged, current_tips)
        if merged not in original_tips:
            logger.warning(f"Old tip of {merged} not found, replaying every commit not in {parent}")

        self._transition('rebasing', f"Rebasing {len(children)} branches onto {parent}")
        # Each child drops the commits of its parent's pre-cascade tip
        previous = merged
        for child in children:
            if self.cancel_event.is_set():
                raise CascadeCancelled(f"Sync cancelled before rebasing {child}")
            self._progress.current_branch = child
            self._progress.message = f"Rebasing {child}"
            self._notify()
            onto = self._rebase_child(child, onto, original_tips.get(previous))
            previous = child

    def _rebase_child(self, child: str, onto: CommitHash, upstream: Optional[CommitHash]) -> CommitHash:
        git = self.session.git
        registry = self.session.cascades
        old_tip = git.branch_tip(child)
        if old_tip is None:
            self._set_status(child, 'unknown')
            raise StackboiError(f"Branch {child} not found")

        if git.merge_base(old_tip, onto) == onto:
            logger.info(f"{child} already contains {onto[:8]}, nothing to rebase")
        elif git.rebase(child, onto=onto, upstream=upstream) == 'conflict':
            registry.record_conflict(child, onto)
            registry.clear_pending(child)
            self._set_status(child, 'conflicts')
            raise RebaseConflict(child)

        registry.clear_pending(child)
        registry.clear_conflict(child)
        self._set_status(child, 'needs-push')
        new_tip = git.branch_tip(child)
        if new_tip is None:
            raise StackboiError(f"Branch {child} disappeared during rebase")
        return new_tip

    def _finish(self, stack: Stack) -> None:
        merged = self.notification.branch_name
        git = self.session.git
        settings = self.session.config.settings

        config = remove_branch(self.session.config, stack.name, merged)
        self.session.save(config)
        self.session.cascades.forget_tips(stack.name, merged)
        logger.info(f"Removed {merged} from stack {stack.name}")

        delete_merged = settings.delete_merged_branches and git.branch_tip(merged) is not None
        self._restore_checkout(avoid=merged if delete_merged else None, fallback=parent_of(stack, merged))
        if delete_merged:
            try:
                git.delete_branch(merged)
            except GitCommandFailed as e:
                logger.warning(f"Could not delete {merged}: {e}")

        remaining = get_stack(config, stack.name)
        if remaining is not None:
            try:
                refresh_stack_prs(self.session, remaining)
            except StackboiError as e:
                logger.warning(f"Stack {stack.name} was synced but its PRs were not updated: {e}")

        self._progress.current_branch = None
        rebased = len(self._progress.child_branches)
        self._transition('success', f"Sync completed successfully! Rebased {rebased} branches")

    def _restore_checkout(self, avoid: Optional[str] = None, fallback: Optional[str] = None) -> None:
        """Check out the branch the user was on, or fallback if it is gone."""
        git = self.session.git
        if git.rebase_in_progress() is not None:
            return
        target = self._original_branch
        if target is None or target == avoid or git.branch_tip(target) is None:
            target = fallback
        if target is None or git.branch_tip(target) is None:
            return
        if git.current_branch() == target:
            return
        try:
            git.checkout(target)
        except GitCommandFailed as e:
            logger.warning(f"Could not check out {target}: {e}")

def sync_merged(session: Session, notification: MergedPRNotification,
                on_progress: Optional[ProgressCallback] = None,
                cancel_event: Optional[threading.Event] = None) -> SyncProgress:
    """Run a cascade for one merged-PR notification and return its final progress."""
    return RebaseCascade(session, notification, on_progress, cancel_event).run()

def pending_children(progress: SyncProgress) -> List[str]:
    """Children a halted cascade never reached."""
    return [b for b in progress.child_branches if progress.branch_statuses.get(b) == 'pending-sync']
