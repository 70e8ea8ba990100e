"""Stack snapshots for display, merge detection and background refresh."""

import logging
import threading
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..config.models import Stack
from ..models import BranchInfo, MergedPRNotification, PullRequest, StackWithInfo
from ..pr import collect_pr_snapshot
from ..session import Session
from ..stack import children_of
from ..sync import DiagnosticCallback, evaluate_stack

logger = logging.getLogger(__name__)

Snapshot = Tuple[StackWithInfo, ...]

def build_stack_with_info(session: Session, stack: Stack,
                          on_diagnostic: Optional[DiagnosticCallback] = None) -> StackWithInfo:
    """Pair each branch of the stack with its PR and sync status."""
    statuses = evaluate_stack(session, stack, on_diagnostic)
    prs: Dict[str, PullRequest] = collect_pr_snapshot(session.hosting, stack)
    infos: List[BranchInfo] = []
    for branch in stack.branches:
        pr = prs.get(branch)
        infos.append(BranchInfo(
            name=branch,
            pr_number=pr.number if pr else None,
            pr_status=pr.status if pr else 'none',
            sync_status=statuses[branch],
        ))
    return StackWithInfo(stack=stack, branches=tuple(infos))

def build_snapshots(session: Session, on_diagnostic: Optional[DiagnosticCallback] = None) -> Snapshot:
    """Immutable view of every configured stack."""
    return tuple(build_stack_with_info(session, stack, on_diagnostic) for stack in session.config.stacks)

def detect_merged_prs(snapshot: Snapshot) -> List[MergedPRNotification]:
    """One notification per stack, for the lowest branch whose PR is merged.

    Only the lowest merge is reported because a cascade rewrites the child
    list of every merge above it.
    """
    notifications: List[MergedPRNotification] = []
    for info in snapshot:
        for branch in info.branches:
            if branch.pr_status != 'merged' or branch.pr_number is None:
                continue
            notifications.append(MergedPRNotification(
                branch_name=branch.name,
                pr_number=branch.pr_number,
                child_branches=tuple(children_of(info.stack, branch.name)),
                stack_name=info.stack.name,
            ))
            break
    return notifications

class StackPoller:
    """Refreshes stack snapshots on a background thread.

    on_snapshot receives each fresh snapshot, on_merged each merge the
    poller has not reported before. A tick that fires while the previous
    refresh is still running is skipped.
    """

    def __init__(self, session: Session, on_snapshot: Callable[[Snapshot], None],
                 on_merged: Optional[Callable[[MergedPRNotification], None]] = None,
                 interval: Optional[float] = None):
        self.session = session
        self.on_snapshot = on_snapshot
        self.on_merged = on_merged
        if interval is None:
            interval = session.config.settings.poll_interval_ms / 1000.0
        self.interval = interval
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._seen: Set[Tuple[str, int]] = set()

    def refresh(self) -> Optional[Snapshot]:
        """Build and publish one snapshot. Returns None if a refresh was already running."""
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("Refresh still in flight, skipping tick")
            return None
        try:
            # Another process (e.g. `stackboi sync`) may have rewritten the stacks
            self.session.reload()
            snapshot = build_snapshots(self.session)
            self.on_snapshot(snapshot)
            if self.on_merged is not None:
                for notification in detect_merged_prs(snapshot):
                    key = (notification.branch_name, notification.pr_number)
                    if key in self._seen:
                        continue
                    self._seen.add(key)
                    self.on_merged(notification)
            return snapshot
        finally:
            self._refresh_lock.release()

    def forget(self, notification: MergedPRNotification) -> None:
        """Report this merge again on the next refresh."""
        self._seen.discard((notification.branch_name, notification.pr_number))

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"Stack refresh failed: {e}")
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="stackboi-poller", daemon=True)
        self._thread.start()
        logger.debug(f"Polling every {self.interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
