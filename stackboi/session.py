"""Explicit per-command context passed through every operation."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

from .config.models import StackboiConfig
from .errors import CascadeInProgress
from .models import SyncProgress
from .typing import CommitHash, ConfigStoreProtocol, GitInterface, HostingInterface

logger = logging.getLogger(__name__)

class CascadeRegistry:
    """Tracks in-flight cascades and the branch state they leave behind.

    At most one cascade runs per stack. Conflicting and untouched children
    are remembered so the evaluator can report them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: Dict[str, SyncProgress] = {}
        self._conflicts: Dict[str, CommitHash] = {}
        self._pending: Set[str] = set()
        self._original_tips: Dict[Tuple[str, str], Dict[str, CommitHash]] = {}

    def begin(self, stack_name: str, progress: SyncProgress) -> None:
        with self._lock:
            running = self._in_flight.get(stack_name)
            if running is not None:
                raise CascadeInProgress(stack_name, running.merged_branch)
            self._in_flight[stack_name] = progress
            logger.debug(f"Cascade started for stack {stack_name}")

    def finish(self, stack_name: str) -> None:
        with self._lock:
            self._in_flight.pop(stack_name, None)

    def in_flight(self, stack_name: str) -> Optional[SyncProgress]:
        with self._lock:
            progress = self._in_flight.get(stack_name)
            return progress.snapshot() if progress else None

    def mark_pending(self, branches: Iterable[str]) -> None:
        with self._lock:
            self._pending.update(branches)

    def clear_pending(self, branch: str) -> None:
        with self._lock:
            self._pending.discard(branch)

    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._pending)

    def record_conflict(self, branch: str, onto: CommitHash) -> None:
        """Remember that branch stopped while being rebased onto onto."""
        with self._lock:
            self._conflicts[branch] = onto

    def clear_conflict(self, branch: str) -> None:
        with self._lock:
            self._conflicts.pop(branch, None)

    def conflicts(self) -> Dict[str, CommitHash]:
        """Conflicted branches and the commit each was being rebased onto."""
        with self._lock:
            return dict(self._conflicts)

    def remember_tips(self, stack_name: str, merged_branch: str,
                      tips: Mapping[str, CommitHash]) -> Dict[str, CommitHash]:
        """Branch tips from before the first attempt at this merge.

        A rerun after a halted cascade gets the tips recorded by the first
        run, not the partly rebased ones.
        """
        with self._lock:
            recorded = self._original_tips.setdefault((stack_name, merged_branch), {})
            for branch, tip in tips.items():
                recorded.setdefault(branch, tip)
            return dict(recorded)

    def forget_tips(self, stack_name: str, merged_branch: str) -> None:
        with self._lock:
            self._original_tips.pop((stack_name, merged_branch), None)

@dataclass
class Session:
    """Config, collaborators and cascade bookkeeping for one invocation."""
    config: StackboiConfig
    git: GitInterface
    store: ConfigStoreProtocol
    hosting: Optional[HostingInterface] = None
    cascades: CascadeRegistry = field(default_factory=CascadeRegistry)

    @property
    def hosting_reachable(self) -> bool:
        return self.hosting is not None

    def reload(self) -> StackboiConfig:
        """Re-read the stacks from the store."""
        self.config = self.store.load()
        return self.config

    def save(self, config: StackboiConfig) -> None:
        self.store.save(config)
        self.config = config
