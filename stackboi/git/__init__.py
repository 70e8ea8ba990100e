"""Git interfaces and implementation."""

import os
import logging
import threading
from typing import List, Optional, Sequence

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..errors import GitCommandFailed, NotARepository, TransientNetworkFailure
from ..models import RebaseOutcome
from ..typing import CommitHash

# Get module logger
logger = logging.getLogger(__name__)

# Commands that touch the working tree, the index or refs
WRITE_COMMANDS = ("rebase", "checkout", "branch", "fetch", "push", "reset")

NETWORK_ERROR_MARKERS = (
    "Could not resolve host",
    "Connection timed out",
    "Connection refused",
    "Operation timed out",
    "early EOF",
    "The remote end hung up unexpectedly",
)

def open_repo(path: Optional[str] = None) -> git.Repo:
    """Open the repository containing path (default: cwd)."""
    try:
        return git.Repo(path or os.getcwd(), search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        raise NotARepository(path or os.getcwd()) from None

class RealGit:
    """Real Git implementation."""
    def __init__(self, path: Optional[str] = None, remote: str = "origin"):
        self.repo = open_repo(path)
        self.remote = remote
        # The working tree is a single exclusive resource
        self._write_lock = threading.RLock()

    def run_cmd(self, *args: str) -> str:
        """Run git command."""
        cmd_str = " ".join(args)
        logger.info(f"> git {cmd_str}")
        method = getattr(self.repo.git, args[0].replace('-', '_'))
        try:
            if args[0] in WRITE_COMMANDS:
                with self._write_lock:
                    result = method(*args[1:])
            else:
                result = method(*args[1:])
        except GitCommandError as e:
            raise GitCommandFailed(cmd_str, str(e.stderr or "").strip()) from e
        return result if isinstance(result, str) else str(result)

    def git_root(self) -> str:
        return str(self.repo.working_tree_dir)

    def current_branch(self) -> Optional[str]:
        """Current branch name, or None on a detached HEAD."""
        name = self.run_cmd("rev-parse", "--abbrev-ref", "HEAD").strip()
        return None if name == "HEAD" else name

    def _verify(self, ref: str) -> Optional[CommitHash]:
        try:
            return CommitHash(self.run_cmd("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}").strip())
        except GitCommandFailed:
            return None

    def branch_tip(self, branch: str) -> Optional[CommitHash]:
        return self._verify(f"refs/heads/{branch}")

    def remote_tracking_tip(self, branch: str) -> Optional[CommitHash]:
        return self._verify(f"refs/remotes/{self.remote}/{branch}")

    def commits_between(self, parent: str, head: str) -> List[str]:
        """Subjects of commits on head but not on parent, oldest first."""
        output = self.run_cmd("log", f"{parent}..{head}", "--format=%s", "--reverse")
        return [line for line in output.split("\n") if line.strip()]

    def merge_base(self, a: str, b: str) -> Optional[CommitHash]:
        try:
            return CommitHash(self.run_cmd("merge-base", a, b).strip())
        except GitCommandFailed:
            # Exit 1 with no output means unrelated histories
            return None

    def remote_url(self, remote: str) -> Optional[str]:
        try:
            return self.run_cmd("remote", "get-url", remote).strip()
        except GitCommandFailed:
            return None

    def remote_heads(self) -> List[str]:
        """Branch names that exist on the remote."""
        output = self._network("ls-remote", "--heads", self.remote)
        heads: List[str] = []
        for line in output.split("\n"):
            _, _, ref = line.partition("\t")
            if ref.startswith("refs/heads/"):
                heads.append(ref[len("refs/heads/"):])
        return heads

    def fetch(self, refs: Sequence[str]) -> None:
        """Fetch refs from the remote; refs the remote no longer has are skipped."""
        if not refs:
            self._network("fetch", self.remote)
            return
        available = set(self.remote_heads())
        wanted = [ref for ref in refs if ref in available]
        missing = [ref for ref in refs if ref not in available]
        if missing:
            logger.debug(f"Not on {self.remote}, skipping fetch: {', '.join(missing)}")
        if wanted:
            self._network("fetch", self.remote, *wanted)

    def _network(self, *args: str) -> str:
        try:
            return self.run_cmd(*args)
        except GitCommandFailed as e:
            if any(marker in e.detail for marker in NETWORK_ERROR_MARKERS):
                raise TransientNetworkFailure(str(e)) from e
            raise

    def rebase(self, branch: str, onto: str, upstream: Optional[str] = None) -> RebaseOutcome:
        """Rebase branch onto onto, replaying only commits after upstream.

        A conflicting rebase is left in progress so it can be resolved by hand.
        """
        args = ["rebase", "--onto", onto, upstream, branch] if upstream else ["rebase", onto, branch]
        with self._write_lock:
            try:
                self.run_cmd(*args)
            except GitCommandFailed as e:
                if self.rebase_in_progress() == branch:
                    logger.warning(f"Rebase of {branch} stopped on conflicts")
                    return 'conflict'
                raise e
        return 'success'

    def rebase_in_progress(self) -> Optional[str]:
        """Branch being rebased if a rebase is stopped mid-way, else None."""
        git_dir = self.repo.git_dir
        for state_dir in ("rebase-merge", "rebase-apply"):
            head_name = os.path.join(git_dir, state_dir, "head-name")
            if os.path.exists(head_name):
                with open(head_name) as f:
                    ref = f.read().strip()
                return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        return None

    def checkout(self, branch: str) -> None:
        self.run_cmd("checkout", branch)

    def delete_branch(self, branch: str) -> None:
        self.run_cmd("branch", "-D", branch)
