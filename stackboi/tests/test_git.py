"""Tests for RealGit against throwaway repositories."""

import shutil
from pathlib import Path

import git
import pytest

from stackboi.cascade import sync_merged
from stackboi.config.models import Stack, StackboiConfig
from stackboi.errors import GitCommandFailed, NotARepository, TransientNetworkFailure
from stackboi.git import RealGit
from stackboi.models import MergedPRNotification
from stackboi.session import Session
from stackboi.tests.fakes import FakeConfigStore

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def commit_file(repo: git.Repo, name: str, content: str, message: str) -> str:
    path = Path(str(repo.working_tree_dir)) / name
    path.write_text(content)
    repo.git.add(name)
    repo.git.commit("-m", message)
    return repo.head.commit.hexsha


@pytest.fixture
def remote(tmp_path: Path) -> git.Repo:
    return git.Repo.init(str(tmp_path / "remote.git"), bare=True)


@pytest.fixture
def repo(tmp_path: Path, remote: git.Repo) -> git.Repo:
    """Working clone with main and feature (two commits), both pushed."""
    repo = git.Repo.init(str(tmp_path / "work"))
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    commit_file(repo, "README.md", "hello\n", "Initial commit")
    repo.git.checkout("-b", "feature")
    commit_file(repo, "feature.txt", "one\n", "First")
    commit_file(repo, "feature.txt", "one\ntwo\n", "Second")
    repo.git.checkout("main")
    repo.git.remote("add", "origin", str(remote.git_dir))
    repo.git.push("origin", "main", "feature")
    return repo


@pytest.fixture
def real_git(repo: git.Repo) -> RealGit:
    return RealGit(str(repo.working_tree_dir))


class TestQueries:
    """Tests for read-only queries."""

    def test_not_a_repository(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(NotARepository):
            RealGit(str(plain))

    def test_current_branch(self, real_git: RealGit, repo: git.Repo) -> None:
        assert real_git.current_branch() == "main"
        repo.git.checkout("--detach")
        assert real_git.current_branch() is None

    def test_branch_tips(self, real_git: RealGit, repo: git.Repo) -> None:
        assert real_git.branch_tip("feature") == repo.heads.feature.commit.hexsha
        assert real_git.branch_tip("missing") is None
        assert real_git.remote_tracking_tip("feature") == repo.heads.feature.commit.hexsha
        assert real_git.remote_tracking_tip("missing") is None

    def test_commits_between(self, real_git: RealGit) -> None:
        assert real_git.commits_between("main", "feature") == ["First", "Second"]
        assert real_git.commits_between("feature", "main") == []

    def test_merge_base(self, real_git: RealGit, repo: git.Repo) -> None:
        assert real_git.merge_base("feature", "main") == repo.heads.main.commit.hexsha

    def test_remote_url(self, real_git: RealGit, remote: git.Repo) -> None:
        assert real_git.remote_url("origin") == str(remote.git_dir)
        assert real_git.remote_url("upstream") is None

    def test_git_root(self, real_git: RealGit, repo: git.Repo) -> None:
        assert Path(real_git.git_root()) == Path(str(repo.working_tree_dir))


class TestRebase:
    """Tests for rebasing and conflict handling."""

    def test_rebase_onto_new_base(self, real_git: RealGit, repo: git.Repo) -> None:
        main_tip = commit_file(repo, "other.txt", "x\n", "Unrelated change")
        assert real_git.rebase("feature", onto="main") == 'success'
        assert real_git.merge_base("feature", "main") == main_tip
        assert real_git.commits_between("main", "feature") == ["First", "Second"]

    def test_rebase_drops_squashed_parent(self, real_git: RealGit, repo: git.Repo) -> None:
        repo.git.checkout("-b", "child", "feature")
        commit_file(repo, "child.txt", "child\n", "Child work")
        old_parent = repo.heads.feature.commit.hexsha
        # Squash-merge feature into main
        repo.git.checkout("main")
        repo.git.merge("--squash", "feature")
        repo.git.commit("-m", "Feature (#1)")

        assert real_git.rebase("child", onto="main", upstream=old_parent) == 'success'
        assert real_git.commits_between("main", "child") == ["Child work"]

    def test_conflict_left_in_progress(self, real_git: RealGit, repo: git.Repo) -> None:
        commit_file(repo, "feature.txt", "conflicting\n", "Main edits feature.txt")
        assert real_git.rebase("feature", onto="main") == 'conflict'
        assert real_git.rebase_in_progress() == "feature"
        repo.git.rebase("--abort")
        assert real_git.rebase_in_progress() is None

    def test_unknown_onto_raises(self, real_git: RealGit) -> None:
        with pytest.raises(GitCommandFailed):
            real_git.rebase("feature", onto="no-such-ref")
        assert real_git.rebase_in_progress() is None


class TestRemote:
    """Tests for fetching and network error mapping."""

    def test_fetch_skips_missing_refs(self, real_git: RealGit, repo: git.Repo) -> None:
        tip = repo.heads.feature.commit.hexsha
        repo.git.update_ref("-d", "refs/remotes/origin/feature")
        assert real_git.remote_tracking_tip("feature") is None

        real_git.fetch(["feature", "gone"])

        assert real_git.remote_tracking_tip("feature") == tip
        assert sorted(real_git.remote_heads()) == ["feature", "main"]

    def test_network_errors_are_transient(self, real_git: RealGit, monkeypatch: pytest.MonkeyPatch) -> None:
        def unreachable(*args: str) -> str:
            raise GitCommandFailed(" ".join(args), "fatal: unable to access: Could not resolve host: github.com")
        monkeypatch.setattr(real_git, "run_cmd", unreachable)
        with pytest.raises(TransientNetworkFailure):
            real_git.fetch([])

    def test_other_errors_propagate(self, real_git: RealGit, monkeypatch: pytest.MonkeyPatch) -> None:
        def denied(*args: str) -> str:
            raise GitCommandFailed(" ".join(args), "fatal: Authentication failed")
        monkeypatch.setattr(real_git, "run_cmd", denied)
        with pytest.raises(GitCommandFailed):
            real_git.fetch([])


class TestBranches:
    """Tests for checkout and deletion."""

    def test_checkout_and_delete(self, real_git: RealGit) -> None:
        real_git.checkout("feature")
        assert real_git.current_branch() == "feature"
        with pytest.raises(GitCommandFailed):
            real_git.delete_branch("feature")
        real_git.checkout("main")
        real_git.delete_branch("feature")
        assert real_git.branch_tip("feature") is None


class TestCascadeOnRealRepository:
    """A full cascade against a real clone and bare remote."""

    def test_squash_merge_sync(self, real_git: RealGit, repo: git.Repo) -> None:
        repo.git.checkout("-b", "child", "feature")
        commit_file(repo, "child.txt", "child\n", "Child work")
        repo.git.push("origin", "child")
        # The hosting service squash-merges feature into main
        repo.git.checkout("main")
        repo.git.merge("--squash", "feature")
        repo.git.commit("-m", "Feature (#1)")
        repo.git.push("origin", "main")
        repo.git.reset("--hard", "HEAD~1")
        repo.git.checkout("child")

        config = StackboiConfig(stacks=[Stack(name="s", base_branch="main", branches=["feature", "child"])])
        store = FakeConfigStore(config)
        session = Session(config=store.load(), git=real_git, store=store)
        notification = MergedPRNotification(branch_name="feature", pr_number=1,
                                            child_branches=("child",), stack_name="s")

        progress = sync_merged(session, notification)

        assert progress.state == 'success', progress.error
        assert real_git.commits_between("origin/main", "child") == ["Child work"]
        assert real_git.branch_tip("feature") is None
        assert real_git.current_branch() == "child"
        assert store.load().stacks[0].branches == ["child"]
