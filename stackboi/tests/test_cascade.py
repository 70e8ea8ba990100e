"""Tests for the rebase cascade."""

import threading
from typing import List

import pytest

from stackboi.cascade import RebaseCascade, pending_children, sync_merged
from stackboi.config.models import Stack, StackboiConfig
from stackboi.errors import CascadeInProgress
from stackboi.models import MergedPRNotification, SyncProgress
from stackboi.session import Session
from stackboi.stack import get_stack
from stackboi.sync import evaluate_stack
from stackboi.tests.fake_pygithub import FakeGithub, FakeRepository
from stackboi.tests.fakes import FakeConfigStore, FakeGit, make_session


def squash_merge(git: FakeGit, branch: str, parent: str = "main") -> None:
    """Land branch on the remote parent as one new commit."""
    sha = git._add_commit(git.remote_branches[parent], f"{branch} (squashed)")
    git.remote_branches[parent] = sha


def merged_a() -> MergedPRNotification:
    return MergedPRNotification(branch_name="feature-a", pr_number=1,
                                child_branches=("feature-b", "feature-c"), stack_name="feature")


def states(progresses: List[SyncProgress]) -> List[str]:
    """Distinct consecutive states."""
    result: List[str] = []
    for progress in progresses:
        if not result or result[-1] != progress.state:
            result.append(progress.state)
    return result


class TestCascadeSuccess:
    """Tests for cascades where every child rebases cleanly."""

    def test_children_rebased_onto_parent(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        seen: List[SyncProgress] = []

        progress = RebaseCascade(session, merged_a(), on_progress=seen.append).run()

        assert progress.state == 'success'
        assert progress.error is None
        assert progress.current_branch is None
        assert states(seen) == ['fetching', 'rebasing', 'success']
        assert fake_git.rebased == ["feature-b", "feature-c"]
        assert fake_git.commits_between("origin/main", "feature-b") == ["Work on feature-b"]
        assert fake_git.commits_between("feature-b", "feature-c") == ["Work on feature-c"]
        assert progress.branch_statuses == {"feature-b": 'needs-push', "feature-c": 'needs-push'}

    def test_merged_branch_removed_and_persisted(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        sync_merged(session, merged_a())

        stack = get_stack(session.config, "feature")
        assert stack is not None
        assert stack.branches == ["feature-b", "feature-c"]
        assert session.store.load().stacks[0].branches == ["feature-b", "feature-c"]
        assert fake_git.deleted == ["feature-a"]

    def test_fetches_parent_merged_and_children(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        sync_merged(session, merged_a())
        assert fake_git.fetched == [["main", "feature-a", "feature-b", "feature-c"]]

    def test_keeps_merged_branch_when_configured(self, fake_git: FakeGit, config: StackboiConfig) -> None:
        settings = config.settings.model_copy(update={'delete_merged_branches': False})
        session = make_session(fake_git, config.model_copy(update={'settings': settings}))
        squash_merge(fake_git, "feature-a")
        assert sync_merged(session, merged_a()).state == 'success'
        assert fake_git.deleted == []
        assert "feature-a" in fake_git.branches

    def test_original_checkout_restored(self, session: Session, fake_git: FakeGit) -> None:
        fake_git.head = "feature-b"
        squash_merge(fake_git, "feature-a")
        sync_merged(session, merged_a())
        assert fake_git.head == "feature-b"

    def test_checkout_falls_back_when_on_merged_branch(self, session: Session, fake_git: FakeGit) -> None:
        fake_git.head = "feature-a"
        squash_merge(fake_git, "feature-a")
        sync_merged(session, merged_a())
        assert fake_git.head == "main"
        assert fake_git.deleted == ["feature-a"]

    def test_fast_forward_merge_needs_no_rebase(self, session: Session, fake_git: FakeGit) -> None:
        fake_git.remote_branches["main"] = fake_git.branches["feature-a"]
        progress = sync_merged(session, merged_a())
        assert progress.state == 'success'
        assert fake_git.rebased == []

    def test_last_branch_merged(self, session: Session, fake_git: FakeGit) -> None:
        """Merging the top branch has no children and only shrinks the stack."""
        squash_merge(fake_git, "feature-c", parent="feature-b")
        notification = MergedPRNotification(branch_name="feature-c", pr_number=3,
                                            child_branches=(), stack_name="feature")
        progress = sync_merged(session, notification)
        assert progress.state == 'success'
        assert fake_git.rebased == []
        assert session.config.stacks[0].branches == ["feature-a", "feature-b"]

    def test_registry_released(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        sync_merged(session, merged_a())
        assert session.cascades.in_flight("feature") is None
        assert session.cascades.pending() == set()


class TestCascadeConflict:
    """Tests for the halt-on-first-conflict policy."""

    @pytest.fixture
    def four_deep(self) -> FakeGit:
        git = FakeGit()
        git.init("main")
        previous = "main"
        for name in ("base-pr", "c1", "c2", "c3"):
            git.create_branch(name, previous)
            git.commit(name, f"Work on {name}")
            previous = name
        git.push("main", "base-pr", "c1", "c2", "c3")
        git.head = "c3"
        return git

    def test_conflict_halts_and_leaves_rest_untouched(self, four_deep: FakeGit) -> None:
        config = StackboiConfig(stacks=[Stack(name="deep", base_branch="main",
                                              branches=["base-pr", "c1", "c2", "c3"])])
        session = make_session(four_deep, config)
        squash_merge(four_deep, "base-pr")
        four_deep.conflict_on.add("c2")
        c3_tip = four_deep.branches["c3"]
        notification = MergedPRNotification(branch_name="base-pr", pr_number=7,
                                            child_branches=("c1", "c2", "c3"), stack_name="deep")

        progress = RebaseCascade(session, notification).run()

        assert progress.state == 'error'
        assert progress.current_branch == "c2"
        assert "c2" in (progress.error or "")
        assert four_deep.rebased == ["c1", "c2"]
        assert four_deep.branches["c3"] == c3_tip
        assert progress.branch_statuses == {"c1": 'needs-push', "c2": 'conflicts', "c3": 'pending-sync'}
        assert pending_children(progress) == ["c3"]

        # The stack keeps the merged branch until the cascade can finish
        assert session.config.stacks[0].branches == ["base-pr", "c1", "c2", "c3"]
        assert isinstance(session.store, FakeConfigStore)
        assert session.store.saves == 0
        assert four_deep.deleted == []

        statuses = evaluate_stack(session, session.config.stacks[0])
        assert statuses["c2"] == 'conflicts'
        assert statuses["c3"] == 'pending-sync'

    def test_resolved_by_hand_clears_conflict(self, four_deep: FakeGit) -> None:
        config = StackboiConfig(stacks=[Stack(name="deep", base_branch="main",
                                              branches=["base-pr", "c1", "c2", "c3"])])
        session = make_session(four_deep, config)
        squash_merge(four_deep, "base-pr")
        four_deep.conflict_on.add("c2")
        notification = MergedPRNotification(branch_name="base-pr", pr_number=7,
                                            child_branches=("c1", "c2", "c3"), stack_name="deep")
        assert sync_merged(session, notification).state == 'error'
        assert set(session.cascades.conflicts()) == {"c2"}

        four_deep.conflict_on.clear()
        four_deep.in_progress = None
        four_deep.rebase("c2", onto="c1", upstream=four_deep.commits[four_deep.branches["c2"]].parent)

        statuses = evaluate_stack(session, session.config.stacks[0])
        assert statuses["c2"] == 'needs-push'
        assert statuses["c3"] == 'pending-sync'
        assert session.cascades.conflicts() == {}

    def test_aborted_rebase_still_conflicts(self, four_deep: FakeGit) -> None:
        config = StackboiConfig(stacks=[Stack(name="deep", base_branch="main",
                                              branches=["base-pr", "c1", "c2", "c3"])])
        session = make_session(four_deep, config)
        squash_merge(four_deep, "base-pr")
        four_deep.conflict_on.add("c1")
        notification = MergedPRNotification(branch_name="base-pr", pr_number=7,
                                            child_branches=("c1", "c2", "c3"), stack_name="deep")
        assert sync_merged(session, notification).state == 'error'

        # c1 still contains base-pr, but not the commit it was being rebased onto
        four_deep.in_progress = None
        statuses = evaluate_stack(session, session.config.stacks[0])
        assert statuses["c1"] == 'conflicts'
        assert set(session.cascades.conflicts()) == {"c1"}

    def test_rerun_after_resolution_finishes(self, four_deep: FakeGit) -> None:
        config = StackboiConfig(stacks=[Stack(name="deep", base_branch="main",
                                              branches=["base-pr", "c1", "c2", "c3"])])
        session = make_session(four_deep, config)
        squash_merge(four_deep, "base-pr")
        four_deep.conflict_on.add("c2")
        notification = MergedPRNotification(branch_name="base-pr", pr_number=7,
                                            child_branches=("c1", "c2", "c3"), stack_name="deep")
        assert sync_merged(session, notification).state == 'error'

        # Resolve by hand: finish c2's rebase on top of the rebased c1
        four_deep.conflict_on.clear()
        four_deep.in_progress = None
        four_deep.rebase("c2", onto="c1", upstream=four_deep.commits[four_deep.branches["c2"]].parent)
        four_deep.rebased.clear()

        progress = sync_merged(session, notification)
        assert progress.state == 'success'
        assert four_deep.rebased == ["c3"]
        assert session.cascades.conflicts() == {}
        assert session.config.stacks[0].branches == ["c1", "c2", "c3"]


class TestCascadeControl:
    """Tests for retries, re-entrancy and cancellation."""

    def test_fetch_retried_once(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        fake_git.fetch_failures = 1
        assert sync_merged(session, merged_a()).state == 'success'
        assert len(fake_git.fetched) == 2

    def test_second_fetch_failure_is_error(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        fake_git.fetch_failures = 2
        progress = sync_merged(session, merged_a())
        assert progress.state == 'error'
        assert "Could not resolve host" in (progress.error or "")
        assert fake_git.rebased == []
        assert session.config.stacks[0].branches == ["feature-a", "feature-b", "feature-c"]

    def test_one_cascade_per_stack(self, session: Session, fake_git: FakeGit) -> None:
        session.cascades.begin("feature", SyncProgress(state='rebasing', merged_branch="feature-a"))
        with pytest.raises(CascadeInProgress):
            RebaseCascade(session, merged_a()).run()
        assert fake_git.fetched == []

    def test_cancel_between_children(self, session: Session, fake_git: FakeGit) -> None:
        squash_merge(fake_git, "feature-a")
        cancel = threading.Event()

        def on_progress(progress: SyncProgress) -> None:
            if progress.current_branch == "feature-b":
                cancel.set()

        progress = RebaseCascade(session, merged_a(), on_progress, cancel).run()
        assert progress.state == 'error'
        assert "cancelled" in (progress.error or "")
        assert fake_git.rebased == ["feature-b"]
        assert progress.branch_statuses["feature-c"] == 'pending-sync'
        assert session.config.stacks[0].branches == ["feature-a", "feature-b", "feature-c"]


class TestCascadeRefreshesPRs:
    """Tests for PR relabelling and retargeting after a cascade."""

    def test_labels_bases_and_bodies_updated(self, fake_git: FakeGit, config: StackboiConfig,
                                             fake_github: FakeGithub, fake_repo: FakeRepository) -> None:
        fake_repo.add_pull("feature-a", "main", state="closed", merged=True)
        pr_b = fake_repo.add_pull("feature-b", "feature-a", body="old body")
        pr_c = fake_repo.add_pull("feature-c", "feature-b", body="old body")
        for label in ("stack:2/3", "stack:3/3"):
            fake_repo.labels[label] = {"color": "5319E7", "description": ""}
        pr_b.labels.append("stack:2/3")
        pr_c.labels.append("stack:3/3")
        session = make_session(fake_git, config, fake_github)
        squash_merge(fake_git, "feature-a")

        progress = sync_merged(session, merged_a())

        assert progress.state == 'success'
        assert pr_b.base_ref == "main"
        assert pr_b.labels == ["stack:1/2"]
        assert pr_c.base_ref == "feature-b"
        assert pr_c.labels == ["stack:2/2"]
        assert "main (base)" in pr_b.body
        assert "feature-a" not in pr_b.body
        assert "└─ feature-c [#3 open]" in pr_c.body
