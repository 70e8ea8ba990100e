"""Configuration for pytest."""

import logging
import pytest

from stackboi.config.models import Stack, StackboiConfig
from stackboi.tests.fake_pygithub import FakeGithub, FakeRepository
from stackboi.session import Session
from stackboi.tests.fakes import REPO_NAME, FakeGit, make_session

logger = logging.getLogger(__name__)

@pytest.fixture
def fake_git() -> FakeGit:
    """main <- feature-a <- feature-b <- feature-c, all pushed."""
    git = FakeGit()
    git.init("main")
    previous = "main"
    for name in ("feature-a", "feature-b", "feature-c"):
        git.create_branch(name, previous)
        git.commit(name, f"Work on {name}")
        previous = name
    git.push("main", "feature-a", "feature-b", "feature-c")
    git.head = "feature-c"
    return git

@pytest.fixture
def stack() -> Stack:
    return Stack(name="feature", base_branch="main", branches=["feature-a", "feature-b", "feature-c"])

@pytest.fixture
def config(stack: Stack) -> StackboiConfig:
    return StackboiConfig(stacks=[stack])

@pytest.fixture
def fake_github() -> FakeGithub:
    return FakeGithub()

@pytest.fixture
def fake_repo(fake_github: FakeGithub) -> FakeRepository:
    return fake_github.get_repo(REPO_NAME)

@pytest.fixture
def session(fake_git: FakeGit, config: StackboiConfig, fake_github: FakeGithub) -> Session:
    return make_session(fake_git, config, fake_github)
