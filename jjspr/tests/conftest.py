"""Shared fixtures for jjspr tests."""

import logging
from pathlib import Path

import pytest

from jjspr.config import Config
from jjspr.github import GitHubClient
from jjspr.spr import StackedPR
from jjspr.tests.fakes import FakeGithub, FakeJJ

logger = logging.getLogger(__name__)


@pytest.fixture
def config() -> Config:
    return Config({
        'repo': {
            'github_repo_owner': 'testowner',
            'github_repo_name': 'testrepo',
        },
        'user': {},
        'tool': {
            'jjspr': {
                'concurrency': 4,
            }
        }
    })


@pytest.fixture
def fake_github() -> FakeGithub:
    return FakeGithub("testowner/testrepo")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace root with a .jj directory for the state file."""
    (tmp_path / ".jj").mkdir()
    return tmp_path


@pytest.fixture
def fake_jj(fake_github: FakeGithub, workspace: Path) -> FakeJJ:
    return FakeJJ(fake_github, str(workspace))


@pytest.fixture
def github(config: Config, fake_github: FakeGithub) -> GitHubClient:
    return GitHubClient(config, fake_github)


@pytest.fixture
def spr(config: Config, github: GitHubClient, fake_jj: FakeJJ) -> StackedPR:
    return StackedPR(config, github, fake_jj)
