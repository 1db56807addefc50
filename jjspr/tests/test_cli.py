"""Tests for the command line interface."""

from typing import Iterator
from unittest.mock import patch

import pytest
import requests
from click.testing import CliRunner

from jjspr.cmd.jjspr import main as cli_main
from jjspr.config import Config
from jjspr.github import GitHubClient
from jjspr.typing import ChangeID, ConfigError, RebaseResult, StackRoot
from jjspr.tests.fakes import FakeGithub, FakeJJ


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def patched(config: Config, fake_jj: FakeJJ, github: GitHubClient) -> Iterator[None]:
    with patch.object(cli_main, "setup_clients", return_value=(config, fake_jj, github)), \
            patch.object(cli_main, "setup_jj", return_value=(config, fake_jj)):
        yield


def build_stack(fake_jj: FakeJJ) -> None:
    fake_jj.add_change("aaaaaaaaaaaa", "First\n")
    fake_jj.add_change("bbbbbbbbbbbb", "Second\n")


@pytest.mark.usefixtures("patched")
class TestSubmit:
    def test_yes_skips_confirmation(self, runner: CliRunner, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
        """Test that --yes submits without prompting."""
        build_stack(fake_jj)
        result = runner.invoke(cli_main.cli, ["submit", "--yes"])
        assert result.exit_code == 0, result.output
        assert "Created 2 and updated 0 pull request(s)." in result.output
        assert len(fake_github.calls_named("create_pull")) == 2

    def test_confirmation_prompt(self, runner: CliRunner, fake_jj: FakeJJ) -> None:
        """Test that answering the prompt with y pushes the stack."""
        build_stack(fake_jj)
        result = runner.invoke(cli_main.cli, ["submit"], input="y\n")
        assert result.exit_code == 0, result.output
        assert "Sync 2 revision(s) to GitHub?" in result.output
        assert fake_jj.pushed == ["aaaaaaaaaaaa", "bbbbbbbbbbbb"]

    def test_declined(self, runner: CliRunner, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
        """Test that answering no leaves jj and GitHub untouched."""
        build_stack(fake_jj)
        result = runner.invoke(cli_main.cli, ["submit"], input="n\n")
        assert result.exit_code == 0, result.output
        assert "Nothing was changed." in result.output
        assert fake_jj.pushed == []
        assert fake_github.writes() == []

    def test_up_to_date(self, runner: CliRunner, fake_jj: FakeJJ) -> None:
        """Test that a second submit reports nothing to do."""
        build_stack(fake_jj)
        runner.invoke(cli_main.cli, ["submit", "-y"])
        result = runner.invoke(cli_main.cli, ["s"])
        assert result.exit_code == 0, result.output
        assert "Everything is up to date." in result.output

    def test_failure_exits_non_zero(self, runner: CliRunner, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
        """Test that an ambiguous remote exits 1 before pushing."""
        build_stack(fake_jj)
        fake_github.repo.add_pull("One", head="push-aaaaaaaa")
        fake_github.repo.add_pull("Two", head="push-aaaaaaaa")
        result = runner.invoke(cli_main.cli, ["submit", "-y"])
        assert result.exit_code == 1
        assert fake_jj.pushed == []

    def test_connection_error_exits_non_zero(self, runner: CliRunner, fake_jj: FakeJJ, fake_github: FakeGithub,
                                             monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a dropped connection is reported and exits 1."""
        build_stack(fake_jj)

        def connection_reset(**kwargs: object) -> None:
            raise requests.exceptions.ConnectionError("connection reset")

        monkeypatch.setattr(fake_github.repo, "create_pull", connection_reset)
        result = runner.invoke(cli_main.cli, ["submit", "-y"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, requests.exceptions.RequestException)


def test_setup_failure_exits_non_zero(runner: CliRunner) -> None:
    """Test that a missing token exits 1."""
    with patch.object(cli_main, "setup_clients", side_effect=ConfigError("No GitHub token found")):
        result = runner.invoke(cli_main.cli, ["submit"])
    assert result.exit_code == 1


def test_interrupt_exits_130(runner: CliRunner) -> None:
    """Test that Ctrl-C exits 130."""
    with patch.object(cli_main, "setup_clients", side_effect=KeyboardInterrupt()):
        result = runner.invoke(cli_main.cli, ["submit"])
    assert result.exit_code == 130


@pytest.mark.usefixtures("patched")
class TestSync:
    def test_prints_summary(self, runner: CliRunner, fake_jj: FakeJJ) -> None:
        """Test that sync prints the rebase summary."""
        fake_jj.stack_roots = [StackRoot(ChangeID("aaaaaaaaaaaa"), "Feature\n")]
        fake_jj.rebase_results["aaaaaaaaaaaa"] = RebaseResult(ChangeID("aaaaaaaaaaaa"), has_conflict=True)
        result = runner.invoke(cli_main.cli, ["up"])
        assert result.exit_code == 0, result.output
        assert "1 with conflicts." in result.output

    def test_failed_root_exits_non_zero(self, runner: CliRunner, fake_jj: FakeJJ) -> None:
        """Test that a failed rebase root exits 1."""
        fake_jj.stack_roots = [StackRoot(ChangeID("aaaaaaaaaaaa"), "Feature\n")]
        fake_jj.rebase_errors.add("aaaaaaaaaaaa")
        result = runner.invoke(cli_main.cli, ["sync"])
        assert result.exit_code == 1
        assert "1 failed." in result.output
