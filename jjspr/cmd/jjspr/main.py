"""CLI entry point."""

import os
import sys
import click
import logging
from typing import Any, Dict, Optional, Tuple
from click import Context
from github import Auth, Github
from pydantic import ValidationError

from ...config import Config, default_config
from ...config.config_parser import parse_config
from ...github import GitHubClient, find_github_token
from ...github.adapters import PyGithubAdapter
from ...jj import RealJJ
from ...pretty import format_rebase_summary, print_header, print_stack
from ...spr import StackedPR
from ...spr.machine import Phase, SubmitSession, SubmitState
from ...spr.rebase import sync_stacks
from ...typing import ConfigError, JJSprError

# Get module logger
logger = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def check(err: Optional[Exception]) -> None:
    """Check for error and exit if needed."""
    if err:
        logger.error(f"{err}")
        sys.exit(EXIT_ERROR)


class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        """Initialize with aliases map."""
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        """Add an alias for a command."""
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)


@click.group(cls=AliasedGroup)
@click.pass_context
def cli(ctx: Context) -> None:
    """jjspr - Stacked Pull Requests on GitHub for jj."""
    ctx.obj = {}


def setup_jj(directory: Optional[str] = None) -> Tuple[Config, RealJJ]:
    """Set up the jj command and load config."""
    if directory:
        os.chdir(directory)

    jj_cmd = RealJJ(default_config())
    cfg = parse_config(jj_cmd)
    try:
        config = Config(cfg)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
    return config, RealJJ(config)


def setup_clients(directory: Optional[str] = None) -> Tuple[Config, RealJJ, GitHubClient]:
    """Set up jj, config and the GitHub client."""
    config, jj_cmd = setup_jj(directory)

    host = config.repo.github_host
    token = find_github_token(host)
    if not token:
        raise ConfigError(
            "No GitHub token found. Try one of:\n"
            "1. Set GITHUB_TOKEN env var\n"
            f"2. Log in with 'gh auth login --hostname {host}'")

    if host == "github.com":
        real_github = Github(auth=Auth.Token(token))
    else:
        real_github = Github(base_url=f"https://{host}/api/v3", auth=Auth.Token(token))
    github = GitHubClient(config, PyGithubAdapter(real_github))
    return config, jj_cmd, github


@cli.command(name="submit", help="Push the stack and create or update its pull requests")
@click.argument('revset', required=False)
@click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
              help='Run as if jjspr was started in DIRECTORY instead of the current working directory')
@click.option('-y', '--yes', is_flag=True, help="Don't ask for confirmation before syncing")
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def submit(ctx: Context, revset: Optional[str], directory: Optional[str], yes: bool, verbose: int) -> None:
    """Submit command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        config, jj_cmd, github = setup_clients(directory)
        stackedpr = StackedPR(config, github, jj_cmd)
        session = SubmitSession(stackedpr, revset)

        def confirm(state: SubmitState) -> bool:
            assert state.stack is not None
            print_header("Pull Requests")
            print_stack(state.stack, github.pull_request_url)
            count = len(state.loaded.revisions_to_sync) if state.loaded else 0
            return yes or click.confirm(f"Sync {count} revision(s) to GitHub?", default=True)

        final = session.run(confirm)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except JJSprError as e:
        check(e)
        return

    report_submit(final, github.pull_request_url)


def report_submit(state: SubmitState, pr_url: Any) -> None:
    """Print the final state of a submit session and exit non-zero on failure."""
    if state.phase == Phase.UP_TO_DATE:
        if state.stack is not None:
            print_stack(state.stack, pr_url)
        click.echo("Everything is up to date.")
        return
    if state.declined:
        click.echo("Nothing was changed.")
        return
    if state.stack is not None:
        print_header("Pull Requests")
        print_stack(state.stack, pr_url)
    if state.phase == Phase.ERROR:
        check(state.error)
    if state.outcome is not None:
        created = sum(1 for r in state.outcome.synced if r.created)
        updated = len(state.outcome.synced) - created
        click.echo(f"Created {created} and updated {updated} pull request(s).")


@cli.command(name="sync", help="Fetch and rebase local stacks onto trunk")
@click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
              help='Run as if jjspr was started in DIRECTORY instead of the current working directory')
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def sync(ctx: Context, directory: Optional[str], verbose: int) -> None:
    """Sync command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        _, jj_cmd = setup_jj(directory)
        summary = sync_stacks(jj_cmd)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except JJSprError as e:
        check(e)
        return

    click.echo(format_rebase_summary(summary))
    if summary.failed:
        sys.exit(EXIT_ERROR)


# Add command aliases
cli.aliases["s"] = "submit"  # type: ignore[attr-defined]
cli.aliases["up"] = "sync"  # type: ignore[attr-defined]


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
