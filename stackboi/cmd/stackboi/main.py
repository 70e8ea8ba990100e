"""CLI entry point."""

import sys
import threading
import time
import click
import logging
from typing import Any, Dict, List, NoReturn, Optional
from click import Context

from ...config.config_parser import ConfigStore
from ...config.models import StackboiConfig
from ...errors import NotARepository, NotAuthenticated, RepositoryNotOnGitHub, StackboiError
from ...git import RealGit
from ...github import GitHubClient, create_github_client
from ...cascade import RebaseCascade
from ...models import MergedPRNotification, SyncProgress
from ...pr import create_or_get
from ...pretty import format_progress, format_progress_summary, format_stack, print_header
from ...session import Session
from ...stack import append_branch, create_stack, get_stack
from ...view import Snapshot, StackPoller, build_snapshots, detect_merged_prs

# Get module logger
logger = logging.getLogger(__name__)

def check(err: Exception) -> NoReturn:
    """Log the error and exit."""
    logger.error(f"{err}")
    sys.exit(2 if isinstance(err, NotARepository) else 1)

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
    """stackboi - keep stacked branches and their pull requests consistent."""
    ctx.obj = {}

cli.add_alias('st', 'status')
cli.add_alias('pr', 'createpr')

def directory_option(f: Any) -> Any:
    return click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
                        help='Run as if stackboi was started in DIRECTORY instead of the current working directory')(f)

def verbose_option(f: Any) -> Any:
    return click.option('-v', '--verbose', count=True,
                        help="Increase verbosity (can be used multiple times for more verbosity)")(f)

def setup_session(directory: Optional[str] = None, require_hosting: bool = False) -> Session:
    """Open the repository, load the stacks and connect to GitHub.

    A missing GitHub token or a non-GitHub remote is only fatal when
    require_hosting is set; otherwise commands run without PR information.
    """
    git_cmd = RealGit(directory)
    store = ConfigStore(git_cmd.git_root(), git_cmd.remote_url)
    config = store.load()
    git_cmd.remote = config.settings.remote
    return Session(config=config, git=git_cmd, store=store, hosting=connect_hosting(config, require_hosting))

def connect_hosting(config: StackboiConfig, require_hosting: bool = False) -> Optional[GitHubClient]:
    """GitHub client for the configured remote, or None when PR data is unavailable."""
    if not config.repo.github_repo_owner or not config.repo.github_repo_name:
        error = RepositoryNotOnGitHub(config.settings.remote)
        if require_hosting:
            raise error
        logger.warning(f"{error}. Continuing without pull request information.")
        return None
    try:
        return create_github_client(config)
    except NotAuthenticated as e:
        if require_hosting:
            raise
        logger.warning(f"{e} Continuing without pull request information.")
        return None

@cli.command(name="status", help="Show every stack with PR and sync status")
@directory_option
@verbose_option
def status(directory: Optional[str], verbose: int) -> None:
    """Status command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        session = setup_session(directory)
        current = session.git.current_branch()
        snapshots = build_snapshots(session)
    except StackboiError as e:
        check(e)

    print_header("Stacks", use_emoji=True)
    if not snapshots:
        click.echo("\nno stacks configured\n")
        return
    for info in snapshots:
        click.echo("")
        click.echo(format_stack(info, current))
    click.echo("")

@cli.command(name="add", help="Add an existing branch to the top of a stack")
@click.argument('branch')
@click.option('--stack', '-s', 'stack_name', help="Stack to append to (created if it does not exist)")
@click.option('--base', '-b', help="Base branch for a new stack (default: settings.default_base_branch)")
@directory_option
@verbose_option
def add(branch: str, stack_name: Optional[str], base: Optional[str], directory: Optional[str], verbose: int) -> None:
    """Add command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        session = setup_session(directory)
        if session.git.branch_tip(branch) is None:
            raise StackboiError(f"Branch '{branch}' does not exist")
        name = stack_name or branch
        if get_stack(session.config, name) is not None:
            config = append_branch(session.config, name, branch)
        else:
            config = create_stack(session.config, name, base or session.config.settings.default_base_branch, branch)
        session.save(config)
    except StackboiError as e:
        check(e)
    click.echo(f"Added {branch} to stack {name}")

@cli.command(name="createpr", help="Create the pull request for a stacked branch")
@click.option('--branch', '-b', help="Branch to create the PR for (default: current branch)")
@click.option('--draft', is_flag=True, help="Create the PR as a draft")
@click.option('--no-browser', is_flag=True, help="Don't open the PR in a browser")
@directory_option
@verbose_option
def createpr(branch: Optional[str], draft: bool, no_browser: bool, directory: Optional[str], verbose: int) -> None:
    """Createpr command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        session = setup_session(directory, require_hosting=True)
        result = create_or_get(session, branch, draft=draft, open_browser=False if no_browser else None)
    except StackboiError as e:
        check(e)

    if result.already_existed:
        click.echo(f"PR already exists for {result.branch}: #{result.pr_number}")
    else:
        click.echo(f"Created PR #{result.pr_number} for {result.branch}")
    click.echo(f"   {result.pr_url}")

def _print_progress(progress: SyncProgress) -> None:
    click.echo(format_progress(progress))

def run_merged_cascades(session: Session, cancel_event: Optional[threading.Event] = None) -> List[SyncProgress]:
    """Cascade every merged PR, lowest first, until none is left or one fails."""
    results: List[SyncProgress] = []
    while True:
        notifications = detect_merged_prs(build_snapshots(session))
        if not notifications:
            return results
        for notification in notifications:
            click.echo(f"PR #{notification.pr_number} ({notification.branch_name}) was merged")
            progress = RebaseCascade(session, notification, _print_progress, cancel_event).run()
            results.append(progress)
            if progress.state == 'error':
                return results

@cli.command(name="sync", help="Rebase the children of merged PRs and drop the merged branches")
@directory_option
@verbose_option
def sync(directory: Optional[str], verbose: int) -> None:
    """Sync command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        session = setup_session(directory, require_hosting=True)
        results = run_merged_cascades(session)
    except StackboiError as e:
        check(e)

    if not results:
        click.echo("No merged pull requests, nothing to sync")
        return
    for progress in results:
        click.echo(format_progress_summary(progress))
    if results[-1].state == 'error':
        sys.exit(1)

def auto_sync_merged(session: Session, poller: StackPoller, notification: MergedPRNotification,
                     cancel_event: Optional[threading.Event] = None) -> Optional[SyncProgress]:
    """Run the cascade for a merge seen by the poller.

    A cascade that fails is retried on a later tick, once none of the
    children is left with unresolved conflicts.
    """
    conflicts = session.cascades.conflicts()
    unresolved = [b for b in notification.child_branches if b in conflicts]
    if unresolved:
        logger.debug(f"Waiting for conflicts in {', '.join(unresolved)} to be resolved")
        poller.forget(notification)
        return None

    click.echo(f"\nPR #{notification.pr_number} ({notification.branch_name}) was merged")
    try:
        progress = RebaseCascade(session, notification, _print_progress, cancel_event).run()
    except StackboiError as e:
        logger.error(f"{e}")
        poller.forget(notification)
        return None
    click.echo(format_progress_summary(progress))
    if progress.state == 'error':
        poller.forget(notification)
    return progress

@cli.command(name="watch",help="Poll PR status and show stacks as they change")
@click.option('--interval', type=float, help="Seconds between refreshes (default: settings.poll_interval_ms)")
@click.option('--auto-sync', is_flag=True, help="Run the rebase cascade as soon as a merge is detected")
@directory_option
@verbose_option
def watch(interval: Optional[float], auto_sync: bool, directory: Optional[str], verbose: int) -> None:
    """Watch command."""
    from ... import setup_logging
    setup_logging(verbose)

    try:
        session = setup_session(directory)
    except StackboiError as e:
        check(e)
    cancel_event = threading.Event()

    def on_snapshot(snapshot: Snapshot) -> None:
        current = session.git.current_branch()
        click.clear()
        print_header("Stacks", use_emoji=True)
        for info in snapshot:
            click.echo("")
            click.echo(format_stack(info, current))

    def on_merged(notification: MergedPRNotification) -> None:
        if not auto_sync:
            click.echo(f"\nPR #{notification.pr_number} ({notification.branch_name}) was merged")
            click.echo("Run 'stackboi sync' to rebase the branches above it")
            return
        auto_sync_merged(session, poller, notification, cancel_event)

    poller = StackPoller(session, on_snapshot, on_merged, interval)
    poller.start()
    try:
        while poller.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        cancel_event.set()
    finally:
        poller.stop(timeout=5.0)

def main() -> None:
    """Main entry point."""
    cli(obj={})

if __name__ == "__main__":
    main()
