"""
CLI entry point for git_timeline.

Provides the command-line interface for mirroring commit metadata into a
timeline repository.
"""

import logging
import re
import sys
from pathlib import Path

import click
from git import Git
from git.exc import GitCommandError
from rich.console import Console

from .config import DEFAULT_CONFIG_FILE, TimelineConfig, create_default_config
from .exceptions import ConfigError, InvalidSourceRepository
from .git_ops import SourceRepository
from .syncer import TimelineSyncer

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Send diagnostics to stderr; DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # GitPython logs every command it runs at DEBUG
    logging.getLogger("git").setLevel(logging.INFO)


def inject_token_into_url(url: str, token: str) -> str:
    """
    Inject a token into a git URL for authentication.

    Converts SSH URLs to HTTPS and adds the token.
    """
    # Already carries credentials
    if url.startswith("https://") and "@" in url.split("/", 3)[2]:
        return url

    # git@github.com:me/timeline.git -> https://x-access-token:<token>@github.com/me/timeline.git
    ssh_match = re.match(r"git@([^:]+):(.+)", url)
    if ssh_match:
        host = ssh_match.group(1)
        path = ssh_match.group(2)
        return f"https://x-access-token:{token}@{host}/{path}"

    https_match = re.match(r"https://([^/]+)/(.+)", url)
    if https_match:
        host = https_match.group(1)
        path = https_match.group(2)
        return f"https://x-access-token:{token}@{host}/{path}"

    return url


def load_config(config_path: Path) -> TimelineConfig:
    """Load the config or exit with a readable error."""
    try:
        return TimelineConfig.from_yaml(config_path)
    except ConfigError as e:
        console.print(f"Error loading config: {e}", style="red", markup=False)
        if not Path(config_path).exists():
            console.print("Run 'git-timeline init' to create a configuration file.")
        raise SystemExit(1)


def _git_config_value(key: str) -> str | None:
    try:
        return Git().config("--get", key) or None
    except GitCommandError:
        return None


config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    envvar="GIT_TIMELINE_CONFIG",
    help="Path to the timeline configuration file",
)


@click.group()
@click.version_option(package_name="git_timeline")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output and repository contributors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Git Timeline - Mirror your commit activity into a public timeline repo."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--name", "-n", default=None, help="Identity name (defaults to git config user.name)")
@click.option("--email", "-e", default=None, help="Identity email (defaults to git config user.email)")
@click.option(
    "--repo",
    "-r",
    "repos",
    multiple=True,
    help="Source repository path (can be specified multiple times)",
)
@click.option(
    "--destination-url",
    "-d",
    default=None,
    help="Git remote URL of the timeline repository (e.g., git@github.com:me/timeline.git)",
)
@click.option("--filter-command", default=None, help="Executable used to filter commit messages")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    help="Output config file path",
)
def init(
    name: str | None,
    email: str | None,
    repos: tuple[str, ...],
    destination_url: str | None,
    filter_command: str | None,
    output: Path,
):
    """Initialize a new timeline configuration file."""
    name = name or _git_config_value("user.name") or "Your Name"
    email = email or _git_config_value("user.email") or "you@example.com"

    config = create_default_config(
        name=name,
        email=email,
        repos=list(repos),
        destination_url=destination_url,
        filter_command=filter_command,
    )

    config.to_yaml(output)
    console.print(f"[green]Created configuration file: {output}[/green]")
    console.print(f"  Identity: {name} <{email}>")
    if destination_url:
        console.print(f"  Destination URL: {destination_url}")
    if repos:
        console.print(f"  Repositories: {len(repos)}")
    console.print("\nEdit this file to add more repositories and emails.")


@cli.command()
@config_option
@click.option(
    "--dry-run",
    "dry_run",
    is_flag=False,
    flag_value="",
    default=None,
    metavar="[REPO]",
    help="Preview the first repo, or the first one whose name contains REPO; no writes",
)
@click.option(
    "--force",
    is_flag=True,
    help="Delete the timeline history and rebuild it from all commits",
)
@click.option(
    "--token",
    "-t",
    envvar="GIT_TIMELINE_TOKEN",
    help="GitHub PAT for pushing to the timeline repo (or set GIT_TIMELINE_TOKEN env var)",
)
@click.pass_context
def sync(
    ctx: click.Context,
    config_path: Path,
    dry_run: str | None,
    force: bool,
    token: str | None,
):
    """Mirror new commits into the timeline repository."""
    if dry_run is not None and force:
        raise click.UsageError("--dry-run and --force cannot be combined")

    config = load_config(config_path)
    if token and config.destination.url:
        config.destination.url = inject_token_into_url(config.destination.url, token)

    syncer = TimelineSyncer(config, verbose=ctx.obj["verbose"])

    if dry_run is not None:
        result = syncer.preview(dry_run or None)
    else:
        result = syncer.sync(force=force)

    if not result.success:
        raise SystemExit(1)


@cli.command()
@config_option
@click.argument("repo", required=False)
@click.pass_context
def preview(ctx: click.Context, config_path: Path, repo: str | None):
    """Preview the commits one repository would contribute."""
    config = load_config(config_path)
    syncer = TimelineSyncer(config, verbose=ctx.obj["verbose"])
    result = syncer.preview(repo)
    if not result.success:
        raise SystemExit(1)


@cli.command()
@config_option
def status(config_path: Path):
    """Show current sync status."""
    config = load_config(config_path)
    syncer = TimelineSyncer(config)
    try:
        syncer.status()
    except ConfigError as e:
        console.print(str(e), style="red", markup=False)
        raise SystemExit(1)


@cli.command()
@config_option
@click.argument("repo_path")
def add_repo(config_path: Path, repo_path: str):
    """Add a source repository to the configuration."""
    config = load_config(config_path)

    if repo_path in config.repos:
        console.print(f"[yellow]Repository already exists: {repo_path}[/yellow]")
        raise SystemExit(1)

    try:
        SourceRepository(config.resolve_path(repo_path))
    except InvalidSourceRepository:
        console.print(f"[yellow]Warning: {repo_path} is not a git repository (yet)[/yellow]")

    config.repos.append(repo_path)
    config.to_yaml(config_path)
    console.print(f"[green]Added repository: {repo_path}[/green]")


@cli.command()
@config_option
@click.argument("repo_path")
def remove_repo(config_path: Path, repo_path: str):
    """Remove a source repository from the configuration."""
    config = load_config(config_path)

    original_len = len(config.repos)
    config.repos = [r for r in config.repos if r != repo_path]

    if len(config.repos) == original_len:
        console.print(f"[yellow]Repository not found: {repo_path}[/yellow]")
        raise SystemExit(1)

    config.to_yaml(config_path)
    console.print(f"[green]Removed repository: {repo_path}[/green]")


@cli.command(name="list")
@config_option
def list_repos(config_path: Path):
    """List all configured source repositories."""
    config = load_config(config_path)
    try:
        repos = config.get_repo_paths()
    except ConfigError as e:
        console.print(str(e), style="red", markup=False)
        raise SystemExit(1)

    if not repos:
        console.print("[yellow]No repositories configured.[/yellow]")
        return

    console.print("\n[bold]Configured Repositories:[/bold]\n")
    for repo in repos:
        try:
            source = SourceRepository(config.resolve_path(repo))
            console.print(f"  • {repo} [dim]\\[{source.label}][/dim]")
        except InvalidSourceRepository:
            console.print(f"  • {repo} [red](not a git repository)[/red]")


if __name__ == "__main__":
    cli()
