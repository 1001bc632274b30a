"""
Main syncer logic for mirroring commit metadata into a timeline repository.

This module wires the pipeline together: load the watermark, harvest and
merge commits from every source repository, replay them into the
destination, push, and only then persist the new watermark.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from git.exc import GitCommandError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import SyncWatermark, TimelineConfig
from .exceptions import ConfigError, DestinationUnreachable, TimelineError
from .filters import MessageFilter, build_filter
from .git_ops import (
    DestinationRepository,
    SourceRepository,
    clone_destination,
    open_destination,
)
from .harvester import CommitRecord, Harvester
from .merger import merge
from .replayer import ReplayMode, Replayer

console = Console()
logger = logging.getLogger(__name__)

SyncOutcome = Literal["synced", "nothing_to_do", "preview", "failed"]

PREVIEW_HEAD = 3
PREVIEW_TAIL = 3


@dataclass
class SyncResult:
    """Result of a sync or preview run."""

    outcome: SyncOutcome
    commits_harvested: int = 0
    commits_synced: int = 0
    newest_timestamp: int | None = None
    pushed: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    records: list[CommitRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome != "failed"


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def format_record(record: CommitRecord) -> str:
    return f"{format_timestamp(record.timestamp)}  {record.filtered_message}"


def summary_lines(
    records: list[CommitRecord], head: int = PREVIEW_HEAD, tail: int = PREVIEW_TAIL
) -> list[str]:
    """All records when there are few, otherwise the first and last few around '...'."""
    if len(records) <= head + tail:
        return [format_record(r) for r in records]
    return (
        [format_record(r) for r in records[:head]]
        + ["..."]
        + [format_record(r) for r in records[-tail:]]
    )


def select_preview_repo(repos: list[str], target: str | None) -> tuple[str, str | None]:
    """
    Pick the single repository a preview inspects.

    Returns:
        The chosen path and a warning when ``target`` matched nothing
    """
    if target:
        for repo in repos:
            if target in Path(repo).expanduser().name:
                return repo, None
        return repos[0], f"No repo matches '{target}', using first."
    return repos[0], None


class TimelineSyncer:
    """Runs the harvest, merge and replay pipeline for one configuration."""

    def __init__(
        self,
        config: TimelineConfig,
        message_filter: MessageFilter | None = None,
        verbose: bool = False,
    ):
        """Initialize the syncer with configuration."""
        self.config = config
        self.message_filter = message_filter or build_filter(config)
        self.verbose = verbose
        self.destination: DestinationRepository | None = None

    def _harvester(self) -> Harvester:
        return Harvester(
            self.message_filter,
            contributor_check=self.config.contributor_check,
            verbose=self.verbose,
        )

    def _source_paths(self) -> list[str]:
        return [str(self.config.resolve_path(p)) for p in self.config.get_repo_paths()]

    def _init_destination(self) -> DestinationRepository:
        """Open the destination working copy, cloning it if needed."""
        if self.destination is None:
            path = self.config.destination_path
            if self.config.destination.url:
                console.print(f"[dim]Ensuring destination repo at {path}...[/dim]")
                self.destination = clone_destination(
                    self.config.destination.url,
                    path,
                    remote=self.config.destination.remote,
                    branch=self.config.destination.branch,
                )
            else:
                self.destination = open_destination(path)
        return self.destination

    def collect(
        self, repos: list[str], watermark: SyncWatermark, harvester: Harvester | None = None
    ) -> list[CommitRecord]:
        """Harvest and merge commits newer than ``watermark`` from ``repos``."""
        harvester = harvester or self._harvester()
        harvested = harvester.harvest(
            repos, self.config.author_emails, watermark.resume_from()
        )
        return merge(harvested)

    def preview(self, target: str | None = None) -> SyncResult:
        """
        Show what a sync of one repository would import, without writing anything.

        The watermark is ignored, so the preview covers the repository's
        whole matching history.
        """
        try:
            repos = self._source_paths()
        except ConfigError as e:
            return self._fail(SyncResult(outcome="failed"), str(e))
        if not repos:
            return self._fail(SyncResult(outcome="failed"), "No repositories configured")

        repo, warning = select_preview_repo(repos, target)
        result = SyncResult(outcome="preview")
        if warning:
            console.print(f"[yellow]{warning}[/yellow]")
            result.warnings.append(warning)

        harvester = self._harvester()
        try:
            self.message_filter.check()
            records = self.collect([repo], SyncWatermark(), harvester)
        except TimelineError as e:
            return self._fail(result, str(e))

        result.warnings.extend(harvester.warnings)
        result.records = records
        result.commits_harvested = len(records)

        if not records:
            console.print(f"[green]No matching commits in {repo}[/green]")
            return result

        console.print(
            f"[bold]Dry run:[/bold] inspected {repo}; would import "
            f"{len(records)} commits into the mirrored repository"
        )
        for line in summary_lines(records):
            console.print(f"  {line}", markup=False, highlight=False)
        return result

    def sync(self, force: bool = False) -> SyncResult:
        """
        Perform the synchronization.

        Args:
            force: Discard the destination history and rebuild it from a
                full, unwatermarked harvest

        Returns:
            SyncResult with details about what was synced
        """
        mode: ReplayMode = "rebuild" if force else "incremental"
        state_path = self.config.state_path
        watermark = SyncWatermark() if force else SyncWatermark.load(state_path)
        result = SyncResult(outcome="synced")

        try:
            repos = self._source_paths()
        except ConfigError as e:
            return self._fail(result, str(e))
        if not repos:
            return self._fail(result, "No repositories configured")

        if watermark.is_set:
            console.print(
                f"[dim]Last sync: {format_timestamp(watermark.timestamp)} "
                f"({watermark.timestamp})[/dim]"
            )
        else:
            console.print("[dim]No previous sync found - harvesting all matching commits[/dim]")

        harvester = self._harvester()
        try:
            self.message_filter.check()
            records = self.collect(repos, watermark, harvester)
        except TimelineError as e:
            return self._fail(result, str(e))

        result.warnings.extend(harvester.warnings)
        result.records = records
        result.commits_harvested = len(records)

        if not records:
            console.print("[green]No new commits to import[/green]")
            result.outcome = "nothing_to_do"
            result.newest_timestamp = watermark.timestamp
            return result

        self._print_records(records)

        branch = self.config.destination.branch
        try:
            destination = self._init_destination()
        except (TimelineError, GitCommandError, ValueError) as e:
            return self._fail(result, str(e))

        previous_head = destination.branch_commit(branch)
        replayer = Replayer(
            destination,
            self.config.identity,
            branch=branch,
            remote=self.config.destination.remote,
        )
        try:
            newest = self._replay(replayer, records, mode)
        except (TimelineError, GitCommandError, ValueError) as e:
            self._rollback(destination, branch, previous_head, result)
            return self._fail(result, f"Replay failed: {e}")

        try:
            result.pushed = replayer.publish(mode)
        except DestinationUnreachable as e:
            self._rollback(destination, branch, previous_head, result)
            return self._fail(
                result,
                f"{e}. The {replayer.commits_created} new commits were discarded and "
                f"the watermark was not advanced.",
            )
        result.commits_synced = replayer.commits_created

        new_watermark = SyncWatermark(timestamp=newest) if force else watermark.advance(newest)
        new_watermark.save(state_path)
        result.newest_timestamp = new_watermark.timestamp

        self._print_summary(result)
        return result

    def _replay(
        self, replayer: Replayer, records: list[CommitRecord], mode: ReplayMode
    ) -> int | None:
        if mode == "rebuild":
            console.print("[yellow]--force: rebuilding git history from scratch[/yellow]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Replaying commits...", total=len(records))

            def advance(record: CommitRecord, new_hash: str) -> None:
                progress.update(task, description=f"Replayed {new_hash[:8]}")
                progress.advance(task)

            return replayer.replay(records, mode, on_commit=advance)

    def _rollback(
        self,
        destination: DestinationRepository,
        branch: str,
        previous_head: str | None,
        result: SyncResult,
    ) -> None:
        """Put the destination branch back where it was before this run."""
        try:
            destination.restore_branch(branch, previous_head)
        except GitCommandError as e:
            result.errors.append(f"Could not restore {branch} in {destination.path}: {e}")

    def _fail(self, result: SyncResult, message: str) -> SyncResult:
        result.outcome = "failed"
        result.errors.append(message)
        logger.error(message)
        self._print_summary(result)
        return result

    def _print_records(self, records: list[CommitRecord]) -> None:
        table = Table(title=f"Commits to import ({len(records)})")
        table.add_column("Date", style="green", width=20)
        table.add_column("Message", style="white")

        for record in records[:20]:
            table.add_row(format_timestamp(record.timestamp), record.filtered_message)

        if len(records) > 20:
            table.add_row("...", f"[dim]({len(records) - 20} more commits)[/dim]")

        console.print(table)

    def _print_summary(self, result: SyncResult) -> None:
        """Print sync summary."""
        console.print("\n[bold]Sync Summary:[/bold]")

        if result.outcome == "synced":
            latest = format_timestamp(result.newest_timestamp)
            console.print(
                f"  [green]✓ Imported {result.commits_harvested} commits into the "
                f"mirrored repository (latest {latest})[/green]"
            )
            if not result.pushed:
                console.print("  [dim]No remote configured; commits kept locally[/dim]")
        else:
            console.print("  [red]✗ Sync failed[/red]")

        if result.errors:
            console.print(f"  [red]Errors: {len(result.errors)}[/red]")
            for error in result.errors:
                console.print(f"    • {error}", markup=False)

        if result.warnings:
            console.print(f"  [yellow]Warnings: {len(result.warnings)}[/yellow]")
            for warning in result.warnings:
                console.print(f"    • {warning}", markup=False)

    def status(self) -> None:
        """Print current sync status."""
        console.print("\n[bold]Git Timeline Status[/bold]\n")

        console.print("[bold]Configuration:[/bold]")
        console.print(f"  Identity: {self.config.identity.name} <{self.config.identity.email}>")
        console.print(f"  Emails: {', '.join(self.config.author_emails)}")
        console.print(f"  Destination URL: {self.config.destination.url or '(local only)'}")
        console.print(f"  Destination path: {self.config.destination_path}")
        console.print(f"  Branch: {self.config.destination.branch}")

        repos = self.config.get_repo_paths()
        console.print(f"  Repositories: {len(repos)}")
        for repo in repos:
            try:
                SourceRepository(self.config.resolve_path(repo))
                console.print(f"    • {repo}")
            except TimelineError:
                console.print(f"    • {repo} [red](not a git repository)[/red]")

        console.print("\n[bold]Sync State:[/bold]")
        watermark = SyncWatermark.load(self.config.state_path)
        if watermark.is_set:
            console.print(
                f"  Last synced commit: {format_timestamp(watermark.timestamp)} ({watermark.timestamp})"
            )
        else:
            console.print("  Last synced commit: Never")

        path = self.config.destination_path
        if path.exists():
            try:
                destination = DestinationRepository(path)
                console.print(f"  Timeline commits: {destination.count_commits()}")
            except ValueError as e:
                console.print(f"  [red]Error reading destination: {e}[/red]")
        else:
            console.print("  Destination not cloned yet")
