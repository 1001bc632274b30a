"""
Harvesting of commit records from the configured source repositories.

For every repository the authored commits are read, prefixed with the
repository's label and passed through the message filter.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from .config import ContributorCheck
from .exceptions import InvalidSourceRepository, NoContributorMatch
from .filters import MessageFilter
from .git_ops import SourceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitRecord:
    """A commit's metadata on its way into the timeline."""

    timestamp: int
    raw_subject: str
    source_label: str
    filtered_message: str | None = None

    @property
    def composed(self) -> str:
        """The message handed to the filter."""
        return compose_message(self.source_label, self.raw_subject)

    @property
    def key(self) -> tuple[int, str | None]:
        """Identity of a record for deduplication."""
        return self.timestamp, self.filtered_message


def compose_message(label: str, subject: str) -> str:
    return f"[{label}] {subject}"


class Harvester:
    """Collects filtered commit records across repositories."""

    def __init__(
        self,
        message_filter: MessageFilter,
        contributor_check: ContributorCheck = "warn",
        verbose: bool = False,
    ):
        self.message_filter = message_filter
        self.contributor_check = contributor_check
        self.verbose = verbose
        self.skipped: list[str] = []
        self.warnings: list[str] = []
        self.contributors: dict[str, set[str]] = {}

    def harvest(
        self,
        repos: Iterable[str],
        emails: Iterable[str],
        since: int | None = None,
    ) -> list[CommitRecord]:
        """
        Harvest records from ``repos`` in configured order.

        Args:
            repos: Source repository paths (``~`` allowed)
            emails: Author emails whose commits are mirrored
            since: Only commits authored at or after this timestamp

        Returns:
            Records in per-repository chronological order, repositories
            concatenated (not globally sorted)
        """
        self.skipped = []
        self.warnings = []
        self.contributors = {}
        author_emails = sorted({e.strip().lower() for e in emails if e.strip()})

        records: list[CommitRecord] = []
        for path in repos:
            try:
                source = SourceRepository(path)
            except InvalidSourceRepository as e:
                logger.warning(f"Skipping {path}: {e}")
                self.skipped.append(path)
                self.warnings.append(f"Skipped {path}: not a git repository")
                continue

            self._check_contributors(source, author_emails)
            records.extend(self._harvest_repo(source, author_emails, since))

        return records

    def _harvest_repo(
        self,
        source: SourceRepository,
        emails: list[str],
        since: int | None,
    ) -> list[CommitRecord]:
        records = []
        for timestamp, subject in source.read(emails, since=since):
            composed = compose_message(source.label, subject)
            filtered = self.message_filter.transform(composed)
            if filtered is None or not filtered.strip():
                continue
            records.append(
                CommitRecord(
                    timestamp=timestamp,
                    raw_subject=subject,
                    source_label=source.label,
                    filtered_message=filtered.strip(),
                )
            )

        logger.info(f"Harvested {len(records)} commits from {source.label}")
        return records

    def _check_contributors(self, source: SourceRepository, emails: list[str]) -> None:
        if self.contributor_check == "off" and not self.verbose:
            return

        found = source.contributor_emails()
        self.contributors[source.label] = found
        if self.verbose:
            logger.info(f"Contributors of {source.label}: {', '.join(sorted(found)) or '(none)'}")

        if self.contributor_check == "off" or found.intersection(emails):
            return

        error = NoContributorMatch(source.label, found)
        if self.contributor_check == "strict":
            raise error
        logger.warning(str(error))
        self.warnings.append(str(error))
