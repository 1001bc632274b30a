"""
Replay of merged records into the destination repository.

Every record becomes one empty commit carrying the record's timestamp as
both author and committer date, and the configured identity as both author
and committer. Pushing is a separate step so callers can tell "committed
locally" apart from "durably synced".
"""

import logging
from typing import Callable, Literal, Sequence

from .config import Identity
from .git_ops import DestinationRepository
from .harvester import CommitRecord

logger = logging.getLogger(__name__)

ReplayMode = Literal["incremental", "rebuild"]

INITIAL_MESSAGE = "Initialize fresh timeline"


class Replayer:
    """Writes records into a destination branch."""

    def __init__(
        self,
        destination: DestinationRepository,
        identity: Identity,
        branch: str = "main",
        remote: str = "origin",
    ):
        self.destination = destination
        self.identity = identity
        self.branch = branch
        self.remote = remote
        self.commits_created = 0

    def replay(
        self,
        records: Sequence[CommitRecord],
        mode: ReplayMode = "incremental",
        on_commit: Callable[[CommitRecord, str], None] | None = None,
    ) -> int | None:
        """
        Create one empty commit per record, in order.

        Args:
            records: Merged records, oldest first
            mode: "incremental" appends to the branch, "rebuild" first
                replaces its history with a single initialization commit
            on_commit: Called with each record and its new commit hash

        Returns:
            Timestamp of the last record applied, or None when ``records``
            is empty (nothing is written in that case)
        """
        self.commits_created = 0
        if not records:
            return None

        if mode == "rebuild":
            logger.warning(f"Rebuilding {self.branch} from scratch")
            self.destination.reset_to_orphan(
                self.branch, INITIAL_MESSAGE, self.identity, records[0].timestamp
            )
            self.commits_created += 1
        else:
            self.destination.checkout_branch(self.branch)

        newest = None
        for record in records:
            new_hash = self.destination.commit_empty(
                record.filtered_message, self.identity, record.timestamp
            )
            self.commits_created += 1
            newest = record.timestamp
            if on_commit:
                on_commit(record, new_hash)

        return newest

    def publish(self, mode: ReplayMode = "incremental") -> bool:
        """
        Push the branch to the remote.

        Returns:
            True if pushed, False if the destination has no remote (the
            local commits are then the durable record)

        Raises:
            DestinationUnreachable: the push failed
        """
        if not self.destination.has_remote(self.remote):
            logger.info(f"No remote {self.remote!r}; keeping timeline local")
            return False

        self.destination.push(self.remote, self.branch, force=(mode == "rebuild"))
        return True
