"""
Git operations for git_timeline.

Provides wrappers around GitPython for the two sides of a sync: reading
authored commits out of source repositories, and writing empty commits into
the destination repository.
"""

import heapq
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .config import Identity
from .exceptions import DestinationUnreachable, InvalidSourceRepository

logger = logging.getLogger(__name__)

REBUILD_BRANCH = "git-timeline-rebuild"


class SourceRepository:
    """Read-only view of a source repository's commit log."""

    def __init__(self, path: str | Path):
        """Open a source repository, raising InvalidSourceRepository if it isn't one."""
        self.path = Path(path).expanduser().resolve()
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise InvalidSourceRepository(self.path) from e

    @property
    def label(self) -> str:
        """Short name used to tag mirrored messages (the directory name)."""
        return self.path.name

    def has_commits(self) -> bool:
        return self.repo.head.is_valid()

    def contributor_emails(self) -> set[str]:
        """Distinct author emails found in the history of HEAD."""
        if not self.has_commits():
            return set()
        output = self.repo.git.log("--format=%aE")
        return {line.strip().lower() for line in output.splitlines() if line.strip()}

    def read(
        self,
        author_emails: Iterable[str],
        since: int | None = None,
    ) -> Iterator[tuple[int, str]]:
        """
        Yield (author timestamp, subject) for commits by any of the given emails.

        Each email is queried separately, oldest first, and the streams are
        merged lazily so the result stays in ascending timestamp order.
        Only commits authored at or after ``since`` are yielded.
        """
        if not self.has_commits():
            return

        emails = sorted({email.strip().lower() for email in author_emails if email.strip()})
        streams = [self._read_author(email, since) for email in emails]
        yield from heapq.merge(*streams, key=lambda entry: entry[0])

    def _read_author(
        self, email: str, since: int | None
    ) -> Iterator[tuple[int, str]]:
        # --author is a regex over "Name <email>", so confirm the exact address
        commits = self.repo.iter_commits(
            "HEAD", author=email, regexp_ignore_case=True, reverse=True
        )
        for commit in commits:
            if commit.author.email.strip().lower() != email:
                continue
            if since is not None and commit.authored_date < since:
                continue
            yield commit.authored_date, commit.summary.strip()


class DestinationRepository:
    """Append-only commit sink for the timeline."""

    def __init__(self, path: Path):
        """Initialize repository wrapper."""
        self.path = Path(path).resolve()
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ValueError(f"Not a valid git repository: {self.path}") from e

    def get_current_branch(self) -> str:
        """Get the current branch name."""
        return self.repo.active_branch.name

    def get_current_commit(self) -> str | None:
        """Get the current HEAD commit hash, or None on an unborn branch."""
        if not self.repo.head.is_valid():
            return None
        return self.repo.head.commit.hexsha

    def branch_names(self) -> list[str]:
        return [head.name for head in self.repo.heads]

    def count_commits(self, branch: str | None = None) -> int:
        """Number of commits reachable from ``branch`` (default: HEAD)."""
        if not self.repo.head.is_valid():
            return 0
        rev = branch or "HEAD"
        return int(self.repo.git.rev_list("--count", rev))

    def checkout_branch(self, branch: str) -> None:
        """Switch to ``branch``, creating it or pointing an unborn HEAD at it."""
        if branch in self.branch_names():
            if self.repo.head.is_detached or self.get_current_branch() != branch:
                self.repo.git.checkout(branch)
            return

        if not self.repo.head.is_valid():
            self.repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
            return

        try:
            # Picks up <remote>/<branch> when the remote already has it
            self.repo.git.checkout(branch)
        except GitCommandError:
            self.repo.git.checkout("-b", branch)

    def commit_empty(self, message: str, identity: Identity, timestamp: int) -> str:
        """Create an empty commit dated ``timestamp`` and return its hash."""
        date = f"{timestamp} +0000"
        env = {
            "GIT_AUTHOR_NAME": identity.name,
            "GIT_AUTHOR_EMAIL": identity.email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": identity.name,
            "GIT_COMMITTER_EMAIL": identity.email,
            "GIT_COMMITTER_DATE": date,
        }
        self.repo.git.commit("--allow-empty", "--no-gpg-sign", "-m", message, env=env)
        return self.repo.head.commit.hexsha

    def reset_to_orphan(
        self, branch: str, message: str, identity: Identity, timestamp: int
    ) -> str:
        """
        Replace ``branch`` with a fresh history holding one empty commit.

        The new root commit is built on a temporary orphan branch, then the
        old branch is deleted and the orphan renamed in its place.
        """
        if REBUILD_BRANCH in self.branch_names():
            self.repo.git.branch("-D", REBUILD_BRANCH)

        if self.repo.head.is_valid():
            self.repo.git.checkout("--orphan", REBUILD_BRANCH)
            self.repo.git.rm("-r", "-f", "-q", "--ignore-unmatch", ".")
        else:
            self.repo.git.symbolic_ref("HEAD", f"refs/heads/{REBUILD_BRANCH}")
        root = self.commit_empty(message, identity, timestamp)

        if branch in self.branch_names():
            self.repo.git.branch("-D", branch)
        self.repo.git.branch("-m", branch)
        return root

    def branch_commit(self, branch: str) -> str | None:
        """Hash ``branch`` points at, or None if it does not exist."""
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch}")
        except GitCommandError:
            return None

    def restore_branch(self, branch: str, commit: str | None) -> None:
        """
        Point ``branch`` back at ``commit`` and check it out.

        With ``commit`` None the branch is removed and HEAD left unborn on
        it. A half-finished rebuild branch is discarded either way.
        """
        self.repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
        if commit is not None:
            self.repo.git.reset("--hard", commit)
        elif branch in self.branch_names():
            self.repo.git.update_ref("-d", f"refs/heads/{branch}")

        if REBUILD_BRANCH in self.branch_names():
            self.repo.git.branch("-D", REBUILD_BRANCH)
        logger.info(f"Restored {branch} to {commit[:8] if commit else '(empty)'}")

    def reset_to_remote(self, remote: str, branch: str) -> bool:
        """
        Make ``branch`` match ``<remote>/<branch>``, dropping local-only commits.

        Returns:
            False if the remote does not have the branch yet
        """
        tracking = f"refs/remotes/{remote}/{branch}"
        try:
            self.repo.git.rev_parse("--verify", "--quiet", tracking)
        except GitCommandError:
            return False

        # Use reset instead of checkout to handle diverged local history
        self.repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
        self.repo.git.reset("--hard", tracking)
        return True

    def has_remote(self, remote: str = "origin") -> bool:
        return remote in [r.name for r in self.repo.remotes]

    def fetch(self, remote: str = "origin") -> None:
        """Fetch from remote."""
        try:
            self.repo.git.fetch(remote)
        except GitCommandError as e:
            raise DestinationUnreachable(f"Could not fetch from {remote}: {e}") from e

    def push(self, remote: str = "origin", branch: str | None = None, force: bool = False) -> None:
        """
        Push ``branch`` to ``remote``.

        Uses the git command directly so a rejected push raises instead of
        being reported only through PushInfo flags.
        """
        target_branch = branch or self.get_current_branch()
        args = ["--force-with-lease"] if force else []
        try:
            self.repo.git.push(*args, remote, f"{target_branch}:{target_branch}")
        except GitCommandError as e:
            raise DestinationUnreachable(
                f"Push of {target_branch} to {remote} failed: {e}"
            ) from e
        logger.debug(f"Pushed {target_branch} to {remote}")


def _strip_credentials(url: str) -> str:
    """Drop user:token@ from an HTTPS URL so token-injected URLs compare equal."""
    return re.sub(r"^(https?://)[^/@]+@", r"\1", url.rstrip("/"))


def clone_destination(
    url: str, path: Path, remote: str = "origin", branch: str | None = None
) -> DestinationRepository:
    """
    Clone the destination repository, or reuse an existing clone of it.

    An existing directory is reused only if it is a repository whose
    ``remote`` points at ``url``; anything else is an error rather than
    being deleted. A reused clone is fetched and, when the remote already
    has ``branch``, reset to it.

    Args:
        url: Git remote URL (e.g., git@github.com:me/timeline.git)
        path: Local path to clone into
        remote: Name given to the remote
        branch: Timeline branch to bring up to date with the remote

    Returns:
        DestinationRepository wrapper for the working copy
    """
    path = Path(path).expanduser().resolve()

    if path.exists() and any(path.iterdir()):
        try:
            repo = Repo(path)
        except InvalidGitRepositoryError as e:
            raise DestinationUnreachable(
                f"{path} exists and is not a git repository"
            ) from e

        try:
            urls = list(repo.remote(remote).urls)
        except ValueError as e:
            raise DestinationUnreachable(f"{path} has no remote named {remote}") from e

        wanted = _strip_credentials(url)
        if wanted not in [_strip_credentials(u) for u in urls]:
            raise DestinationUnreachable(
                f"{path} is a clone of {', '.join(urls)}, not {wanted}"
            )

        # Keep the stored URL in step with a freshly injected token
        if url not in urls:
            repo.git.remote("set-url", remote, url)

        destination = DestinationRepository(path)
        destination.fetch(remote)
        if branch and destination.reset_to_remote(remote, branch):
            logger.info(f"Reset {branch} to {remote}/{branch}")
        return destination

    path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Cloning destination repository into {path}")
    try:
        Repo.clone_from(url, path, origin=remote)
    except GitCommandError as e:
        raise DestinationUnreachable(f"Could not clone {_strip_credentials(url)}: {e}") from e
    return DestinationRepository(path)


def open_destination(path: Path) -> DestinationRepository:
    """Open a local-only destination, initializing it when missing or empty."""
    path = Path(path).expanduser().resolve()
    if not path.exists() or not any(path.iterdir()):
        path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing destination repository at {path}")
        Repo.init(path)
    return DestinationRepository(path)
