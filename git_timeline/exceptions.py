"""
Error types for git_timeline.

Only FilterUnavailable, DestinationUnreachable and ConfigError end a run.
An invalid source repository is skipped, and a missing contributor match is
informational unless the configuration asks for strict checking.
"""


class TimelineError(Exception):
    """Base class for all git_timeline errors."""


class ConfigError(TimelineError):
    """The configuration file is missing or invalid."""


class InvalidSourceRepository(TimelineError, ValueError):
    """A configured source path is not the root of a git repository."""

    def __init__(self, path):
        super().__init__(f"Not a valid git repository: {path}")
        self.path = path


class FilterUnavailable(TimelineError):
    """The message filter is missing, not executable, or crashed."""


class NoContributorMatch(TimelineError):
    """None of the configured emails authored a commit in a repository."""

    def __init__(self, repo: str, contributors: set[str]):
        listed = ", ".join(sorted(contributors)) or "(none)"
        super().__init__(
            f"None of your emails are contributors of {repo}. Found contributors: {listed}"
        )
        self.repo = repo
        self.contributors = contributors


class DestinationUnreachable(TimelineError):
    """The destination repository could not be cloned, fetched or pushed."""
