"""
Commit message filters.

A filter receives the composed message ``"[label] subject"`` and returns the
text to mirror, or None to leave the commit out of the timeline.
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Protocol

from .config import Redaction, TimelineConfig
from .exceptions import FilterUnavailable

logger = logging.getLogger(__name__)


class MessageFilter(Protocol):
    """Interface for message filters."""

    def check(self) -> None:
        """Raise FilterUnavailable if the filter cannot run."""
        ...

    def transform(self, message: str) -> str | None:
        """Return the message to mirror, or None to skip the commit."""
        ...


class PassthroughFilter:
    """Mirror every message unchanged."""

    def check(self) -> None:
        pass

    def transform(self, message: str) -> str | None:
        return message


class PatternFilter:
    """
    Regex based filtering.

    Messages matching any skip pattern are dropped. Redactions are applied in
    order to everything else, e.g. stripping ticket IDs like ``ABC-123``
    or replacing internal project names with ``[REDACTED]``.
    """

    def __init__(
        self,
        skip_patterns: list[str] | None = None,
        redactions: list[Redaction] | None = None,
    ):
        self.skip_patterns = [re.compile(p, re.IGNORECASE) for p in skip_patterns or []]
        self.redactions = [
            (re.compile(r.pattern, re.IGNORECASE), r.replacement) for r in redactions or []
        ]

    def check(self) -> None:
        pass

    def transform(self, message: str) -> str | None:
        if any(pattern.search(message) for pattern in self.skip_patterns):
            return None

        for pattern, replacement in self.redactions:
            message = pattern.sub(replacement, message)

        if self.redactions:
            message = " ".join(message.split())
        return message


class CommandFilter:
    """
    Run an external executable per message.

    The message is written to the command's stdin; its stdout is the new
    message. A non-zero exit status skips the commit.
    """

    def __init__(self, command: str, cwd: Path | None = None, timeout: int = 30):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self.argv = shlex.split(command)

    def _resolve(self) -> str | None:
        if not self.argv:
            return None
        program = os.path.expanduser(self.argv[0])
        if os.sep in program:
            path = Path(program)
            if not path.is_absolute() and self.cwd is not None:
                path = self.cwd / path
            return str(path)
        return shutil.which(program)

    def check(self) -> None:
        program = self._resolve()
        if program is None:
            raise FilterUnavailable(f"Filter command not found: {self.command}")
        if not os.path.isfile(program):
            raise FilterUnavailable(f"Filter command not found: {program}")
        if not os.access(program, os.X_OK):
            raise FilterUnavailable(f"Filter command is not executable: {program}")
        self.argv[0] = program

    def transform(self, message: str) -> str | None:
        try:
            result = subprocess.run(
                self.argv,
                input=message + "\n",
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise FilterUnavailable(
                f"Filter command timed out after {self.timeout}s: {self.command}"
            ) from e
        except OSError as e:
            raise FilterUnavailable(f"Filter command failed to start: {e}") from e

        if result.returncode < 0:
            raise FilterUnavailable(
                f"Filter command killed by signal {-result.returncode}: {self.command}"
            )
        if result.returncode != 0:
            logger.debug(f"Filter skipped: {message}")
            return None
        return result.stdout.strip()


class ChainFilter:
    """Apply several filters in order, stopping at the first skip."""

    def __init__(self, filters: list[MessageFilter]):
        self.filters = filters

    def check(self) -> None:
        for message_filter in self.filters:
            message_filter.check()

    def transform(self, message: str) -> str | None:
        for message_filter in self.filters:
            result = message_filter.transform(message)
            if result is None or not result.strip():
                return None
            message = result
        return message


def build_filter(config: TimelineConfig) -> MessageFilter:
    """Build the filter described by the configuration."""
    filters: list[MessageFilter] = []

    if config.skip_patterns or config.redactions:
        filters.append(PatternFilter(config.skip_patterns, config.redactions))
    if config.filter_command:
        filters.append(CommandFilter(config.filter_command, cwd=config.base_dir))

    if not filters:
        return PassthroughFilter()
    if len(filters) == 1:
        return filters[0]
    return ChainFilter(filters)
