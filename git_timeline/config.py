"""
Configuration handling for git_timeline.

Defines the configuration schema, loads and saves it as YAML, and persists
the sync watermark (the author timestamp of the last replayed commit).
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("git_timeline.yaml")
DEFAULT_DESTINATION_DIR = "mirrored-timeline"
DEFAULT_STATE_FILE = ".last_sync"

ContributorCheck = Literal["off", "warn", "strict"]


class Identity(BaseModel):
    """Fixed author/committer identity stamped on every replayed commit."""

    name: str = Field(..., description="Name used for author and committer")
    email: str = Field(..., description="Email used for author and committer")


class Redaction(BaseModel):
    """A regex replacement applied to every commit message."""

    pattern: str = Field(..., description="Regular expression to replace")
    replacement: str = Field(default="", description="Replacement text")

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid redaction pattern {value!r}: {e}") from e
        return value


class DestinationConfig(BaseModel):
    """Where the synthetic timeline commits are written."""

    url: str | None = Field(
        default=None,
        description="Git remote URL of the timeline repository (e.g., git@github.com:me/timeline.git)",
    )
    path: Path | None = Field(
        default=None,
        description="Local working copy. Defaults to ./mirrored-timeline next to the config file",
    )
    branch: str = Field(default="main", description="Branch holding the timeline")
    remote: str = Field(default="origin", description="Remote to push to")


class TimelineConfig(BaseModel):
    """Main configuration for git_timeline."""

    identity: Identity = Field(..., description="Identity used for every mirrored commit")
    emails: list[str] = Field(
        default_factory=list,
        description="Author emails to harvest. Defaults to the identity email",
    )
    repos: list[str] = Field(
        default_factory=list, description="Paths of the source repositories"
    )
    repos_file: Path | None = Field(
        default=None,
        description="Optional text file with one repository path per line (# comments allowed)",
    )
    filter_command: str | None = Field(
        default=None,
        description="Executable receiving each message on stdin; non-zero exit skips the commit",
    )
    skip_patterns: list[str] = Field(
        default_factory=list,
        description="Regexes; a matching message is not mirrored",
    )
    redactions: list[Redaction] = Field(
        default_factory=list, description="Regex replacements applied to messages"
    )
    contributor_check: ContributorCheck = Field(
        default="warn",
        description="What to do when none of the emails authored anything in a repo",
    )
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    state_file: Path = Field(
        default=Path(DEFAULT_STATE_FILE),
        description="File holding the watermark of the last successful sync",
    )

    _base_dir: Path = PrivateAttr(default_factory=Path.cwd)

    @field_validator("emails", mode="before")
    @classmethod
    def _split_emails(cls, value):
        # Accept "a@x.org, b@y.org" as well as a list
        if isinstance(value, str):
            value = value.split(",")
        return value

    @field_validator("emails")
    @classmethod
    def _normalize_emails(cls, value: list[str]) -> list[str]:
        emails = []
        for email in value:
            email = email.strip().lower()
            if email and email not in emails:
                emails.append(email)
        return emails

    @field_validator("skip_patterns")
    @classmethod
    def _patterns_compile(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid skip pattern {pattern!r}: {e}") from e
        return value

    @classmethod
    def from_yaml(cls, path: Path) -> "TimelineConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ConfigError: the file is missing, is not YAML, or fails validation
        """
        path = Path(path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            config = cls.model_validate(data)
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        config._base_dir = path.resolve().parent
        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    @property
    def base_dir(self) -> Path:
        """Directory that relative paths in this config are resolved against."""
        return self._base_dir

    def resolve_path(self, path: str | Path) -> Path:
        """Expand ``~`` and anchor relative paths at the config directory."""
        expanded = Path(path).expanduser()
        if expanded.is_absolute():
            return expanded
        return self._base_dir / expanded

    @property
    def author_emails(self) -> list[str]:
        """Emails to harvest, falling back to the identity email."""
        return self.emails or [self.identity.email.strip().lower()]

    @property
    def state_path(self) -> Path:
        return self.resolve_path(self.state_file)

    @property
    def destination_path(self) -> Path:
        """Local working copy of the destination repository."""
        return self.resolve_path(self.destination.path or DEFAULT_DESTINATION_DIR)

    def get_repo_paths(self) -> list[str]:
        """All configured source repositories, config list first, in order."""
        paths: list[str] = []
        for entry in self.repos:
            entry = entry.strip()
            if entry and entry not in paths:
                paths.append(entry)

        if self.repos_file:
            for entry in read_repos_file(self.resolve_path(self.repos_file)):
                if entry not in paths:
                    paths.append(entry)

        return paths


def read_repos_file(path: Path) -> list[str]:
    """Read a repos.txt style list: one path per line, # comments and blanks ignored."""
    entries = []
    try:
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                entries.append(line)
    except FileNotFoundError as e:
        raise ConfigError(f"Repository list not found: {path}") from e
    return entries


class SyncWatermark(BaseModel):
    """Author timestamp of the most recently replayed commit."""

    timestamp: int | None = Field(
        None, description="Epoch seconds of the last synced commit, None if never synced"
    )

    @property
    def is_set(self) -> bool:
        return self.timestamp is not None

    def resume_from(self) -> int | None:
        """Lower bound for the next harvest, one second past the last commit."""
        if self.timestamp is None:
            return None
        return self.timestamp + 1

    def advance(self, newest: int | None) -> "SyncWatermark":
        """Return a watermark moved forward to ``newest``; never moves back."""
        if newest is None:
            return self
        if self.timestamp is None:
            return SyncWatermark(timestamp=newest)
        return SyncWatermark(timestamp=max(self.timestamp, newest))

    @classmethod
    def load(cls, path: Path) -> "SyncWatermark":
        """Load the watermark from a file holding a single integer."""
        if not path.exists():
            return cls()
        raw = path.read_text().strip()
        if not raw:
            return cls()
        try:
            return cls(timestamp=int(raw))
        except ValueError:
            logger.warning(f"Ignoring unreadable watermark in {path}: {raw!r}")
            return cls()

    def save(self, path: Path) -> None:
        """Write the watermark atomically (temp file, then rename)."""
        if self.timestamp is None:
            raise ValueError("Cannot save an unset watermark")

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.timestamp}\n")
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


def create_default_config(
    name: str,
    email: str,
    repos: list[str] | None = None,
    destination_url: str | None = None,
    filter_command: str | None = None,
) -> TimelineConfig:
    """Create a configuration with sensible defaults."""
    return TimelineConfig(
        identity=Identity(name=name, email=email),
        emails=[email],
        repos=list(repos or []),
        filter_command=filter_command,
        destination=DestinationConfig(url=destination_url),
    )
