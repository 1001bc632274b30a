"""Pytest configuration and fixtures for git_timeline tests."""

import tempfile
from pathlib import Path

import pytest
from git import Actor, Repo

from git_timeline.config import DestinationConfig, Identity, TimelineConfig

# Fixed epoch offset so test dates look like real commit dates
BASE = 1_700_000_000

ME = "me@example.com"
OTHER = "someone@example.com"


def add_commits(repo_path: Path, commits: list[tuple[int, str, str]]) -> None:
    """Append commits given as (author timestamp, subject, author email)."""
    repo = Repo(repo_path)
    for timestamp, subject, email in commits:
        actor = Actor("Dev", email)
        date = f"{timestamp} +0000"
        repo.index.commit(
            subject,
            author=actor,
            committer=actor,
            author_date=date,
            commit_date=date,
        )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_source(temp_dir: Path):
    """Factory creating a source repository named ``name`` with the given commits."""

    def _make(name: str, commits: list[tuple[int, str, str]] | None = None) -> Path:
        repo_path = temp_dir / "sources" / name
        repo_path.mkdir(parents=True)

        repo = Repo.init(repo_path)
        repo.config_writer().set_value("user", "name", "Test User").release()
        repo.config_writer().set_value("user", "email", "test@example.com").release()

        add_commits(repo_path, commits or [])
        return repo_path

    return _make


@pytest.fixture
def remote_repo(temp_dir: Path):
    """Create an empty bare repository acting as the timeline remote."""
    repo_path = temp_dir / "remote.git"
    Repo.init(repo_path, bare=True)
    yield repo_path


@pytest.fixture
def identity():
    return Identity(name="Timeline Bot", email="timeline@example.com")


@pytest.fixture
def make_config(temp_dir: Path, identity: Identity):
    """Factory for a config writing to a temp destination and state file."""

    def _make(repos: list[Path], url: str | None = None, **overrides) -> TimelineConfig:
        values = {
            "identity": identity,
            "emails": [ME],
            "repos": [str(r) for r in repos],
            "destination": DestinationConfig(url=url, path=temp_dir / "timeline"),
            "state_file": temp_dir / ".last_sync",
        }
        values.update(overrides)
        return TimelineConfig(**values)

    return _make


@pytest.fixture
def write_script(temp_dir: Path):
    """Factory writing an executable shell script and returning its path."""

    def _write(name: str, body: str) -> Path:
        script = temp_dir / name
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(0o755)
        return script

    return _write
