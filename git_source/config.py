"""Configuration objects for git-source."""

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from .manifest import DEFAULT_BRANCH


@dataclass
class StorageConfig:
    """Configuration for the local artifact storage."""

    base_dir: Path
    """Root directory artifacts are written under."""

    base_url: str = "http://localhost"
    """Address the artifact server publishes `base_dir` at."""


@dataclass
class SourceControllerConfig:
    """Configuration for the SourceController."""

    timeout: timedelta = timedelta(seconds=15)
    """Deadline for a single sync attempt, from auth through publish."""

    workers: int = 2
    """Number of resources reconciled concurrently."""

    retry_interval: timedelta = timedelta(seconds=10)
    """Requeue delay after a failure to write a resource's own status."""

    default_branch: str = DEFAULT_BRANCH
    """Branch fetched when the resource does not name one."""

    alias: str = "latest.tar.gz"
    """Name of the alias pointing at the most recently published artifact."""

    scratch_dir: Path | None = None
    """Parent of the per-attempt scratch directories, the system default if unset."""
