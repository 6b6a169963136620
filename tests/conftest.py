"""Shared fixtures for git-source tests."""

from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest

from git_source.config import SourceControllerConfig, StorageConfig
from git_source.storage import LocalStorage
from git_source.store import InMemoryStore
from git_source.task import TaskService, task_service_context

from .common import RemoteRepo


@pytest.fixture(name="remote")
def remote_fixture(tmp_path: Path) -> RemoteRepo:
    """Create a remote with a single commit on master."""
    remote = RemoteRepo(tmp_path / "remote")
    remote.commit(
        {
            "README.md": "Test repository\n",
            "apps/podinfo.yaml": "kind: HelmRelease\n",
        },
        message="Initial commit",
    )
    return remote


@pytest.fixture(name="storage_dir")
def storage_dir_fixture(tmp_path: Path) -> Path:
    """Directory artifacts are written to."""
    return tmp_path / "artifacts"


@pytest.fixture(name="storage")
def storage_fixture(storage_dir: Path) -> LocalStorage:
    """Local artifact storage."""
    return LocalStorage(StorageConfig(base_dir=storage_dir, base_url="http://artifacts"))


@pytest.fixture(name="scratch_dir")
def scratch_dir_fixture(tmp_path: Path) -> Path:
    """Parent directory of scratch directories, checked for leaks."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture(name="config")
def config_fixture(scratch_dir: Path) -> SourceControllerConfig:
    """Controller configuration for tests."""
    return SourceControllerConfig(
        timeout=timedelta(seconds=60),
        workers=2,
        retry_interval=timedelta(milliseconds=100),
        scratch_dir=scratch_dir,
    )


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Create a test store."""
    return InMemoryStore()


@pytest.fixture(name="task_service")
def task_service_fixture() -> Generator[TaskService, None, None]:
    """Install a fresh task service for the test."""
    with task_service_context() as service:
        yield service
