"""Tests for local artifact storage."""

import asyncio
import os
from pathlib import Path
import tarfile

import pytest

from git_source.exceptions import StorageOperationError
from git_source.manifest import NamedResource
from git_source.storage import LocalStorage, artifact_filename

RESOURCE_ID = NamedResource("GitRepository", "test-ns", "test-repo")


@pytest.fixture(name="source_dir")
def source_dir_fixture(tmp_path: Path) -> Path:
    """A checked out tree including git metadata."""
    source = tmp_path / "source"
    (source / "apps").mkdir(parents=True)
    (source / ".git" / "objects").mkdir(parents=True)
    (source / "README.md").write_text("hello\n")
    (source / "apps" / "podinfo.yaml").write_text("kind: HelmRelease\n")
    (source / ".git" / "HEAD").write_text("ref: refs/heads/master\n")
    return source


def test_artifact_for(storage: LocalStorage, storage_dir: Path) -> None:
    """Test artifact paths are derived from the resource and file name."""
    artifact = storage.artifact_for(RESOURCE_ID, artifact_filename("abc123"))
    assert artifact.kind == "GitRepository"
    assert artifact.namespace == "test-ns"
    assert artifact.name == "test-repo"
    assert artifact.filename == "abc123.tar.gz"
    assert artifact.revision == "abc123"
    assert artifact.path == str(
        storage_dir / "gitrepository" / "test-ns" / "test-repo" / "abc123.tar.gz"
    )
    assert artifact.url == "http://artifacts/gitrepository/test-ns/test-repo/abc123.tar.gz"
    assert storage.artifact_for(RESOURCE_ID, "abc123.tar.gz") == artifact


async def test_archive_round_trip(
    storage: LocalStorage, source_dir: Path, tmp_path: Path
) -> None:
    """Test archiving excludes git metadata and extracts to the same tree."""
    artifact = storage.artifact_for(RESOURCE_ID, artifact_filename("abc123"))
    assert not await storage.exists(artifact)

    await storage.ensure_dir(artifact)
    await storage.ensure_dir(artifact)
    await storage.archive(artifact, source_dir)
    assert await storage.exists(artifact)

    with tarfile.open(artifact.path, "r:gz") as tar:
        names = tar.getnames()
        assert names == ["README.md", "apps", "apps/podinfo.yaml"]
        for member in tar.getmembers():
            assert member.mtime == 0
            assert member.uid == 0
        tar.extractall(tmp_path / "extracted", filter="data")

    extracted = tmp_path / "extracted"
    assert (extracted / "README.md").read_text() == "hello\n"
    assert (extracted / "apps" / "podinfo.yaml").read_text() == "kind: HelmRelease\n"
    assert not (extracted / ".git").exists()


async def test_archive_is_reproducible(storage: LocalStorage, source_dir: Path) -> None:
    """Test archiving the same tree twice produces identical bytes."""
    first = storage.artifact_for(RESOURCE_ID, "first.tar.gz")
    second = storage.artifact_for(RESOURCE_ID, "second.tar.gz")
    await storage.ensure_dir(first)
    await storage.archive(first, source_dir)
    os.utime(source_dir / "README.md", (0, 1234567))
    await storage.archive(second, source_dir)
    assert Path(first.path).read_bytes() == Path(second.path).read_bytes()


async def test_archive_unreadable_source(storage: LocalStorage, tmp_path: Path) -> None:
    """Test archive failures leave no partial file behind."""
    artifact = storage.artifact_for(RESOURCE_ID, "abc123.tar.gz")
    await storage.ensure_dir(artifact)
    source = tmp_path / "unreadable"
    source.mkdir()
    (source / "file.txt").write_text("content")
    (source / "file.txt").chmod(0)
    if os.access(source / "file.txt", os.R_OK):
        pytest.skip("Running with permissions that ignore file modes")
    with pytest.raises(StorageOperationError, match="storage archive error"):
        await storage.archive(artifact, source)
    assert os.listdir(Path(artifact.path).parent) == []


async def test_publish_alias(storage: LocalStorage, source_dir: Path) -> None:
    """Test the alias is repointed at the newest artifact."""
    first = storage.artifact_for(RESOURCE_ID, "first.tar.gz")
    second = storage.artifact_for(RESOURCE_ID, "second.tar.gz")
    await storage.ensure_dir(first)
    await storage.archive(first, source_dir)
    await storage.archive(second, source_dir)

    url = await storage.publish_alias(first, "latest.tar.gz")
    assert url == "http://artifacts/gitrepository/test-ns/test-repo/latest.tar.gz"
    alias = Path(first.path).parent / "latest.tar.gz"
    assert os.readlink(alias) == "first.tar.gz"

    await storage.publish_alias(second, "latest.tar.gz")
    assert os.readlink(alias) == "second.tar.gz"
    assert alias.read_bytes() == Path(second.path).read_bytes()
    assert sorted(os.listdir(alias.parent)) == [
        "first.tar.gz",
        "latest.tar.gz",
        "second.tar.gz",
    ]


async def test_lock_mutual_exclusion(storage: LocalStorage) -> None:
    """Test only one holder of an artifact lock at a time."""
    artifact = storage.artifact_for(RESOURCE_ID, "abc123.tar.gz")
    other = storage.artifact_for(
        NamedResource("GitRepository", "test-ns", "other"), "abc123.tar.gz"
    )
    await storage.ensure_dir(artifact)
    await storage.ensure_dir(other)
    holders = 0
    max_holders = 0

    async def hold() -> None:
        nonlocal holders, max_holders
        async with storage.lock(artifact):
            holders += 1
            max_holders = max(max_holders, holders)
            await asyncio.sleep(0.05)
            holders -= 1

    first = asyncio.create_task(hold())
    await asyncio.sleep(0.01)
    # Locks of unrelated artifacts do not contend
    async with storage.lock(other):
        assert holders == 1
    await asyncio.gather(first, hold(), hold())
    assert max_holders == 1


async def test_lock_released_on_error(storage: LocalStorage) -> None:
    """Test the lock is released when the holder fails."""
    artifact = storage.artifact_for(RESOURCE_ID, "abc123.tar.gz")
    await storage.ensure_dir(artifact)
    with pytest.raises(RuntimeError):
        async with storage.lock(artifact):
            raise RuntimeError("boom")
    async with asyncio.timeout(1):
        async with storage.lock(artifact):
            pass


async def test_retain_only(storage: LocalStorage, source_dir: Path) -> None:
    """Test every other artifact is removed, keeping the alias."""
    current = storage.artifact_for(RESOURCE_ID, "current.tar.gz")
    stale = storage.artifact_for(RESOURCE_ID, "stale.tar.gz")
    await storage.ensure_dir(current)
    for artifact in (current, stale):
        async with storage.lock(artifact):
            await storage.archive(artifact, source_dir)
    await storage.publish_alias(current, "latest.tar.gz")

    await storage.retain_only(current)
    remaining = set(os.listdir(Path(current.path).parent))
    assert "stale.tar.gz" not in remaining
    assert "stale.tar.gz.lock" not in remaining
    assert {"current.tar.gz", "latest.tar.gz"} <= remaining
    assert await storage.exists(current)


async def test_retain_only_missing_directory(storage: LocalStorage) -> None:
    """Test retaining in a directory that does not exist."""
    artifact = storage.artifact_for(RESOURCE_ID, "abc123.tar.gz")
    await storage.retain_only(artifact)


async def test_remove_all(storage: LocalStorage, source_dir: Path) -> None:
    """Test removing every artifact of a resource."""
    artifact = storage.artifact_for(RESOURCE_ID, "abc123.tar.gz")
    await storage.ensure_dir(artifact)
    await storage.archive(artifact, source_dir)
    await storage.remove_all(RESOURCE_ID)
    assert not Path(artifact.path).parent.exists()

    # Removing again is not an error
    await storage.remove_all(RESOURCE_ID)
