"""Local filesystem artifact storage.

Artifacts are laid out as `<base_dir>/<kind>/<namespace>/<name>/<filename>`
and served by an external file server at the same relative path under
`base_url`.
"""

from collections.abc import AsyncGenerator, Iterator
import contextlib
import fnmatch
import gzip
import logging
import os
from pathlib import Path
import secrets
import shutil
import tarfile
import tempfile

import aiofiles.os
from filelock import AsyncFileLock, Timeout

from git_source.config import StorageConfig
from git_source.exceptions import StorageOperationError
from git_source.manifest import NamedResource
from git_source.task.threads import run_blocking

from .artifact import Artifact
from .storage import ArtifactStorage

_LOGGER = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


def _walk(source: Path, exclude: str) -> Iterator[Path]:
    """Yield every path below `source` in a stable order, pruning excluded names."""
    for root, dirs, files in os.walk(source):
        dirs[:] = sorted(d for d in dirs if not fnmatch.fnmatch(d, exclude))
        root_path = Path(root)
        for name in sorted(dirs + files):
            if fnmatch.fnmatch(name, exclude):
                continue
            yield root_path / name


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    """Strip ownership and timestamps so the same tree archives identically."""
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = 0
    if info.isdir() or info.mode & 0o100:
        info.mode = 0o755
    else:
        info.mode = 0o644
    return info


def _write_archive(dest: Path, source: Path, exclude: str) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                with tarfile.open(
                    fileobj=gz, mode="w", format=tarfile.PAX_FORMAT
                ) as tar:
                    for path in _walk(source, exclude):
                        tar.add(
                            path,
                            arcname=path.relative_to(source).as_posix(),
                            recursive=False,
                            filter=_normalize,
                        )
            raw.flush()
            os.fsync(raw.fileno())
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, dest)
    finally:
        tmp_path.unlink(missing_ok=True)


def _remove_all_but(directory: Path, keep: set[str]) -> list[str]:
    """Remove regular files in `directory` not named in `keep`.

    Symlinks are aliases and are left in place. Returns the removed names.
    """
    removed: list[str] = []
    errors: list[OSError] = []
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except FileNotFoundError:
        return removed
    for entry in entries:
        if entry.name in keep or entry.is_symlink() or not entry.is_file():
            continue
        try:
            os.remove(entry.path)
        except FileNotFoundError:
            continue
        except OSError as err:
            _LOGGER.debug("Unable to remove %s: %s", entry.path, err)
            errors.append(err)
            continue
        removed.append(entry.name)
    if errors:
        raise errors[0]
    return removed


class LocalStorage(ArtifactStorage):
    """Stores artifacts on the local filesystem."""

    def __init__(self, config: StorageConfig) -> None:
        """Initialize LocalStorage."""
        self._base_dir = Path(config.base_dir)
        self._base_url = config.base_url.rstrip("/")

    def _relative_dir(self, resource_id: NamedResource) -> str:
        return "/".join(
            [resource_id.kind.lower(), resource_id.namespace or "", resource_id.name]
        )

    def artifact_for(self, resource_id: NamedResource, filename: str) -> Artifact:
        """Return the artifact identity for a resource and file name."""
        relative = f"{self._relative_dir(resource_id)}/{filename}"
        return Artifact(
            kind=resource_id.kind,
            namespace=resource_id.namespace or "",
            name=resource_id.name,
            filename=filename,
            path=str(self._base_dir / relative),
            url=f"{self._base_url}/{relative}",
        )

    async def exists(self, artifact: Artifact) -> bool:
        """Return True if the artifact has been written."""
        return await aiofiles.os.path.isfile(artifact.path)

    async def ensure_dir(self, artifact: Artifact) -> None:
        """Create the directory holding the artifact, if needed."""
        try:
            await aiofiles.os.makedirs(Path(artifact.path).parent, exist_ok=True)
        except OSError as err:
            raise StorageOperationError(f"mkdir dir error: {err}") from err

    @contextlib.asynccontextmanager
    async def lock(self, artifact: Artifact) -> AsyncGenerator[None, None]:
        """Hold an exclusive lock on the artifact path."""
        file_lock = AsyncFileLock(f"{artifact.path}{LOCK_SUFFIX}", run_in_executor=False)
        try:
            await file_lock.acquire()
        except (OSError, Timeout) as err:
            raise StorageOperationError(f"unable to acquire lock: {err}") from err
        _LOGGER.debug("Acquired lock for %s", artifact.path)
        try:
            yield
        finally:
            await file_lock.release()
            _LOGGER.debug("Released lock for %s", artifact.path)

    async def archive(
        self, artifact: Artifact, source_dir: Path, exclude: str = ".git"
    ) -> None:
        """Write a reproducible gzip tar of `source_dir` to the artifact path."""
        _LOGGER.debug("Archiving %s to %s", source_dir, artifact.path)
        try:
            await run_blocking(
                _write_archive, Path(artifact.path), Path(source_dir), exclude
            )
        except (OSError, tarfile.TarError) as err:
            raise StorageOperationError(f"storage archive error: {err}") from err

    async def publish_alias(self, artifact: Artifact, alias: str) -> str:
        """Atomically point `alias` at the artifact, returning the alias URL."""
        alias_path = Path(artifact.path).parent / alias
        tmp_path = alias_path.with_name(f".{alias}.{secrets.token_hex(4)}.tmp")
        try:
            await aiofiles.os.symlink(artifact.filename, tmp_path)
            await aiofiles.os.replace(tmp_path, alias_path)
        except OSError as err:
            with contextlib.suppress(OSError):
                await aiofiles.os.remove(tmp_path)
            raise StorageOperationError(f"storage symlink error: {err}") from err
        _LOGGER.debug("Pointed %s at %s", alias_path, artifact.filename)
        return artifact.url.rsplit("/", 1)[0] + f"/{alias}"

    async def retain_only(self, artifact: Artifact) -> None:
        """Delete every other artifact stored for the same resource."""
        keep = {artifact.filename, f"{artifact.filename}{LOCK_SUFFIX}"}
        try:
            removed = await run_blocking(
                _remove_all_but, Path(artifact.path).parent, keep
            )
        except OSError as err:
            raise StorageOperationError(f"artifacts gc error: {err}") from err
        if removed:
            _LOGGER.debug("Removed stale artifacts %s", removed)

    async def remove_all(self, resource_id: NamedResource) -> None:
        """Delete every artifact stored for a resource."""
        directory = self._base_dir / self._relative_dir(resource_id)
        try:
            await run_blocking(shutil.rmtree, directory)
        except FileNotFoundError:
            _LOGGER.debug("No artifacts stored for %s", resource_id)
        except OSError as err:
            raise StorageOperationError(
                f"unable to delete artifacts for {resource_id}: {err}"
            ) from err
