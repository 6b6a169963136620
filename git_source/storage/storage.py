"""Artifact storage interface."""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from pathlib import Path

from git_source.manifest import NamedResource

from .artifact import Artifact


class ArtifactStorage(ABC):
    """Abstract base class for storing and publishing artifacts.

    Implementations are shared by every resource, so all mutating operations
    on one artifact must happen while holding `lock` for that artifact.
    """

    @abstractmethod
    def artifact_for(self, resource_id: NamedResource, filename: str) -> Artifact:
        """Return the artifact identity for a resource and file name.

        This is a pure function and does no I/O.
        """

    @abstractmethod
    async def exists(self, artifact: Artifact) -> bool:
        """Return True if the artifact has been written."""

    @abstractmethod
    async def ensure_dir(self, artifact: Artifact) -> None:
        """Create the directory holding the artifact, if needed."""

    @abstractmethod
    def lock(self, artifact: Artifact) -> AbstractAsyncContextManager[None]:
        """Return a context manager holding an exclusive lock on the artifact."""

    @abstractmethod
    async def archive(
        self, artifact: Artifact, source_dir: Path, exclude: str = ".git"
    ) -> None:
        """Write a compressed archive of `source_dir` to the artifact path.

        Entries whose name matches the `exclude` glob are skipped, along with
        everything below them.
        """

    @abstractmethod
    async def publish_alias(self, artifact: Artifact, alias: str) -> str:
        """Atomically point `alias` at the artifact, returning the alias URL."""

    @abstractmethod
    async def retain_only(self, artifact: Artifact) -> None:
        """Delete every other artifact stored for the same resource."""

    @abstractmethod
    async def remove_all(self, resource_id: NamedResource) -> None:
        """Delete every artifact stored for a resource."""
