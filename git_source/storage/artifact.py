"""Artifact representation."""

from dataclasses import dataclass

ARCHIVE_SUFFIX = ".tar.gz"


@dataclass(frozen=True, kw_only=True)
class Artifact:
    """A content addressed archive of one resolved checkout.

    The identity is derived entirely from the owning resource and the file
    name, and the file name is derived from the resolved commit, so the same
    commit always maps to the same artifact.
    """

    kind: str
    """Kind of the resource that owns the artifact."""

    namespace: str
    """Namespace of the resource that owns the artifact."""

    name: str
    """Name of the resource that owns the artifact."""

    filename: str
    """File name of the archive, e.g. `<commit>.tar.gz`."""

    path: str
    """Local filesystem path of the archive."""

    url: str
    """URL the archive is served at."""

    @property
    def revision(self) -> str:
        """The revision encoded in the file name."""
        return self.filename.removesuffix(ARCHIVE_SUFFIX)


def artifact_filename(revision: str) -> str:
    """Return the archive file name for a resolved commit."""
    return f"{revision}{ARCHIVE_SUFFIX}"
