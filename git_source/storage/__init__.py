"""Storage for the artifacts published by the source controller."""

from .artifact import Artifact, artifact_filename
from .local import LocalStorage
from .storage import ArtifactStorage

__all__ = [
    "Artifact",
    "ArtifactStorage",
    "LocalStorage",
    "artifact_filename",
]
