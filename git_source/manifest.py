"""Representation of the resources reconciled by the source controller.

Resources are parsed from kubernetes style YAML documents. Only the kinds the
controller cares about are modeled: `GitRepository` objects describing what to
fetch and `Secret` objects holding the credentials to fetch it with.
"""

import base64
import binascii
from dataclasses import dataclass, field
from datetime import timedelta
import logging
from pathlib import Path
import re
from typing import Any, ClassVar

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode, yaml_encode
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "read_resources",
    "parse_raw_obj",
    "parse_duration",
    "format_duration",
    "NamedResource",
    "GitRepository",
    "GitRepositoryRef",
    "LocalObjectReference",
    "Secret",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
# We don't check specific versions for forward compatibility on upgrade.
GIT_REPOSITORY_DOMAIN = "source.toolkit.fluxcd.io"
GIT_REPOSITORY = "GitRepository"
SECRET_KIND = "Secret"
DEFAULT_BRANCH = "master"

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": timedelta(microseconds=1) / 1000,
    "us": timedelta(microseconds=1),
    "µs": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}


def parse_duration(value: str | int | float) -> timedelta:
    """Parse a kubernetes duration string such as `1m0s` or `1h30m`.

    Bare numbers are treated as seconds.
    """
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = value.strip()
    if not text:
        raise InputException(f"Invalid duration: '{value}'")
    if text == "0":
        return timedelta()
    pos = 0
    result = timedelta()
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            raise InputException(f"Invalid duration: '{value}'")
        result += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise InputException(f"Invalid duration: '{value}'")
    return result


def format_duration(value: timedelta) -> str:
    """Render a duration the way kubernetes prints them, e.g. `1h30m0s`."""
    total = value.total_seconds()
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    out = ""
    if hours:
        out += f"{int(hours)}h"
    if hours or minutes:
        out += f"{int(minutes)}m"
    return out + f"{seconds:g}s"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def _check_metadata(cls: type, doc: dict[str, Any]) -> tuple[str, str | None]:
    if not (metadata := doc.get("metadata")):
        raise InputException(f"Invalid {cls.__name__} missing metadata")
    if not (name := metadata.get("name")):
        raise InputException(f"Invalid {cls.__name__} missing metadata.name")
    return name, metadata.get("namespace")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized manifest."""
        return yaml_decode(content, cls)

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class LocalObjectReference(BaseManifest):
    """A reference to an object in the same namespace."""

    name: str
    """The name of the object."""


@dataclass
class GitRepositoryRef(BaseManifest):
    """GitRepositoryRef defines the Git ref used for pull and checkout operations.

    More than one field may be set; the effective selection is decided by
    `git_source.source_controller.reference.checkout_strategy`.
    """

    branch: str | None = field(default=None)
    """The Git branch to checkout, defaults to master."""

    tag: str | None = field(default=None)
    """The Git tag to checkout."""

    semver: str | None = field(default=None)
    """The Git tag semver expression."""

    commit: str | None = field(default=None)
    """The Git commit SHA to checkout."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "GitRepositoryRef":
        """Parse a GitRepositoryRef from a kubernetes resource."""
        return cls(
            branch=doc.get("branch"),
            tag=doc.get("tag"),
            semver=doc.get("semver", doc.get("semverConstraint")),
            commit=doc.get("commit"),
        )


@dataclass
class GitRepository(BaseManifest):
    """GitRepository represents a Git repository to publish as an artifact."""

    kind: ClassVar[str] = GIT_REPOSITORY
    """The kind of the object."""

    name: str
    """The name of the GitRepository."""

    namespace: str
    """The namespace of owning the GitRepository."""

    url: str
    """The URL to the repository."""

    interval: timedelta = field(
        metadata=field_options(serialize=format_duration, deserialize=parse_duration)
    )
    """How often the repository is reconciled."""

    ref: GitRepositoryRef | None = None
    """The Git reference to use for pull and checkout operations."""

    secret_ref: LocalObjectReference | None = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    """The secret holding credentials for the repository."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "GitRepository":
        """Parse a GitRepository from a kubernetes resource."""
        _check_version(doc, GIT_REPOSITORY_DOMAIN)
        name, namespace = _check_metadata(cls, doc)
        if not namespace:
            raise InputException(f"Invalid {cls.__name__} missing metadata.namespace")
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls.__name__} missing spec")
        if not (url := spec.get("url")):
            raise InputException(f"Invalid {cls.__name__} missing spec.url")
        if (interval := spec.get("interval")) is None:
            raise InputException(f"Invalid {cls.__name__} missing spec.interval")

        ref = None
        if ref_dict := spec.get("ref", spec.get("reference")):
            ref = GitRepositoryRef.parse_doc(ref_dict)
        secret_ref = None
        if secret_ref_dict := spec.get("secretRef"):
            secret_ref = LocalObjectReference.from_dict(secret_ref_dict)

        return cls(
            name=name,
            namespace=namespace,
            url=url,
            interval=parse_duration(interval),
            ref=ref,
            secret_ref=secret_ref,
        )

    @property
    def resource_id(self) -> NamedResource:
        """Identifier for the GitRepository in the store."""
        return NamedResource(self.kind, self.namespace, self.name)


@dataclass
class Secret(BaseManifest):
    """A Secret contains a small amount of sensitive data."""

    kind: ClassVar[str] = SECRET_KIND
    """The kind of the Secret."""

    name: str
    """The name of the Secret."""

    namespace: str | None = None
    """The namespace of the Secret."""

    data: dict[str, Any] | None = field(metadata={"serialize": "omit"}, default=None)
    """The base64 encoded data in the Secret."""

    string_data: dict[str, Any] | None = field(
        metadata={"serialize": "omit"}, default=None
    )
    """The string data in the Secret."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Secret":
        """Parse a secret object from a kubernetes resource."""
        _check_version(doc, "v1")
        name, namespace = _check_metadata(cls, doc)
        return Secret(
            name=name,
            namespace=namespace,
            data=doc.get("data"),
            string_data=doc.get("stringData"),
        )

    def values(self) -> dict[str, bytes]:
        """Return the decoded secret contents, with `stringData` taking precedence."""
        result: dict[str, bytes] = {}
        for key, value in (self.data or {}).items():
            try:
                result[key] = base64.b64decode(value, validate=True)
            except (binascii.Error, TypeError, ValueError) as err:
                raise InputException(
                    f"Secret {self.name} has invalid base64 data for key '{key}'"
                ) from err
        for key, value in (self.string_data or {}).items():
            result[key] = str(value).encode()
        return result


def parse_raw_obj(obj: dict[str, Any]) -> BaseManifest | None:
    """Parse a raw kubernetes object, returning None for unsupported kinds."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if kind == GIT_REPOSITORY:
        return GitRepository.parse_doc(obj)
    if kind == SECRET_KIND:
        return Secret.parse_doc(obj)
    _LOGGER.debug("Ignoring unsupported object kind %s", kind)
    return None


async def read_resources(path: Path) -> list[BaseManifest]:
    """Read all supported resources from a multi-document YAML file."""
    async with aiofiles.open(str(path)) as resource_file:
        content = await resource_file.read()
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"File {path} failed to parse as yaml: {err}") from err
    results = []
    for doc in docs:
        if not doc:
            continue
        if not isinstance(doc, dict):
            raise InputException(f"File {path} contains a non-object document: {doc}")
        if (obj := parse_raw_obj(doc)) is not None:
            results.append(obj)
    return results
