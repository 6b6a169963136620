"""Module for turning a repository's secret into git transport credentials.

The credential variant is chosen by the scheme of the repository URL:

- `http` and `https` use basic auth from the `username` and `password` keys.
- `ssh` uses the private key in `identity`, and the host keys in `known_hosts`
  are the only keys the connection accepts.
- Any other scheme is fetched anonymously.
"""

import base64
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import shlex
from urllib.parse import urlparse

from git_source.exceptions import AuthenticationError, InputException
from git_source.manifest import Secret

__all__ = [
    "Credentials",
    "BasicAuth",
    "SSHIdentity",
    "get_auth_from_secret",
    "git_env",
]

_LOGGER = logging.getLogger(__name__)

HTTP_SCHEMES = {"http", "https"}
SSH_SCHEME = "ssh"
IDENTITY_FILE = "identity"
KNOWN_HOSTS_FILE = "known_hosts"

# Environment for every git invocation, so a missing credential fails rather
# than waiting on a prompt.
BASE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
}


@dataclass
class BasicAuth:
    """HTTP basic auth credentials."""

    username: str
    password: str = field(repr=False)

    def env(self) -> dict[str, str]:
        """Environment passing the credentials as an extra HTTP header."""
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {token}",
        }


@dataclass
class SSHIdentity:
    """SSH private key plus the host keys the remote must present."""

    private_key: bytes = field(repr=False)
    known_hosts: bytes
    identity_file: Path
    known_hosts_file: Path

    def env(self) -> dict[str, str]:
        """Environment pinning ssh to the identity and known hosts files."""
        command = [
            "ssh",
            "-i",
            str(self.identity_file),
            "-o",
            "IdentitiesOnly=yes",
            "-o",
            f"UserKnownHostsFile={self.known_hosts_file}",
            "-o",
            "GlobalKnownHostsFile=/dev/null",
            "-o",
            "StrictHostKeyChecking=yes",
            "-o",
            "BatchMode=yes",
        ]
        return {"GIT_SSH_COMMAND": shlex.join(command)}


Credentials = BasicAuth | SSHIdentity | None


def git_env(credentials: Credentials) -> dict[str, str]:
    """Return the environment for git commands using the credentials."""
    env = dict(BASE_ENV)
    if credentials is not None:
        env.update(credentials.env())
    return env


def _write_private(path: Path, content: bytes, mode: int) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as out:
        out.write(content)


def _looks_like_private_key(content: bytes) -> bool:
    text = content.strip()
    return text.startswith(b"-----BEGIN ") and b"PRIVATE KEY-----" in text


def get_auth_from_secret(repo_url: str, secret: Secret, scratch_dir: Path) -> Credentials:
    """Return the transport credentials for `repo_url` from the secret.

    Key material for ssh is written into `scratch_dir`, which belongs to a
    single sync attempt and is removed by the caller.

    Raises:
        AuthenticationError: If fields required by the URL scheme are missing.
    """
    try:
        values = secret.values()
    except InputException as err:
        raise AuthenticationError(str(err)) from err
    scheme = urlparse(repo_url).scheme.lower()

    if scheme in HTTP_SCHEMES:
        missing = [key for key in ("username", "password") if not values.get(key)]
        if missing:
            raise AuthenticationError(
                f"invalid '{secret.name}' secret data: required fields "
                f"{' and '.join(missing)}"
            )
        _LOGGER.debug("Using basic auth from secret %s", secret.name)
        try:
            return BasicAuth(
                username=values["username"].decode(),
                password=values["password"].decode(),
            )
        except UnicodeDecodeError as err:
            raise AuthenticationError(
                f"invalid '{secret.name}' secret data: username and password "
                "must be valid utf-8"
            ) from err

    if scheme == SSH_SCHEME:
        if not (identity := values.get("identity")):
            raise AuthenticationError(
                f"invalid '{secret.name}' secret data: required field identity"
            )
        if not _looks_like_private_key(identity):
            raise AuthenticationError(
                f"invalid '{secret.name}' secret data: identity is not a private key"
            )
        if not (known_hosts := values.get("known_hosts")):
            raise AuthenticationError(
                f"invalid '{secret.name}' secret data: required field known_hosts"
            )
        identity_file = scratch_dir / IDENTITY_FILE
        known_hosts_file = scratch_dir / KNOWN_HOSTS_FILE
        try:
            # ssh refuses keys readable by other users
            _write_private(identity_file, identity, 0o600)
            _write_private(known_hosts_file, known_hosts, 0o644)
        except OSError as err:
            raise AuthenticationError(f"unable to write ssh key material: {err}") from err
        _LOGGER.debug("Using ssh identity from secret %s", secret.name)
        return SSHIdentity(
            private_key=identity,
            known_hosts=known_hosts,
            identity_file=identity_file,
            known_hosts_file=known_hosts_file,
        )

    _LOGGER.debug("No credentials for url scheme '%s'", scheme)
    return None
