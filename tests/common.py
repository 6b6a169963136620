"""Helpers for building throwaway git remotes in tests."""

from pathlib import Path

import git
import yaml

from git_source.manifest import GitRepository


class RemoteRepo:
    """A local git repository used as a remote over a file:// url."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.repo = git.Repo.init(path, initial_branch="master")
        with self.repo.config_writer() as writer:
            writer.set_value("user", "name", "myusername")
            writer.set_value("user", "email", "myemail@example.com")
            writer.set_value("commit", "gpgsign", "false")
            writer.set_value("tag", "gpgsign", "false")

    @property
    def url(self) -> str:
        return f"file://{self.path}"

    def commit(self, files: dict[str, str], message: str = "update") -> str:
        """Write the files, commit them and return the new commit hash."""
        for name, content in files.items():
            file_path = self.path / name
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content)
        self.repo.git.add(A=True)
        self.repo.git.commit(m=message, allow_empty=True)
        return self.repo.head.commit.hexsha

    def tag(self, name: str, annotated: bool = False) -> str:
        """Tag the current commit, returning its hash."""
        if annotated:
            self.repo.git.tag(name, m=f"Release {name}")
        else:
            self.repo.git.tag(name)
        return self.repo.head.commit.hexsha

    def checkout_branch(self, name: str) -> None:
        """Create or reset a branch at the current commit and switch to it."""
        self.repo.git.checkout("-B", name)


def git_repository(url: str, extra_spec: str = "") -> GitRepository:
    """Return a GitRepository for `url`, with optional extra spec lines."""
    yaml_str = f"""
apiVersion: source.toolkit.fluxcd.io/v1
kind: GitRepository
metadata:
  name: test-repo
  namespace: test-ns
spec:
  url: {url}
  interval: 1m0s
{extra_spec}
"""
    return GitRepository.parse_doc(yaml.safe_load(yaml_str))
