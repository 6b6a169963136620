"""Tests for fetching and checking out git repositories."""

from pathlib import Path

import pytest

from git_source.exceptions import GitOperationError
from git_source.source_controller.git import fetch_checkout
from git_source.source_controller.reference import (
    BranchStrategy,
    CommitStrategy,
    SemverStrategy,
    TagStrategy,
)
from git_source.source_controller.secret import git_env

from tests.common import RemoteRepo


def test_fetch_default_branch(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test fetching the tip of a branch."""
    first = remote.repo.head.commit.hexsha
    second = remote.commit({"README.md": "v2\n"})
    dest = tmp_path / "checkout"
    checkout = fetch_checkout(remote.url, dest, BranchStrategy("master"), git_env(None))
    assert checkout.commit == second
    assert checkout.commit != first
    assert checkout.ref == "refs/heads/master"
    assert (dest / "README.md").read_text() == "v2\n"
    assert (dest / "apps" / "podinfo.yaml").exists()


def test_fetch_branch(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test fetching a branch other than master."""
    master = remote.repo.head.commit.hexsha
    remote.checkout_branch("feature")
    feature = remote.commit({"feature.txt": "feature\n"})
    remote.repo.git.checkout("master")

    checkout = fetch_checkout(
        remote.url, tmp_path / "checkout", BranchStrategy("feature"), git_env(None)
    )
    assert checkout.commit == feature
    assert checkout.commit != master
    assert (tmp_path / "checkout" / "feature.txt").exists()


def test_fetch_missing_branch(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test fetching a branch that does not exist."""
    with pytest.raises(GitOperationError, match="git clone error"):
        fetch_checkout(
            remote.url, tmp_path / "checkout", BranchStrategy("missing"), git_env(None)
        )


def test_fetch_commit(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test checking out a pinned commit from the branch history."""
    pinned = remote.repo.head.commit.hexsha
    for i in range(3):
        remote.commit({"README.md": f"change {i}\n"})

    checkout = fetch_checkout(
        remote.url,
        tmp_path / "checkout",
        CommitStrategy(branch="master", commit=pinned),
        git_env(None),
    )
    assert checkout.commit == pinned
    assert (tmp_path / "checkout" / "README.md").read_text() == "Test repository\n"


def test_fetch_missing_commit(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test pinning a commit that is not in the branch history."""
    with pytest.raises(
        GitOperationError, match="git checkout deadbeef for master error"
    ):
        fetch_checkout(
            remote.url,
            tmp_path / "checkout",
            CommitStrategy(branch="master", commit="deadbeef"),
            git_env(None),
        )


@pytest.mark.parametrize("annotated", [False, True])
def test_fetch_tag(remote: RemoteRepo, tmp_path: Path, annotated: bool) -> None:
    """Test checking out a tag."""
    tagged = remote.tag("v1.0.0", annotated=annotated)
    remote.commit({"README.md": "after the tag\n"})

    checkout = fetch_checkout(
        remote.url, tmp_path / "checkout", TagStrategy("v1.0.0"), git_env(None)
    )
    assert checkout.commit == tagged
    assert checkout.ref == "refs/tags/v1.0.0"
    assert (tmp_path / "checkout" / "README.md").read_text() == "Test repository\n"


def test_fetch_semver(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test selecting the newest tag matching a constraint."""
    remote.tag("v1.0.0")
    v120 = remote.commit({"README.md": "1.2.0\n"})
    remote.tag("v1.2.0", annotated=True)
    remote.commit({"README.md": "2.0.0\n"})
    remote.tag("v2.0.0")
    remote.tag("not-a-version")

    checkout = fetch_checkout(
        remote.url, tmp_path / "checkout", SemverStrategy("^1.0.0"), git_env(None)
    )
    assert checkout.commit == v120
    assert checkout.ref == "refs/tags/v1.2.0"
    assert (tmp_path / "checkout" / "README.md").read_text() == "1.2.0\n"


def test_fetch_semver_no_match(remote: RemoteRepo, tmp_path: Path) -> None:
    """Test a constraint no tag satisfies."""
    remote.tag("v1.0.0")
    with pytest.raises(GitOperationError, match="no match found for semver: >=2.0.0"):
        fetch_checkout(
            remote.url, tmp_path / "checkout", SemverStrategy(">=2.0.0"), git_env(None)
        )


def test_fetch_missing_remote(tmp_path: Path) -> None:
    """Test fetching from a remote that does not exist."""
    with pytest.raises(GitOperationError, match="git clone error"):
        fetch_checkout(
            f"file://{tmp_path / 'missing'}",
            tmp_path / "checkout",
            BranchStrategy("master"),
            git_env(None),
        )
