"""Git operations for fetching a GitRepository into a scratch directory.

The remote is fetched into a freshly initialized repository rather than
cloned, so that exactly the refs a `CheckoutStrategy` needs are transferred.
All functions here block and are run in a worker thread by the controller.
"""

from dataclasses import dataclass
import logging
from pathlib import Path

import git

from git_source.exceptions import GitOperationError

from .reference import (
    BranchStrategy,
    CheckoutStrategy,
    CommitStrategy,
    SemverStrategy,
    TagStrategy,
    select_semver_tag,
)

__all__ = ["Checkout", "fetch_checkout"]

_LOGGER = logging.getLogger(__name__)

REMOTE = "origin"


@dataclass(frozen=True)
class Checkout:
    """Result of checking out a GitRepository."""

    commit: str
    """The resolved commit hash."""

    ref: str
    """The ref the commit was resolved from, e.g. `refs/tags/v1.0.0`."""


def _fetch(
    repo: git.Repo,
    refspec: str,
    depth: int | None,
    tags: bool,
    timeout: float | None,
) -> None:
    kwargs: dict[str, object] = {"no_tags": not tags}
    if depth:
        kwargs["depth"] = depth
    _LOGGER.debug("git fetch %s %s (depth=%s, tags=%s)", REMOTE, refspec, depth, tags)
    repo.git.fetch(REMOTE, refspec, kill_after_timeout=timeout, **kwargs)


def _checkout(repo: git.Repo, rev: str, timeout: float | None) -> None:
    _LOGGER.debug("git checkout %s", rev)
    repo.git.checkout(rev, force=True, detach=True, kill_after_timeout=timeout)


def _checkout_branch(
    repo: git.Repo, strategy: BranchStrategy, timeout: float | None
) -> str:
    remote_ref = f"refs/remotes/{REMOTE}/{strategy.branch}"
    try:
        _fetch(
            repo,
            f"+refs/heads/{strategy.branch}:{remote_ref}",
            strategy.depth,
            tags=False,
            timeout=timeout,
        )
        _checkout(repo, remote_ref, timeout)
    except git.GitCommandError as err:
        raise GitOperationError(f"git clone error: {err}") from err
    return f"refs/heads/{strategy.branch}"


def _checkout_commit(
    repo: git.Repo, strategy: CommitStrategy, timeout: float | None
) -> str:
    remote_ref = f"refs/remotes/{REMOTE}/{strategy.branch}"
    try:
        _fetch(
            repo,
            f"+refs/heads/{strategy.branch}:{remote_ref}",
            None,
            tags=False,
            timeout=timeout,
        )
    except git.GitCommandError as err:
        raise GitOperationError(f"git clone error: {err}") from err
    try:
        _checkout(repo, f"{strategy.commit}^{{commit}}", timeout)
    except git.GitCommandError as err:
        raise GitOperationError(
            f"git checkout {strategy.commit} for {strategy.branch} error: {err}"
        ) from err
    return f"refs/heads/{strategy.branch}"


def _checkout_tag(repo: git.Repo, strategy: TagStrategy, timeout: float | None) -> str:
    tag_ref = f"refs/tags/{strategy.tag}"
    try:
        _fetch(repo, f"+{tag_ref}:{tag_ref}", strategy.depth, tags=False, timeout=timeout)
        _checkout(repo, tag_ref, timeout)
    except git.GitCommandError as err:
        raise GitOperationError(f"git clone error: {err}") from err
    return tag_ref


def _list_tags(repo: git.Repo) -> list[tuple[str, str]]:
    """Return `(tag, commit)` pairs, peeling annotated tags."""
    tags = []
    for tag_ref in repo.tags:
        try:
            tags.append((tag_ref.name, tag_ref.commit.hexsha))
        except ValueError:
            # Tags of trees or blobs have no commit to check out
            _LOGGER.debug("Skipping tag %s, not a commit", tag_ref.name)
    return tags


def _checkout_semver(
    repo: git.Repo, strategy: SemverStrategy, timeout: float | None
) -> str:
    try:
        _fetch(repo, "+refs/tags/*:refs/tags/*", None, tags=True, timeout=timeout)
    except git.GitCommandError as err:
        raise GitOperationError(f"git clone error: {err}") from err
    try:
        tags = _list_tags(repo)
    except (git.GitCommandError, ValueError) as err:
        raise GitOperationError(f"git list tags error: {err}") from err
    tag, commit = select_semver_tag(strategy.constraint, tags)
    try:
        _checkout(repo, commit, timeout)
    except git.GitCommandError as err:
        raise GitOperationError(f"git checkout error: {err}") from err
    return f"refs/tags/{tag}"


def fetch_checkout(
    url: str,
    dest: Path,
    strategy: CheckoutStrategy,
    env: dict[str, str],
    timeout: float | None = None,
) -> Checkout:
    """Fetch `url` into `dest` and check out the commit selected by `strategy`.

    The working tree is left in `dest`. The `timeout` bounds each git command
    so the process is killed rather than outliving the caller's deadline.

    Raises:
        GitOperationError: If any git operation fails or the strategy does not
            resolve to a commit.
    """
    try:
        repo = git.Repo.init(dest)
    except (git.GitCommandError, OSError) as err:
        raise GitOperationError(f"git init error: {err}") from err
    with repo:
        try:
            repo.create_remote(REMOTE, url)
        except git.GitCommandError as err:
            raise GitOperationError(f"git remote error: {err}") from err
        with repo.git.custom_environment(**env):
            if isinstance(strategy, CommitStrategy):
                ref = _checkout_commit(repo, strategy, timeout)
            elif isinstance(strategy, SemverStrategy):
                ref = _checkout_semver(repo, strategy, timeout)
            elif isinstance(strategy, TagStrategy):
                ref = _checkout_tag(repo, strategy, timeout)
            else:
                ref = _checkout_branch(repo, strategy, timeout)
        try:
            commit = repo.head.commit.hexsha
        except ValueError as err:
            raise GitOperationError(f"git resolve HEAD error: {err}") from err
    _LOGGER.debug("Resolved %s at %s to %s", url, ref, commit)
    return Checkout(commit=commit, ref=ref)
