"""Resolution of a GitRepository reference into a checkout strategy.

A `GitRepositoryRef` may set several fields at once. They are collapsed once
per sync into exactly one strategy, with this precedence (highest first):

    commit > semver > tag > branch > default branch

`branch` is also the branch fetched when a commit is pinned.
"""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import re

import semantic_version

from git_source.exceptions import GitOperationError
from git_source.manifest import DEFAULT_BRANCH, GitRepositoryRef

__all__ = [
    "BranchStrategy",
    "CommitStrategy",
    "TagStrategy",
    "SemverStrategy",
    "CheckoutStrategy",
    "checkout_strategy",
    "parse_constraint",
    "parse_tolerant",
    "select_semver_tag",
]

_LOGGER = logging.getLogger(__name__)

SHALLOW_DEPTH = 2

# Abbreviated or full SHA-1 and SHA-256 object names
COMMIT_RE = re.compile(r"[0-9a-fA-F]{4,64}")


@dataclass(frozen=True)
class BranchStrategy:
    """Fetch the tip of a branch, without tags."""

    branch: str
    depth: int | None = SHALLOW_DEPTH


@dataclass(frozen=True)
class CommitStrategy:
    """Fetch the full history of a branch and check out an exact commit."""

    branch: str
    commit: str


@dataclass(frozen=True)
class TagStrategy:
    """Fetch a single tag."""

    tag: str
    depth: int | None = SHALLOW_DEPTH


@dataclass(frozen=True)
class SemverStrategy:
    """Fetch every tag and check out the newest one matching the constraint."""

    constraint: str


CheckoutStrategy = BranchStrategy | CommitStrategy | TagStrategy | SemverStrategy


def checkout_strategy(
    ref: GitRepositoryRef | None, default_branch: str = DEFAULT_BRANCH
) -> CheckoutStrategy:
    """Collapse a reference into the single strategy used to fetch it.

    Raises:
        GitOperationError: If a pinned commit is not a hex object name.
    """
    if ref is None:
        return BranchStrategy(default_branch)
    branch = ref.branch or default_branch
    if ref.commit:
        if not COMMIT_RE.fullmatch(ref.commit):
            raise GitOperationError(
                f"invalid commit '{ref.commit}': expected a hex object name"
            )
        return CommitStrategy(branch=branch, commit=ref.commit)
    if ref.semver:
        return SemverStrategy(ref.semver)
    if ref.tag:
        return TagStrategy(ref.tag)
    return BranchStrategy(branch)


def parse_constraint(expr: str) -> semantic_version.NpmSpec:
    """Parse a semver range expression such as `^1.0.0` or `>=1.2 <2`.

    Raises:
        GitOperationError: If the expression is not a valid range.
    """
    try:
        return semantic_version.NpmSpec(expr.strip())
    except ValueError as err:
        raise GitOperationError(f"semver parse range error: {err}") from err


def parse_tolerant(tag: str) -> semantic_version.Version | None:
    """Parse a tag as a semantic version, returning None if it is not one.

    Surrounding whitespace, a leading `v` and missing minor or patch numbers
    are tolerated, so `v1`, `1.2`, `v1.02.0` and ` v1.2.3 ` all parse.
    """
    text = tag.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    split = len(text)
    for sep in "-+":
        if (idx := text.find(sep)) != -1:
            split = min(split, idx)
    core, suffix = text[:split], text[split:]
    parts = core.split(".")
    if not 1 <= len(parts) <= 3:
        return None
    if not all(part.isascii() and part.isdigit() for part in parts):
        return None
    # Leading zeros are dropped, so `1.02.0` is read as `1.2.0`
    parts = [str(int(part)) for part in parts]
    parts.extend(["0"] * (3 - len(parts)))
    try:
        return semantic_version.Version(".".join(parts) + suffix)
    except ValueError:
        return None


def _precedence(version: semantic_version.Version) -> semantic_version.Version:
    # Build metadata does not take part in ordering.
    return semantic_version.Version(
        major=version.major,
        minor=version.minor,
        patch=version.patch,
        prerelease=version.prerelease,
    )


def select_semver_tag(
    constraint: str, tags: Iterable[tuple[str, str]]
) -> tuple[str, str]:
    """Select the newest `(tag, commit)` whose tag satisfies the constraint.

    Tags that are not semantic versions are skipped. When several tags parse
    to the same version, the lexicographically greatest tag name wins, so the
    result does not depend on the order tags were listed in.

    Raises:
        GitOperationError: If the constraint is invalid or nothing matches.
    """
    spec = parse_constraint(constraint)
    best: tuple[semantic_version.Version, str, str] | None = None
    for tag, commit in tags:
        if (version := parse_tolerant(tag)) is None:
            _LOGGER.debug("Skipping tag %s, not a semantic version", tag)
            continue
        if not spec.match(version):
            continue
        candidate = (_precedence(version), tag, commit)
        if best is None or candidate[:2] > best[:2]:
            best = candidate
    if best is None:
        raise GitOperationError(f"no match found for semver: {constraint}")
    _LOGGER.debug("Selected tag %s for semver %s", best[1], constraint)
    return best[1], best[2]
