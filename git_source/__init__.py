"""Reconcile git repositories into versioned, content addressed artifacts.

A `GitRepository` names a remote and a reference (branch, tag, pinned commit
or semver constraint). The source controller resolves the reference to a
commit, archives the checkout as `<commit>.tar.gz` and records the outcome on
the resource's status.
"""

__all__ = [
    "manifest",
    "exceptions",
    "config",
    "source_controller",
    "storage",
    "store",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
