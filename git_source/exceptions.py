"""Exceptions related to git-source."""

__all__ = [
    "GitSourceException",
    "InputException",
    "ObjectNotFoundError",
    "StatusUpdateError",
    "ReconcileError",
    "AuthenticationError",
    "GitOperationError",
    "StorageOperationError",
]


class GitSourceException(Exception):
    """Generic base exception used for this library."""


class InputException(GitSourceException):
    """Raised when the input files or values are not formatted as expected."""


class ObjectNotFoundError(GitSourceException):
    """Raised when an object is not found in the store."""


class StatusUpdateError(GitSourceException):
    """Raised when the store refuses a status write for a resource.

    This is the only failure that escapes a reconciliation; the work queue
    retries it on its own schedule.
    """


class ReconcileError(GitSourceException):
    """Raised when a sync attempt fails and is reported as a condition.

    The `reason` is the value reported on the resulting `Ready=False`
    condition.
    """

    reason: str = "GitOperationFailed"


class AuthenticationError(ReconcileError):
    """Raised when credentials are missing or invalid."""

    reason = "AuthenticationFailed"


class GitOperationError(ReconcileError):
    """Raised when a fetch, checkout or reference resolution fails."""


class StorageOperationError(ReconcileError):
    """Raised when a scratch directory, lock, archive or publish step fails."""

    reason = "StorageOperationFailed"
