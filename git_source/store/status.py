"""Status information for a resource.

A resource carries exactly one `Ready` condition. The condition is replaced
wholesale on every reconciliation rather than appended to.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

READY_CONDITION = "Ready"


class ConditionStatus(StrEnum):
    """Status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Reason(StrEnum):
    """Machine readable reason for the last condition transition."""

    INITIALIZING = "Initializing"
    GIT_OPERATION_FAILED = "GitOperationFailed"
    GIT_OPERATION_SUCCEEDED = "GitOperationSucceeded"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    STORAGE_OPERATION_FAILED = "StorageOperationFailed"


def now() -> datetime:
    """Return the current time, in UTC."""
    return datetime.now(timezone.utc)


@dataclass
class SourceCondition(DataClassDictMixin):
    """Condition reported on a source resource."""

    status: ConditionStatus
    reason: Reason
    message: str = ""
    type: str = READY_CONDITION
    last_transition_time: datetime = field(
        default_factory=now, metadata=field_options(alias="lastTransitionTime")
    )

    def __str__(self) -> str:
        """Return a string representation of the condition."""
        if self.message:
            return f"{self.type}={self.status} ({self.reason}): {self.message}"
        return f"{self.type}={self.status} ({self.reason})"

    class Config(BaseConfig):
        serialize_by_alias = True


def ready_condition(reason: Reason, message: str) -> SourceCondition:
    """Return a Ready=True condition."""
    return SourceCondition(status=ConditionStatus.TRUE, reason=reason, message=message)


def not_ready_condition(reason: Reason, message: str) -> SourceCondition:
    """Return a Ready=False condition."""
    return SourceCondition(status=ConditionStatus.FALSE, reason=reason, message=message)


@dataclass
class GitRepositoryStatus(DataClassDictMixin):
    """Observed state of a GitRepository."""

    conditions: list[SourceCondition] = field(default_factory=list)
    """Singleton list holding the Ready condition."""

    artifact: str | None = None
    """URL of the most recently published artifact."""

    last_update_time: datetime | None = field(
        default=None, metadata=field_options(alias="lastUpdateTime")
    )
    """Time the artifact last changed."""

    @property
    def ready(self) -> SourceCondition | None:
        """Return the Ready condition, if one was recorded."""
        for condition in self.conditions:
            if condition.type == READY_CONDITION:
                return condition
        return None

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if (condition := self.ready) is None:
            return "<no conditions>"
        return str(condition)

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


def initializing_status() -> GitRepositoryStatus:
    """Return a fresh status for a resource seen for the first time."""
    return GitRepositoryStatus(
        conditions=[
            SourceCondition(
                status=ConditionStatus.UNKNOWN, reason=Reason.INITIALIZING
            )
        ]
    )
