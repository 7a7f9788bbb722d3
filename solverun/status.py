"""Classification of engine status codes.

Two entry points over the same closed set of statuses. They differ only in
how "no result yet" statuses are read: mid-loop such a status still allows
another iteration, at the end of the loop it means the run produced nothing
usable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .types import (
    EngineStatus,
    FailureOutcome,
    FailureReason,
    ProgrammingInvariantViolation,
)


class StatusClass(str, Enum):
    CONTINUABLE = "continuable"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class Classification:
    status: EngineStatus
    kind: StatusClass
    reason: FailureReason | None = None

    def __post_init__(self) -> None:
        if (self.kind is StatusClass.FAILURE) != (self.reason is not None):
            raise ProgrammingInvariantViolation(
                "A failure classification needs a reason, and only a failure has one",
                details={"status": self.status.value, "kind": self.kind.value},
            )

    @property
    def is_continuable(self) -> bool:
        return self.kind is StatusClass.CONTINUABLE

    @property
    def is_success(self) -> bool:
        return self.kind is StatusClass.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.kind is StatusClass.FAILURE

    def to_outcome(
        self, *, iteration: int | None = None, operation: str | None = None
    ) -> FailureOutcome:
        if self.reason is None:
            raise ProgrammingInvariantViolation(
                f"Status {self.status.value} is not a failure",
                details={"status": self.status.value, "kind": self.kind.value},
            )
        return FailureOutcome(self.reason, iteration=iteration, operation=operation)


def coerce_status(status: Any) -> EngineStatus:
    if isinstance(status, EngineStatus):
        return status
    if isinstance(status, str):
        try:
            return EngineStatus(status)
        except ValueError:
            pass
    raise ProgrammingInvariantViolation(
        f"Engine status outside the known set: {status!r}",
        details={"status": repr(status)},
    )


def _classify(status: Any, *, terminal: bool) -> Classification:
    s = coerce_status(status)
    if s is EngineStatus.ERROR:
        raise ProgrammingInvariantViolation(
            "Engine reports an internal error state",
            details={"status": s.value, "terminal": terminal},
        )
    elif s is EngineStatus.INFEASIBLE:
        return Classification(s, StatusClass.FAILURE, FailureReason.INFEASIBLE)
    elif s is EngineStatus.UNBOUNDED:
        return Classification(s, StatusClass.FAILURE, FailureReason.UNBOUNDED)
    elif s is EngineStatus.INFEASIBLE_OR_UNBOUNDED:
        return Classification(
            s, StatusClass.FAILURE, FailureReason.UNBOUNDED_OR_INFEASIBLE
        )
    elif s is EngineStatus.NEUTRAL or s is EngineStatus.BOUNDED:
        if terminal:
            return Classification(s, StatusClass.FAILURE, FailureReason.INCOMPLETE)
        return Classification(s, StatusClass.CONTINUABLE)
    elif s is EngineStatus.OPTIMAL or s is EngineStatus.FEASIBLE:
        return Classification(s, StatusClass.SUCCESS)
    else:  # pragma: no cover - every EngineStatus member is handled above
        raise ProgrammingInvariantViolation(
            f"Unhandled engine status: {s!r}", details={"status": s.value}
        )


def validate_continuable(status: Any) -> Classification:
    """Classify a status observed before an iteration's solve."""
    return _classify(status, terminal=False)


def validate_terminal(status: Any) -> Classification:
    """Classify the status the engine reports once the loop has ended."""
    return _classify(status, terminal=True)
