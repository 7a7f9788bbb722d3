from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EngineStatus(str, Enum):
    """Closed set of engine status codes understood by the controller."""

    NEUTRAL = "neutral"  # no solve attempted yet
    BOUNDED = "bounded"  # attempted, no solution yet, not proven infeasible
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    INFEASIBLE_OR_UNBOUNDED = "infeasible_or_unbounded"
    ERROR = "error"


class FailureReason(str, Enum):
    UNBOUNDED = "unbounded"
    INFEASIBLE = "infeasible"
    UNBOUNDED_OR_INFEASIBLE = "unbounded_or_infeasible"
    INCOMPLETE = "incomplete"
    INTERRUPTED = "interrupted"


class ErrorCodes(str, Enum):
    NO_SOLUTION = "NO_SOLUTION"
    CONFIG_ERROR = "CONFIG_ERROR"
    PRECONDITION = "PRECONDITION"
    ENGINE_CALL = "ENGINE_CALL"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class SolverRunError(Exception):
    code: ErrorCodes = ErrorCodes.ENGINE_CALL

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        code: ErrorCodes | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.user_message = user_message or message
        self.details = details or {}


class ConfigurationError(SolverRunError):
    code = ErrorCodes.CONFIG_ERROR


class PreconditionViolation(SolverRunError):
    code = ErrorCodes.PRECONDITION


class EngineCallFailure(SolverRunError):
    code = ErrorCodes.ENGINE_CALL


class ProgrammingInvariantViolation(SolverRunError):
    """Status outside the closed set, or an engine-internal error state.

    Signals a bug; never caught inside the controller.
    """

    code = ErrorCodes.INVARIANT_VIOLATION


_USER_MESSAGES: dict[FailureReason, str] = {
    FailureReason.UNBOUNDED: "The model is unbounded. Check the objective and bounds.",
    FailureReason.INFEASIBLE: "The model is infeasible. Relax the constraints and retry.",
    FailureReason.UNBOUNDED_OR_INFEASIBLE: "The model is infeasible or unbounded.",
    FailureReason.INCOMPLETE: "No solution within the allowed limits. Try raising the time or iteration limit.",
    FailureReason.INTERRUPTED: "Execution was cancelled before a solution was found.",
}


class FailureOutcome(SolverRunError):
    """Expected "no usable solution" outcome of a run."""

    code = ErrorCodes.NO_SOLUTION

    def __init__(
        self,
        reason: FailureReason,
        *,
        iteration: int | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            f"No solution: {reason.value}",
            user_message=_USER_MESSAGES[reason],
        )
        self.reason = reason
        self.iteration = iteration
        self.operation = operation
        self._sync_details()

    def annotate(
        self, *, iteration: int | None = None, operation: str | None = None
    ) -> FailureOutcome:
        if iteration is not None:
            self.iteration = iteration
        if operation is not None:
            self.operation = operation
        self._sync_details()
        return self

    def __reduce__(self) -> tuple[Any, ...]:
        # args hold only the message; rebuild from the reason plus state
        return (type(self), (self.reason,), self.__dict__.copy())

    def _sync_details(self) -> None:
        self.details = {
            "reason": self.reason.value,
            "iteration": self.iteration,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.iteration is not None:
            parts.append(f"iteration={self.iteration}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        return " ".join(parts)


@dataclass(frozen=True)
class IterationRecord:
    number: int
    status: EngineStatus
    solution_found: bool
    elapsed_s: float = 0.0
