"""Iterative solver execution.

Drives an already-built optimization engine through a controlled sequence of
solve attempts and reports a stable outcome. The headless CLI lives in
`solverun.adapter` and is available via `python -m solverun`.
"""

from .config import ConfigurationSnapshot, SolverRunConfig, load_config
from .controller import CancellationToken, ExecutionController
from .delegate import CallbackDelegate, ContinuationDelegate, RetryUntilSolved
from .engine import Engine
from .status import validate_continuable, validate_terminal
from .types import (
    ConfigurationError,
    EngineCallFailure,
    EngineStatus,
    ErrorCodes,
    FailureOutcome,
    FailureReason,
    IterationRecord,
    PreconditionViolation,
    ProgrammingInvariantViolation,
    SolverRunError,
)

__all__ = [
    "CallbackDelegate",
    "CancellationToken",
    "ConfigurationError",
    "ConfigurationSnapshot",
    "ContinuationDelegate",
    "Engine",
    "EngineCallFailure",
    "EngineStatus",
    "ErrorCodes",
    "ExecutionController",
    "FailureOutcome",
    "FailureReason",
    "IterationRecord",
    "PreconditionViolation",
    "ProgrammingInvariantViolation",
    "RetryUntilSolved",
    "SolverRunConfig",
    "SolverRunError",
    "load_config",
    "validate_continuable",
    "validate_terminal",
]
