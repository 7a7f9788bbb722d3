from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .types import EngineStatus

# Parameter names understood by every engine adapter.
PARAM_ITERATION_LIMIT = "iteration_limit"
PARAM_TIME_LIMIT = "time_limit"
PARAM_PROGRESS_INTERVAL = "progress_interval"

KNOWN_PARAMS = (PARAM_ITERATION_LIMIT, PARAM_TIME_LIMIT, PARAM_PROGRESS_INTERVAL)

# Property names, grouped by the telemetry section that reports them.
SOLVER_PROPERTIES = ("engine.name", "engine.version")
MODEL_PROPERTIES = (
    "model.variables",
    "model.integer_variables",
    "model.constraints",
    "model.is_mip",
)
SOLUTION_PROPERTIES = (
    "solution.status",
    "solution.objective",
    "solution.best_bound",
    "solve.attempts",
    "solve.solutions",
    "solve.branches",
    "solve.conflicts",
    "solve.wall_time_s",
)


@runtime_checkable
class Engine(Protocol):
    """Opaque solver instance driven by the controller.

    The model is already built and loaded. Implementations raise ``KeyError``
    from ``get_property`` for properties they do not expose.
    """

    def status(self) -> EngineStatus: ...

    def solve(self) -> bool: ...

    def get_property(self, name: str) -> Any: ...

    def set_param(self, name: str, value: Any) -> None: ...

    def export_model(self, path: Path) -> None: ...

    def export_params(self, path: Path) -> None: ...

    def export_solution(self, path: Path) -> None: ...
