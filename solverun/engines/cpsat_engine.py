from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import pandas as pd
from ortools.sat.python import cp_model

from pipeline.io.files import write_frame

from ..engine import (
    KNOWN_PARAMS,
    PARAM_ITERATION_LIMIT,
    PARAM_PROGRESS_INTERVAL,
    PARAM_TIME_LIMIT,
)
from ..types import EngineStatus

logger = logging.getLogger("solverun.engines.cpsat")

_STATUS_MAP = {
    cp_model.OPTIMAL: EngineStatus.OPTIMAL,
    cp_model.FEASIBLE: EngineStatus.FEASIBLE,
    cp_model.INFEASIBLE: EngineStatus.INFEASIBLE,
    cp_model.MODEL_INVALID: EngineStatus.ERROR,
    cp_model.UNKNOWN: EngineStatus.BOUNDED,
}


def _ortools_version() -> str:
    try:
        return version("ortools")
    except PackageNotFoundError:  # pragma: no cover
        return "unknown"


class _ProgressCallback(cp_model.CpSolverSolutionCallback):
    """Logs every ``interval``-th improving solution found during a solve."""

    def __init__(self, interval: int) -> None:
        super().__init__()
        self.interval = max(1, int(interval))
        self.solutions = 0

    def on_solution_callback(self) -> None:
        self.solutions += 1
        if self.solutions % self.interval != 0:
            return
        logger.info(
            "CP-SAT: solutions=%d objective=%.4f bound=%.4f wall_time_s=%.3f",
            self.solutions,
            self.ObjectiveValue(),
            self.BestObjectiveBound(),
            self.WallTime(),
        )


class CpSatEngine:
    """Engine over an OR-Tools ``CpModel`` solved with ``CpSolver``."""

    name = "ortools-cp-sat"

    def __init__(self, model: cp_model.CpModel, *, num_workers: int | None = None) -> None:
        self.model = model
        self.solver = cp_model.CpSolver()
        if num_workers is not None:
            self.solver.parameters.num_workers = int(num_workers)
        self.params: dict[str, Any] = {}
        self.attempts = 0
        self.solutions = 0
        self._last_status: int | None = None

    def status(self) -> EngineStatus:
        if self._last_status is None:
            return EngineStatus.NEUTRAL
        return _STATUS_MAP.get(self._last_status, EngineStatus.ERROR)

    def solve(self) -> bool:
        callback = _ProgressCallback(self.params.get(PARAM_PROGRESS_INTERVAL, 10))
        try:
            self._last_status = self.solver.Solve(self.model, callback)
        finally:
            self.attempts += 1
            self.solutions += callback.solutions
        return self.status() in (EngineStatus.OPTIMAL, EngineStatus.FEASIBLE)

    def set_param(self, name: str, value: Any) -> None:
        if name not in KNOWN_PARAMS:
            raise ValueError(f"Unknown parameter for {self.name}: {name}")
        self.params[name] = value
        # Limits land on the solver parameters at once; export_params reads them there
        if name == PARAM_TIME_LIMIT and value is not None:
            self.solver.parameters.max_time_in_seconds = float(value)
        elif name == PARAM_ITERATION_LIMIT and value is not None:
            self.solver.parameters.max_number_of_conflicts = int(value)

    def _has_solution(self) -> bool:
        return self.status() in (EngineStatus.OPTIMAL, EngineStatus.FEASIBLE)

    def get_property(self, name: str) -> Any:
        proto = self.model.Proto()
        if name == "engine.name":
            return self.name
        if name == "engine.version":
            return _ortools_version()
        if name in ("model.variables", "model.integer_variables"):
            return len(proto.variables)
        if name == "model.constraints":
            return len(proto.constraints)
        if name == "solution.status":
            if self._last_status is None:
                raise KeyError(name)
            return self.solver.StatusName(self._last_status)
        if name == "solution.objective" and self._has_solution():
            return self.solver.ObjectiveValue()
        if name == "solution.best_bound" and self._last_status is not None:
            return self.solver.BestObjectiveBound()
        if name == "solve.attempts":
            return self.attempts
        if name == "solve.solutions":
            return self.solutions
        if self._last_status is not None:
            if name == "solve.branches":
                return self.solver.NumBranches()
            if name == "solve.conflicts":
                return self.solver.NumConflicts()
            if name == "solve.wall_time_s":
                return round(self.solver.WallTime(), 6)
        raise KeyError(name)

    def export_model(self, path: Path) -> None:
        if not self.model.ExportToFile(str(path)):
            raise OSError(f"CP-SAT failed to export the model to {path}")

    def export_params(self, path: Path) -> None:
        path.write_text(str(self.solver.parameters), encoding="utf-8")

    def solution_frame(self) -> pd.DataFrame:
        rows = []
        if self._has_solution():
            for i, var_proto in enumerate(self.model.Proto().variables):
                var = self.model.GetIntVarFromProtoIndex(i)
                rows.append({"variable": var_proto.name or f"x{i}", "value": self.solver.Value(var)})
        return pd.DataFrame(rows, columns=["variable", "value"])

    def export_solution(self, path: Path) -> None:
        write_frame(self.solution_frame(), path)
