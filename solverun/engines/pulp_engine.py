from __future__ import annotations

import json
import time
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import pandas as pd
import pulp as plp

from pipeline.io.files import write_frame

from ..engine import KNOWN_PARAMS, PARAM_ITERATION_LIMIT, PARAM_TIME_LIMIT
from ..types import EngineStatus


def _pulp_version() -> str:
    try:
        return version("pulp")
    except PackageNotFoundError:  # pragma: no cover - pulp installed from source
        return "unknown"


class PulpEngine:
    """Engine over a PuLP ``LpProblem`` solved with the bundled CBC.

    The problem is built by the caller. ``seed`` fixes CBC's random seed for
    deterministic tie-breaking; ``msg`` forwards CBC's own output.
    ``progress_interval`` is recorded for the parameter export only.
    """

    name = "pulp-cbc"

    def __init__(
        self,
        problem: plp.LpProblem,
        *,
        seed: int | None = None,
        msg: bool = False,
        solver_options: list[str] | None = None,
    ) -> None:
        self.problem = problem
        self.seed = seed
        self.msg = msg
        self.solver_options = list(solver_options or [])
        self.params: dict[str, Any] = {}
        self.attempts = 0
        self.wall_time_s = 0.0

    def status(self) -> EngineStatus:
        code = self.problem.status
        if code == plp.LpStatusOptimal:
            if self.problem.sol_status == plp.LpSolutionIntegerFeasible:
                # CBC stopped on a limit with an incumbent
                return EngineStatus.FEASIBLE
            return EngineStatus.OPTIMAL
        if code == plp.LpStatusInfeasible:
            return EngineStatus.INFEASIBLE
        if code == plp.LpStatusUnbounded:
            return EngineStatus.UNBOUNDED
        if code == plp.LpStatusUndefined:
            return EngineStatus.BOUNDED
        if code == plp.LpStatusNotSolved:
            return EngineStatus.NEUTRAL if self.attempts == 0 else EngineStatus.BOUNDED
        return EngineStatus.ERROR

    def _build_solver(self) -> plp.LpSolver:
        options = list(self.solver_options)
        if self.seed is not None:
            options.append(f"randomSeed {self.seed}")
        if self.params.get(PARAM_ITERATION_LIMIT) is not None:
            options.append(f"maxIterations {int(self.params[PARAM_ITERATION_LIMIT])}")
        return plp.PULP_CBC_CMD(
            msg=self.msg,
            timeLimit=self.params.get(PARAM_TIME_LIMIT),
            options=options,
        )

    def solve(self) -> bool:
        solver = self._build_solver()
        t0 = time.perf_counter()
        try:
            self.problem.solve(solver)
        finally:
            self.attempts += 1
            self.wall_time_s = time.perf_counter() - t0
        return self.status() in (EngineStatus.OPTIMAL, EngineStatus.FEASIBLE)

    def set_param(self, name: str, value: Any) -> None:
        if name not in KNOWN_PARAMS:
            raise ValueError(f"Unknown parameter for {self.name}: {name}")
        self.params[name] = value

    def get_property(self, name: str) -> Any:
        p = self.problem
        if name == "engine.name":
            return self.name
        if name == "engine.version":
            return _pulp_version()
        if name == "model.variables":
            return len(p.variables())
        if name == "model.integer_variables":
            return sum(1 for v in p.variables() if v.cat == plp.LpInteger)
        if name == "model.constraints":
            return len(p.constraints)
        if name == "model.is_mip":
            return bool(p.isMIP())
        if name == "solution.status":
            return plp.LpStatus.get(p.status, str(p.status))
        if name == "solution.objective":
            if p.objective is None:
                raise KeyError(name)
            return plp.value(p.objective)
        if name == "solve.attempts":
            return self.attempts
        if name == "solve.wall_time_s":
            return round(self.wall_time_s, 6)
        raise KeyError(name)

    def export_model(self, path: Path) -> None:
        if path.suffix.lower() == ".mps":
            self.problem.writeMPS(str(path))
        else:
            self.problem.writeLP(str(path))

    def export_params(self, path: Path) -> None:
        data = {
            "engine": self.name,
            "seed": self.seed,
            "solver_options": self.solver_options,
            **self.params,
        }
        if path.suffix.lower() in (".yaml", ".yml"):
            import yaml  # lazy

            path.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")
        else:
            path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def solution_frame(self) -> pd.DataFrame:
        rows = [{"variable": v.name, "value": v.varValue} for v in self.problem.variables()]
        return pd.DataFrame(rows, columns=["variable", "value"])

    def export_solution(self, path: Path) -> None:
        write_frame(self.solution_frame(), path)
