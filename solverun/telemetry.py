from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .engine import MODEL_PROPERTIES, SOLUTION_PROPERTIES, SOLVER_PROPERTIES

ROOT_LOGGER_NAME = "solverun"


@dataclass(frozen=True)
class RunLoggers:
    """Logger family of one run: ``solverun.<name>`` and its children."""

    main: logging.Logger
    exec: logging.Logger
    perf: logging.Logger
    data: logging.Logger

    @classmethod
    def for_run(cls, name: str) -> RunLoggers:
        base = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
        return cls(
            main=base,
            exec=base.getChild("exec"),
            perf=base.getChild("perf"),
            data=base.getChild("data"),
        )


def _emit(logger: logging.Logger, level: int, payload: dict[str, Any]) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, json.dumps(payload, default=str))


class Meter:
    """Times one operation and logs start/ok/fail events with ``dt_s``."""

    def __init__(self, logger: logging.Logger, operation: str, **context: Any) -> None:
        self.logger = logger
        self.operation = operation
        self.context: dict[str, Any] = dict(context)
        self._t0: float | None = None
        self._done = False

    def put(self, key: str, value: Any) -> Meter:
        self.context[key] = value
        return self

    def start(self) -> Meter:
        self._t0 = time.perf_counter()
        _emit(
            self.logger,
            logging.DEBUG,
            {"event": "op_start", "op": self.operation, **self.context},
        )
        return self

    @property
    def elapsed(self) -> float:
        if self._t0 is None:
            return 0.0
        return time.perf_counter() - self._t0

    def ok(self, **extra: Any) -> None:
        if self._done:
            return
        self._done = True
        _emit(
            self.logger,
            logging.INFO,
            {
                "event": "op_ok",
                "op": self.operation,
                "dt_s": round(self.elapsed, 6),
                **self.context,
                **extra,
            },
        )

    def fail(self, exc: BaseException, **extra: Any) -> None:
        if self._done:
            return
        self._done = True
        _emit(
            self.logger,
            logging.WARNING,
            {
                "event": "op_fail",
                "op": self.operation,
                "dt_s": round(self.elapsed, 6),
                "error": type(exc).__name__,
                "detail": str(exc),
                **self.context,
                **extra,
            },
        )


class TelemetryReporter:
    """Best-effort dump of engine properties to the data logger.

    Each report is isolated: a failure while reading or formatting properties
    is logged as a warning on ``warn_logger`` and never propagates.
    """

    def __init__(
        self, logger: logging.Logger, warn_logger: logging.Logger | None = None
    ) -> None:
        self.logger = logger
        self.warn_logger = warn_logger or logger

    def report_solver(self, engine: Any) -> bool:
        return self._report("solver_properties", engine, SOLVER_PROPERTIES)

    def report_model(self, engine: Any, iteration: int) -> bool:
        return self._report(
            "model_properties", engine, MODEL_PROPERTIES, iteration=iteration
        )

    def report_solution(self, engine: Any, iteration: int, solution_found: bool) -> bool:
        return self._report(
            "solution_properties",
            engine,
            SOLUTION_PROPERTIES,
            iteration=iteration,
            solution_found=solution_found,
        )

    @staticmethod
    def collect(engine: Any, names: Iterable[str]) -> dict[str, Any]:
        props: dict[str, Any] = {}
        for name in names:
            try:
                props[name] = engine.get_property(name)
            except KeyError:
                continue
        return props

    def _report(
        self, event: str, engine: Any, names: Iterable[str], **extra: Any
    ) -> bool:
        try:
            props = self.collect(engine, names)
            self.logger.info(
                json.dumps({"event": event, **extra, "properties": props}, default=str)
            )
            return True
        except Exception:
            self.warn_logger.warning("Failed to report %s.", event, exc_info=True)
            return False
