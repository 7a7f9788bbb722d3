"""Iterative solver execution controller.

Drives one engine through a sequence of solve attempts::

    delegate.before -> status check -> cancellation check -> apply params
        -> solve -> telemetry/export -> delegate.after

until the delegate refuses, the engine reaches a terminal status, or the run
is cancelled. The engine's final status then decides the outcome: ``execute()``
returns normally (read the solution from the engine) or raises
``FailureOutcome``.

Execution is synchronous on the calling thread. Cancellation is cooperative
and checked once per iteration, so it never interrupts a solve in progress;
its latency is at most one full solve step.
"""

from __future__ import annotations

import threading
from typing import Any

from .config import ConfigurationSnapshot, SolverRunConfig
from .engine import (
    PARAM_ITERATION_LIMIT,
    PARAM_PROGRESS_INTERVAL,
    PARAM_TIME_LIMIT,
    Engine,
)
from .export import ArtifactExporter
from .status import coerce_status, validate_continuable, validate_terminal
from .telemetry import Meter, RunLoggers, TelemetryReporter
from .types import (
    EngineCallFailure,
    EngineStatus,
    FailureOutcome,
    FailureReason,
    IterationRecord,
    PreconditionViolation,
)

STOP_DELEGATE_BEFORE = "delegate_before"
STOP_DELEGATE_AFTER = "delegate_after"
STOP_SINGLE_SHOT = "single_shot"
STOP_TERMINAL_STATUS = "terminal_status"
STOP_CANCELLED = "cancelled"

_REUSED_STATUSES = frozenset(
    {EngineStatus.BOUNDED, EngineStatus.OPTIMAL, EngineStatus.FEASIBLE}
)


class CancellationToken:
    """Flag checked by the controller at iteration boundaries.

    Safe to set from another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ExecutionController:
    def __init__(
        self,
        engine: Engine,
        config: SolverRunConfig | ConfigurationSnapshot,
        *,
        cancel_token: CancellationToken | None = None,
        loggers: RunLoggers | None = None,
        telemetry: TelemetryReporter | None = None,
        exporter: ArtifactExporter | None = None,
    ) -> None:
        if engine is None:
            raise ValueError("engine is required")
        self._config = ConfigurationSnapshot.from_config(config)
        self._engine = engine
        self._cancel = cancel_token or CancellationToken()
        self._loggers = loggers or RunLoggers.for_run(self._config.name)
        self._telemetry = telemetry or TelemetryReporter(
            self._loggers.data, self._loggers.exec
        )
        self._exporter = exporter or ArtifactExporter(self._loggers.exec)
        self._executed = False
        self._iterations: list[IterationRecord] = []
        self._stop_reason: str | None = None

    @property
    def config(self) -> ConfigurationSnapshot:
        return self._config

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    @property
    def iterations(self) -> list[IterationRecord]:
        return list(self._iterations)

    @property
    def solve_count(self) -> int:
        return len(self._iterations)

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    def cancel(self) -> None:
        self._cancel.cancel()

    def execute(self) -> None:
        """Run the solve loop once.

        Raises:
            PreconditionViolation: the controller already ran, or the engine
                still holds the result of an earlier solve.
            FailureOutcome: the run ended without a usable solution.
            EngineCallFailure: the engine failed while applying parameters,
                reading its status, or solving.
            ProgrammingInvariantViolation: the engine reported an error
                status or a status outside the known set.
        """
        log = self._loggers.exec
        if self._executed:
            raise PreconditionViolation(
                "ExecutionController.execute() may run at most once",
                details={"run": self._config.name},
            )
        self._executed = True

        # A handle that is already infeasible/unbounded (or in error) is left
        # to the first iteration's status check; one that still holds the
        # result of an earlier solve was reused.
        initial = self._status()
        if initial in _REUSED_STATUSES:
            raise PreconditionViolation(
                f"Engine must be in neutral status before execution, found {initial!r}",
                details={"status": str(initial)},
            )

        op = Meter(self._loggers.perf, "execute", run=self._config.name).start()
        n = 0
        try:
            self._telemetry.report_solver(self._engine)
            model_file = self._config.model_export_file
            if model_file is not None:
                self._exporter.export_model(self._engine, model_file)

            n = 1
            while True:
                it = Meter(self._loggers.perf, "iteration", n=n).start()
                try:
                    stop = self._run_iteration(n)
                except FailureOutcome as e:
                    it.put("reason", e.reason.value).ok()
                    raise
                except BaseException as e:
                    it.fail(e)
                    raise
                it.ok(stop=stop)
                if stop is not None:
                    self._stop_reason = stop
                    break
                n += 1

            final = validate_terminal(self._status())
            log.debug(
                "validate_terminal(status=%s): %s", final.status.value, final.kind.value
            )
            if final.is_failure:
                outcome = final.to_outcome(iteration=n, operation="validate_terminal")
                if (
                    outcome.reason is FailureReason.INCOMPLETE
                    and self._stop_reason == STOP_CANCELLED
                ):
                    outcome = FailureOutcome(
                        FailureReason.INTERRUPTED,
                        iteration=n,
                        operation="validate_terminal",
                    )
                raise outcome
            op.ok(iterations=self.solve_count, status=final.status.value)
        except FailureOutcome as e:
            if e.iteration is None and n:
                e.annotate(iteration=n)
            op.put("reason", e.reason.value).fail(e)
            raise
        except BaseException as e:
            op.fail(e)
            raise

    def _run_iteration(self, n: int) -> str | None:
        """One pass of the loop. Returns the stop reason, or None to go on."""
        log = self._loggers.exec
        delegate = self._config.delegate

        if delegate is not None:
            log.debug("Call delegate.before_iteration(iteration=%d)...", n)
            go = delegate.before_iteration(self._engine, n, self._config)
            log.debug("Returned delegate.before_iteration(iteration=%d): run=%s.", n, go)
            if not go:
                return STOP_DELEGATE_BEFORE

        cls = validate_continuable(self._status())
        log.debug("validate_continuable(status=%s): %s", cls.status.value, cls.kind.value)
        if cls.is_failure:
            raise cls.to_outcome(iteration=n, operation="validate_continuable")
        if cls.is_success:
            return STOP_TERMINAL_STATUS

        if self._cancel.cancelled:
            log.info("Execution cancelled before iteration %d; solve skipped.", n)
            return STOP_CANCELLED

        self._apply_params(n)
        params_file = self._config.params_export_file
        if n == 1 and params_file is not None:
            # Parameters are identical on every iteration; one copy is enough.
            self._exporter.export_params(self._engine, params_file)
        self._solve(n)

        if delegate is not None:
            log.debug("Call delegate.after_iteration(iteration=%d)...", n)
            again = delegate.after_iteration(self._engine, n, self._config)
            log.debug("Returned delegate.after_iteration(iteration=%d): repeat=%s.", n, again)
            if not again:
                return STOP_DELEGATE_AFTER
            return None
        return STOP_SINGLE_SHOT

    def _status(self) -> EngineStatus:
        try:
            raw = self._engine.status()
        except Exception as e:
            raise EngineCallFailure(
                f"Failed to read engine status: {e}",
                user_message="The solver engine failed. See the log for details.",
                details={"call": "status"},
            ) from e
        return coerce_status(raw)

    def _apply_params(self, n: int) -> None:
        cfg = self._config
        params: list[tuple[str, Any]] = [
            (PARAM_PROGRESS_INTERVAL, cfg.progress_report_interval)
        ]
        if cfg.iteration_limit is not None:
            params.append((PARAM_ITERATION_LIMIT, cfg.iteration_limit))
        if cfg.time_limit is not None:
            params.append((PARAM_TIME_LIMIT, cfg.time_limit))
        for name, value in params:
            try:
                self._engine.set_param(name, value)
            except Exception as e:
                raise EngineCallFailure(
                    f"Failed to set engine parameter {name}={value!r}: {e}",
                    user_message="The solver engine rejected a parameter.",
                    details={"call": "set_param", "param": name, "iteration": n},
                ) from e

    def _solve(self, n: int) -> bool:
        log = self._loggers.exec
        self._telemetry.report_model(self._engine, n)

        log.debug("Call engine.solve(iteration=%d)", n)
        sm = Meter(self._loggers.perf, "solve", n=n).start()
        try:
            found = bool(self._engine.solve())
        except Exception as e:
            sm.fail(e)
            raise EngineCallFailure(
                f"Engine solve failed on iteration {n}: {e}",
                user_message="The solver engine failed. See the log for details.",
                details={"call": "solve", "iteration": n},
            ) from e
        elapsed = sm.elapsed
        sm.ok(solution_found=found)
        log.debug("engine.solve(iteration=%d): solution_found=%s.", n, found)

        self._telemetry.report_solution(self._engine, n, found)
        if found:
            log.info("A solution (possibly partial) exists after iteration %d.", n)
            target = self._config.solution_export_file
            if target is not None:
                self._exporter.export_solution(self._engine, target)
        else:
            log.info("No solution after iteration %d.", n)

        status = self._status()
        self._iterations.append(
            IterationRecord(
                number=n, status=status, solution_found=found, elapsed_s=elapsed
            )
        )
        self._report_progress(n, status, found)
        return found

    def _report_progress(self, n: int, status: EngineStatus, found: bool) -> None:
        msg = "Progress: iteration=%d status=%s solution_found=%s"
        if n % self._config.progress_report_interval == 0:
            self._loggers.exec.info(msg, n, status.value, found)
        else:
            self._loggers.exec.debug(msg, n, status.value, found)
