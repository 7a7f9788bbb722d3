from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from solverun.config import SolverRunConfig
from solverun.controller import (
    STOP_CANCELLED,
    STOP_DELEGATE_AFTER,
    STOP_DELEGATE_BEFORE,
    STOP_SINGLE_SHOT,
    STOP_TERMINAL_STATUS,
    CancellationToken,
    ExecutionController,
)
from solverun.delegate import CallbackDelegate, RetryUntilSolved
from solverun.engine import Engine
from solverun.types import (
    EngineCallFailure,
    EngineStatus,
    ErrorCodes,
    FailureOutcome,
    FailureReason,
    PreconditionViolation,
    ProgrammingInvariantViolation,
)
from tests.fixtures.fake_engine import FakeEngine, RecordingDelegate

S = EngineStatus


def _config(tmp_path: Path, delegate=None) -> SolverRunConfig:
    return SolverRunConfig().set_name("t").set_base_path(tmp_path).set_delegate(delegate)


def test_single_solve_without_delegate(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL])
    ctl = ExecutionController(eng, _config(tmp_path))
    ctl.execute()
    assert eng.solve_calls == 1
    assert ctl.stop_reason == STOP_SINGLE_SHOT
    assert [r.number for r in ctl.iterations] == [1]
    assert ctl.iterations[0].status is S.OPTIMAL
    assert ctl.iterations[0].solution_found


def test_infeasible_before_any_solve(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL], initial=S.INFEASIBLE)
    ctl = ExecutionController(eng, _config(tmp_path))
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert ei.value.reason is FailureReason.INFEASIBLE
    assert ei.value.iteration == 1
    assert ei.value.operation == "validate_continuable"
    assert ei.value.code is ErrorCodes.NO_SOLUTION
    assert eng.solve_calls == 0


def test_retries_until_optimal(tmp_path: Path) -> None:
    eng = FakeEngine([S.NEUTRAL, S.NEUTRAL, S.OPTIMAL])
    delegate = RecordingDelegate()
    ctl = ExecutionController(eng, _config(tmp_path, delegate))
    ctl.execute()
    assert eng.solve_calls == 3
    assert ctl.stop_reason == STOP_TERMINAL_STATUS
    # The fourth iteration sees the terminal status and stops before solving
    assert delegate.calls[-1] == ("before", 4)
    assert ("after", 3) in delegate.calls


def test_export_failure_does_not_change_outcome(tmp_path: Path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    cfg = (
        _config(tmp_path)
        .set_model_export_path("blocker/sub/model.lp")
        .set_params_export_path("blocker/sub/params.json")
        .set_solution_export_path("blocker/sub/solution.csv")
    )
    eng = FakeEngine([S.OPTIMAL])
    with caplog.at_level(logging.WARNING, logger="solverun"):
        ExecutionController(eng, cfg).execute()
    assert eng.solve_calls == 1
    assert eng.exports == []
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("Failed to save a copy of the model" in r.getMessage() for r in warnings)
    assert any("solution" in r.getMessage() for r in warnings)


def test_unresolved_status_is_incomplete(tmp_path: Path) -> None:
    eng = FakeEngine([S.NEUTRAL])
    delegate = RecordingDelegate(after=[True, False])
    ctl = ExecutionController(eng, _config(tmp_path, delegate))
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert ei.value.reason is FailureReason.INCOMPLETE
    assert ei.value.iteration == 2
    assert ei.value.operation == "validate_terminal"
    assert eng.solve_calls == 2
    assert ctl.stop_reason == STOP_DELEGATE_AFTER


def test_before_refusal_on_first_iteration_means_zero_solves(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL])
    delegate = RecordingDelegate(before=[False])
    ctl = ExecutionController(eng, _config(tmp_path, delegate))
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert ei.value.reason is FailureReason.INCOMPLETE
    assert eng.solve_calls == 0
    assert delegate.calls == [("before", 1)]
    assert ctl.stop_reason == STOP_DELEGATE_BEFORE
    assert eng.params == []


@pytest.mark.parametrize("k", [1, 2, 4])
def test_cancel_before_iteration_k_solves_k_minus_one(tmp_path: Path, k: int) -> None:
    token = CancellationToken()

    def on_solve(calls: int) -> None:
        if calls == k - 1:
            token.cancel()

    eng = FakeEngine([S.BOUNDED], on_solve=on_solve)
    if k == 1:
        token.cancel()
    ctl = ExecutionController(eng, _config(tmp_path, RecordingDelegate()), cancel_token=token)
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert eng.solve_calls == k - 1
    assert ei.value.reason is FailureReason.INTERRUPTED
    assert ctl.stop_reason == STOP_CANCELLED


def test_cancel_after_success_keeps_success(tmp_path: Path) -> None:
    eng = FakeEngine([S.FEASIBLE])
    ctl = ExecutionController(eng, _config(tmp_path, RecordingDelegate()))
    eng.on_solve = lambda calls: ctl.cancel()
    ctl.execute()
    assert eng.solve_calls == 1
    assert ctl.stop_reason == STOP_TERMINAL_STATUS


def test_execute_runs_at_most_once(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL])
    ctl = ExecutionController(eng, _config(tmp_path))
    ctl.execute()
    with pytest.raises(PreconditionViolation) as ei:
        ctl.execute()
    assert ei.value.code is ErrorCodes.PRECONDITION
    assert eng.solve_calls == 1


@pytest.mark.parametrize("initial", [S.OPTIMAL, S.FEASIBLE, S.BOUNDED])
def test_reused_engine_is_precondition_violation(tmp_path: Path, initial) -> None:
    eng = FakeEngine([S.OPTIMAL], initial=initial)
    with pytest.raises(PreconditionViolation):
        ExecutionController(eng, _config(tmp_path)).execute()
    assert eng.solve_calls == 0


def test_error_status_after_solve_is_invariant_violation(tmp_path: Path) -> None:
    eng = FakeEngine([S.ERROR])
    with pytest.raises(ProgrammingInvariantViolation):
        ExecutionController(eng, _config(tmp_path)).execute()


def test_error_status_mid_loop_is_invariant_violation(tmp_path: Path) -> None:
    eng = FakeEngine([S.ERROR])
    with pytest.raises(ProgrammingInvariantViolation):
        ExecutionController(eng, _config(tmp_path, RecordingDelegate())).execute()
    assert eng.solve_calls == 1


def test_unknown_status_is_invariant_violation(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL], initial="warming_up")
    with pytest.raises(ProgrammingInvariantViolation):
        ExecutionController(eng, _config(tmp_path)).execute()


def test_infeasible_after_solve_without_delegate(tmp_path: Path) -> None:
    eng = FakeEngine([S.INFEASIBLE])
    with pytest.raises(FailureOutcome) as ei:
        ExecutionController(eng, _config(tmp_path)).execute()
    assert eng.solve_calls == 1
    assert ei.value.reason is FailureReason.INFEASIBLE
    assert ei.value.iteration == 1
    assert ei.value.operation == "validate_terminal"


def test_mid_loop_failure_is_tagged_with_iteration(tmp_path: Path) -> None:
    eng = FakeEngine([S.BOUNDED, S.INFEASIBLE_OR_UNBOUNDED])
    ctl = ExecutionController(eng, _config(tmp_path, RecordingDelegate()))
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert ei.value.reason is FailureReason.UNBOUNDED_OR_INFEASIBLE
    assert ei.value.iteration == 3
    assert "iteration=3" in str(ei.value)
    assert ei.value.details["operation"] == "validate_continuable"
    assert eng.solve_calls == 2
    assert [r.status for r in ctl.iterations] == [S.BOUNDED, S.INFEASIBLE_OR_UNBOUNDED]


def test_retry_until_solved_caps_iterations(tmp_path: Path) -> None:
    eng = FakeEngine([S.BOUNDED])
    ctl = ExecutionController(eng, _config(tmp_path, RetryUntilSolved(3)))
    with pytest.raises(FailureOutcome) as ei:
        ctl.execute()
    assert ei.value.reason is FailureReason.INCOMPLETE
    assert eng.solve_calls == 3


def test_solve_failure_is_engine_call_failure(tmp_path: Path) -> None:
    eng = FakeEngine(fail_on=["solve"])
    with pytest.raises(EngineCallFailure) as ei:
        ExecutionController(eng, _config(tmp_path)).execute()
    assert isinstance(ei.value.__cause__, RuntimeError)
    assert ei.value.details["call"] == "solve"


def test_set_param_failure_is_engine_call_failure(tmp_path: Path) -> None:
    eng = FakeEngine(fail_on=["set_param"])
    with pytest.raises(EngineCallFailure) as ei:
        ExecutionController(eng, _config(tmp_path).set_time_limit(1.0)).execute()
    assert isinstance(ei.value.__cause__, ValueError)
    assert ei.value.details["param"] == "progress_interval"
    assert eng.solve_calls == 0


def test_status_read_failure_is_engine_call_failure(tmp_path: Path) -> None:
    eng = FakeEngine(fail_on=["status"])
    with pytest.raises(EngineCallFailure):
        ExecutionController(eng, _config(tmp_path)).execute()


def test_delegate_exception_propagates(tmp_path: Path) -> None:
    def boom(engine, iteration, config):
        raise LookupError("policy failed")

    eng = FakeEngine([S.BOUNDED])
    with pytest.raises(LookupError):
        ExecutionController(eng, _config(tmp_path, CallbackDelegate(after=boom))).execute()
    assert eng.solve_calls == 1


def test_params_applied_every_iteration(tmp_path: Path) -> None:
    eng = FakeEngine([S.BOUNDED, S.OPTIMAL])
    cfg = (
        _config(tmp_path, RecordingDelegate())
        .set_progress_report_interval(7)
        .set_iteration_limit(50)
        .set_time_limit(0.5)
    )
    ExecutionController(eng, cfg).execute()
    expected = [("progress_interval", 7), ("iteration_limit", 50), ("time_limit", 0.5)]
    assert eng.params == expected * 2


def test_only_progress_interval_when_limits_unset(tmp_path: Path) -> None:
    eng = FakeEngine([S.OPTIMAL])
    ExecutionController(eng, _config(tmp_path)).execute()
    assert eng.params == [("progress_interval", 10)]


def test_exports_model_and_params_once_solution_when_found(tmp_path: Path) -> None:
    eng = FakeEngine([S.BOUNDED, S.BOUNDED, S.FEASIBLE])
    cfg = (
        _config(tmp_path, RecordingDelegate())
        .set_model_export_path("out/model.lp")
        .set_params_export_path("out/params.json")
        .set_solution_export_path("out/solution.csv")
    )
    ExecutionController(eng, cfg).execute()
    assert [k for k, _ in eng.exports] == ["model", "params", "solution"]
    assert (tmp_path / "out" / "solution.csv").exists()
    # Solution copy taken after the third solve
    assert json.loads((tmp_path / "out" / "solution.csv").read_text())["solves"] == 3


def test_no_solution_export_without_solution(tmp_path: Path) -> None:
    eng = FakeEngine([S.INFEASIBLE])
    cfg = _config(tmp_path).set_solution_export_path("solution.csv")
    with pytest.raises(FailureOutcome):
        ExecutionController(eng, cfg).execute()
    assert not (tmp_path / "solution.csv").exists()


def test_telemetry_failure_never_surfaces(tmp_path: Path, caplog) -> None:
    eng = FakeEngine([S.OPTIMAL], fail_on=["get_property"])
    with caplog.at_level(logging.WARNING, logger="solverun"):
        ExecutionController(eng, _config(tmp_path)).execute()
    assert eng.solve_calls == 1
    messages = [r.getMessage() for r in caplog.records]
    assert "Failed to report solver_properties." in messages
    assert "Failed to report solution_properties." in messages


def test_config_mutation_after_construction_is_ignored(tmp_path: Path) -> None:
    cfg = _config(tmp_path, RecordingDelegate())
    eng = FakeEngine([S.NEUTRAL, S.OPTIMAL])
    ctl = ExecutionController(eng, cfg)
    cfg.set_delegate(None).set_time_limit(5.0)
    ctl.execute()
    assert eng.solve_calls == 2
    assert ("time_limit", 5.0) not in eng.params
    assert ctl.config.delegate is not None


def test_progress_reported_at_interval(tmp_path: Path, caplog) -> None:
    eng = FakeEngine([S.BOUNDED, S.BOUNDED, S.BOUNDED, S.OPTIMAL])
    cfg = _config(tmp_path, RecordingDelegate()).set_progress_report_interval(2)
    with caplog.at_level(logging.DEBUG, logger="solverun"):
        ExecutionController(eng, cfg).execute()
    progress = [r for r in caplog.records if r.getMessage().startswith("Progress:")]
    assert [r.levelno for r in progress] == [
        logging.DEBUG,
        logging.INFO,
        logging.DEBUG,
        logging.INFO,
    ]
    assert all(r.name == "solverun.t.exec" for r in progress)


def test_engine_is_required(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        ExecutionController(None, _config(tmp_path))


@pytest.mark.parametrize(
    "after,reason",
    [
        (S.NEUTRAL, FailureReason.INCOMPLETE),
        (S.BOUNDED, FailureReason.INCOMPLETE),
        (S.OPTIMAL, None),
        (S.FEASIBLE, None),
        (S.INFEASIBLE, FailureReason.INFEASIBLE),
        (S.UNBOUNDED, FailureReason.UNBOUNDED),
    ],
)
def test_without_delegate_exactly_one_solve(tmp_path: Path, after, reason) -> None:
    eng = FakeEngine([after])
    ctl = ExecutionController(eng, _config(tmp_path))
    if reason is None:
        ctl.execute()
    else:
        with pytest.raises(FailureOutcome) as ei:
            ctl.execute()
        assert ei.value.reason is reason
        assert ei.value.iteration == 1
    assert eng.solve_calls == 1
    assert ctl.stop_reason == STOP_SINGLE_SHOT


def test_fake_engine_satisfies_protocol() -> None:
    assert isinstance(FakeEngine(), Engine)
