from __future__ import annotations

import argparse
import hashlib
import json
import logging
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, cast

import pandas as pd

from pipeline.io.files import append_parquet, ensure_dir
from pipeline.io.validate import load_schema, validate_obj

from .config import SolverRunConfig, load_config, parse_inline_kv, unknown_config_keys
from .controller import CancellationToken, ExecutionController
from .status import coerce_status
from .types import FailureOutcome

# Resolve repo root (one level up from this package) and schemas root
REPO_ROOT = Path(__file__).resolve().parents[1]
SCHEMAS_ROOT = REPO_ROOT / "pipeline" / "schemas"

EngineFactory = Callable[[Path, str, Mapping[str, Any]], Any]

EXIT_OK = 0
EXIT_NO_SOLUTION = 2


def _utc_now_iso() -> str:
    # Millisecond precision per schema pattern
    now = datetime.now(timezone.utc)
    ms = int(now.microsecond / 1000)
    return f"{now.strftime('%Y-%m-%dT%H:%M:%S')}.{ms:03d}Z"


def _sha256_of_path(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _sha256_of_obj(obj: Any) -> str:
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _default_engine_factory(
    model_path: Path, engine: str, options: Mapping[str, Any]
) -> Any:
    """Load a serialized PuLP model (MPS or PuLP JSON) into a CBC engine."""
    if engine != "cbc":
        raise ValueError(
            f"Unsupported engine '{engine}' for model files. Use 'cbc' or provide SOLVERUN_ENGINE_IMPL."
        )
    import pulp  # lazy

    from .engines.pulp_engine import PulpEngine

    suffix = model_path.suffix.lower()
    if suffix == ".mps":
        _, problem = pulp.LpProblem.fromMPS(str(model_path))
    elif suffix == ".json":
        _, problem = pulp.LpProblem.from_json(str(model_path))
    else:
        raise ValueError(f"Unsupported model format '{suffix}'. Expected .mps or .json")
    return PulpEngine(problem, seed=options.get("seed"))


def _load_engine() -> EngineFactory:
    """Return the engine factory.

    Override with ``SOLVERUN_ENGINE_IMPL=module:function``. Tests can
    monkeypatch this function.
    """
    override = os.environ.get("SOLVERUN_ENGINE_IMPL")
    if override:
        mod_name, _, fn_name = override.partition(":")
        mod = __import__(mod_name, fromlist=[fn_name or "make_engine"])
        fn = getattr(mod, fn_name or "make_engine")
        return cast(EngineFactory, fn)
    return _default_engine_factory


def _schema_version(schemas_root: Path, name: str) -> str:
    schema = load_schema(schemas_root / f"{name}.schema.yaml")
    return str(schema.get("version", "0.0.0"))


def run_adapter(
    *,
    model_path: Path,
    config_path: Path | None,
    config_kv: Sequence[str] | None,
    engine: str,
    seed: int,
    out_root: Path,
    tag: str | None = None,
    schemas_root: Path | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict[str, Any]:
    created_ts = _utc_now_iso()
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {model_path}")

    cfg = load_config(config_path, config_kv)

    # Portable run_id: YYYYMMDD_HHMMSS_<shorthash>
    model_sha = _sha256_of_path(model_path)
    cfg_sha = _sha256_of_obj(cfg)
    ts = datetime.now(timezone.utc)
    short_hash = hashlib.sha256(
        f"{model_sha}|{cfg_sha}|{seed}|{engine}".encode()
    ).hexdigest()[:8]
    run_id = f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_hash}"

    run_dir = out_root / "runs" / "solve" / run_id
    artifacts_dir = (run_dir / "artifacts").resolve()

    # Config and schema problems surface before the engine is touched
    snapshot = SolverRunConfig.from_dict(cfg, default_base_path=artifacts_dir).snapshot()
    schemas_root = schemas_root or SCHEMAS_ROOT
    manifest_schema = load_schema(schemas_root / "solve_manifest.schema.yaml")
    registry_schema = load_schema(schemas_root / "runs_registry.schema.yaml")

    eng = _load_engine()(model_path, engine, {"seed": seed})
    controller = ExecutionController(eng, snapshot, cancel_token=cancel_token)
    failure: FailureOutcome | None = None
    try:
        controller.execute()
    except FailureOutcome as e:
        failure = e

    inputs_list: list[dict[str, Any]] = [
        {"path": str(model_path), "content_sha256": model_sha, "role": "model"}
    ]
    if config_path is not None and config_path.exists():
        inputs_list.append(
            {
                "path": str(config_path),
                "content_sha256": _sha256_of_path(config_path),
                "role": "config",
            }
        )
    if config_kv:
        inputs_list.append(
            {
                "path": "inline:config_kv",
                "content_sha256": _sha256_of_obj(parse_inline_kv(config_kv)),
                "role": "config",
            }
        )

    outputs: list[dict[str, Any]] = []
    for kind, target in (
        ("model", snapshot.model_export_file),
        ("params", snapshot.params_export_file),
        ("solution", snapshot.solution_export_file),
    ):
        if target is not None and target.exists():
            outputs.append({"path": str(target), "kind": kind})

    status = "success" if failure is None else "no_solution"
    manifest = {
        "schema_version": _schema_version(schemas_root, "solve_manifest"),
        "run_id": run_id,
        "run_type": "solve",
        "created_ts": created_ts,
        "engine": engine,
        "inputs": inputs_list,
        "config": snapshot.to_dict(),
        "outcome": {
            "status": status,
            "reason": failure.reason.value if failure else None,
            "iteration": failure.iteration if failure else None,
            "stop_reason": controller.stop_reason,
            "final_status": coerce_status(eng.status()).value,
        },
        "iterations": [
            {
                "number": r.number,
                "status": r.status.value,
                "solution_found": r.solution_found,
                "elapsed_s": round(r.elapsed_s, 6),
            }
            for r in controller.iterations
        ],
        "outputs": outputs,
        "tags": [tag] if tag else [],
    }
    validate_obj(manifest_schema, manifest, schemas_root=schemas_root)
    ensure_dir(run_dir)
    manifest_path = run_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")

    registry_path = out_root / "registry" / "runs.parquet"
    reg_row = {
        "run_id": run_id,
        "run_type": "solve",
        "status": status,
        "reason": failure.reason.value if failure else None,
        "created_ts": created_ts,
        "manifest_path": str(manifest_path),
        "solve_count": controller.solve_count,
        "tags": [tag] if tag else [],
    }
    validate_obj(registry_schema, reg_row, schemas_root=schemas_root)
    append_parquet(pd.DataFrame([reg_row]), registry_path)

    return {
        "run_id": run_id,
        "status": status,
        "reason": failure.reason.value if failure else None,
        "manifest_path": str(manifest_path),
        "registry_path": str(registry_path),
        "solve_count": controller.solve_count,
        "outputs": outputs,
        "config": cfg,
    }


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m solverun")
    p.add_argument("--model", type=Path, required=True, help="Model file (.mps or PuLP .json)")
    p.add_argument("--config", type=Path)
    p.add_argument("--config-kv", nargs="*", help="Inline overrides key=value")
    p.add_argument("--engine", default="cbc")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--out-root", type=Path, default=Path("data"))
    p.add_argument("--tag", type=str)
    p.add_argument(
        "--schemas-root",
        type=Path,
        help="Override schemas root (defaults to repo-relative pipeline/schemas)",
    )
    p.add_argument("--log-level", default="WARNING")
    p.add_argument("--verbose", action="store_true")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    result = run_adapter(
        model_path=args.model,
        config_path=args.config,
        config_kv=args.config_kv,
        engine=str(args.engine),
        seed=int(args.seed),
        out_root=args.out_root,
        tag=args.tag,
        schemas_root=args.schemas_root,
    )
    if args.verbose:
        unknown = unknown_config_keys(result.get("config") or {})
        if unknown:
            print(
                f"[solverun] Warning: unknown config keys ignored: {', '.join(unknown)}",
                file=sys.stderr,
            )
        print(f"[solverun] manifest: {result.get('manifest_path')}", file=sys.stderr)
        print(
            f"[solverun] status: {result.get('status')}"
            + (f" ({result['reason']})" if result.get("reason") else ""),
            file=sys.stderr,
        )
        print(f"[solverun] solve calls: {result.get('solve_count')}", file=sys.stderr)
    return EXIT_OK if result["status"] == "success" else EXIT_NO_SOLUTION


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
