"""Run configuration.

``SolverRunConfig`` is the mutable, caller-owned builder. The controller copies
it field by field into a frozen ``ConfigurationSnapshot`` when it is created,
so later changes to the builder never reach a running controller.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from numbers import Real
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .delegate import ContinuationDelegate, RetryUntilSolved
from .types import ConfigurationError

DEFAULT_PROGRESS_REPORT_INTERVAL = 10


class SolverRunSettings(BaseModel):
    """Shape of a configuration file (YAML/JSON) for one run."""

    model_config = ConfigDict(extra="ignore")

    name: str = "solver"
    base_path: str | None = None
    model_export_path: str | None = None
    params_export_path: str | None = None
    solution_export_path: str | None = None
    progress_report_interval: int = DEFAULT_PROGRESS_REPORT_INTERVAL
    iteration_limit: int | None = None
    time_limit: float | None = None
    retry_until_solved: int | None = Field(default=None, ge=1)


KNOWN_CONFIG_KEYS = frozenset(SolverRunSettings.model_fields)


def _coerce_scalar(val: str) -> int | float | bool | str:
    lower = val.lower()
    if lower in ("true", "false"):
        return lower == "true"
    try:
        if "." in val:
            return float(val)
        return int(val)
    except ValueError:
        return val


def parse_inline_kv(inline_kv: Sequence[str] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for item in inline_kv or ():
        if "=" not in item:
            continue
        k, v = item.split("=", 1)
        out[k.strip()] = _coerce_scalar(v.strip())
    return out


def load_config(
    config_path: Path | None, inline_kv: Sequence[str] | None = None
) -> dict[str, Any]:
    cfg: dict[str, Any] = {}
    if config_path:
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix.lower() in (".yaml", ".yml"):
            import yaml  # lazy

            cfg = dict(yaml.safe_load(text) or {})
        else:
            cfg = dict(json.loads(text))
    cfg.update(parse_inline_kv(inline_kv))
    return cfg


def unknown_config_keys(cfg: Mapping[str, Any]) -> list[str]:
    return sorted(set(cfg) - KNOWN_CONFIG_KEYS)


def _opt_path(value: str | Path | None) -> Path | None:
    if value is None:
        return None
    return Path(value)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_positive_number(value: Any) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(float(value))
        and value > 0
    )


@dataclass
class SolverRunConfig:
    name: str = "solver"
    base_path: Path | None = None
    model_export_path: Path | None = None
    params_export_path: Path | None = None
    solution_export_path: Path | None = None
    progress_report_interval: int = DEFAULT_PROGRESS_REPORT_INTERVAL
    iteration_limit: int | None = None
    time_limit: float | None = None
    delegate: ContinuationDelegate | None = None

    def set_name(self, name: str) -> SolverRunConfig:
        self.name = name
        return self

    def set_base_path(self, path: str | Path) -> SolverRunConfig:
        self.base_path = Path(path)
        return self

    def set_model_export_path(self, path: str | Path | None) -> SolverRunConfig:
        self.model_export_path = _opt_path(path)
        return self

    def set_params_export_path(self, path: str | Path | None) -> SolverRunConfig:
        self.params_export_path = _opt_path(path)
        return self

    def set_solution_export_path(self, path: str | Path | None) -> SolverRunConfig:
        self.solution_export_path = _opt_path(path)
        return self

    def set_progress_report_interval(self, interval: int) -> SolverRunConfig:
        self.progress_report_interval = interval
        return self

    def set_iteration_limit(self, limit: int | None) -> SolverRunConfig:
        self.iteration_limit = limit
        return self

    def set_time_limit(self, limit: float | None) -> SolverRunConfig:
        self.time_limit = limit
        return self

    def set_delegate(self, delegate: ContinuationDelegate | None) -> SolverRunConfig:
        self.delegate = delegate
        return self

    def snapshot(self) -> ConfigurationSnapshot:
        return ConfigurationSnapshot.from_config(self)

    @classmethod
    def from_dict(
        cls, d: Mapping[str, Any] | None, *, default_base_path: Path | None = None
    ) -> SolverRunConfig:
        try:
            settings = SolverRunSettings.model_validate(dict(d or {}))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid solver run configuration: {e.error_count()} error(s)",
                user_message="The run configuration is invalid. Check field types and values.",
                details={"errors": e.errors(include_url=False)},
            ) from e
        cfg = cls(name=settings.name)
        if settings.base_path is not None:
            cfg.set_base_path(settings.base_path)
        elif default_base_path is not None:
            cfg.set_base_path(default_base_path)
        cfg.set_model_export_path(settings.model_export_path)
        cfg.set_params_export_path(settings.params_export_path)
        cfg.set_solution_export_path(settings.solution_export_path)
        cfg.set_progress_report_interval(settings.progress_report_interval)
        cfg.set_iteration_limit(settings.iteration_limit)
        cfg.set_time_limit(settings.time_limit)
        if settings.retry_until_solved is not None:
            cfg.set_delegate(RetryUntilSolved(settings.retry_until_solved))
        return cfg


@dataclass(frozen=True)
class ConfigurationSnapshot:
    """Immutable settings for one execution run.

    Relative export paths are kept as given and resolved against
    ``base_path`` on access.
    """

    name: str
    base_path: Path
    model_export_path: Path | None = None
    params_export_path: Path | None = None
    solution_export_path: Path | None = None
    progress_report_interval: int = DEFAULT_PROGRESS_REPORT_INTERVAL
    iteration_limit: int | None = None
    time_limit: float | None = None
    delegate: ContinuationDelegate | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("Run name must be a non-empty string")
        if not isinstance(self.base_path, Path) or not self.base_path.is_absolute():
            raise ConfigurationError(
                f"Base path must be absolute: {self.base_path}",
                details={"base_path": str(self.base_path)},
            )
        if not _is_positive_int(self.progress_report_interval):
            raise ConfigurationError(
                f"progress_report_interval must be a positive integer: {self.progress_report_interval!r}"
            )
        if self.iteration_limit is not None and not _is_positive_int(
            self.iteration_limit
        ):
            raise ConfigurationError(
                f"iteration_limit must be a positive integer: {self.iteration_limit!r}"
            )
        if self.time_limit is not None and not _is_positive_number(self.time_limit):
            raise ConfigurationError(
                f"time_limit must be a positive number: {self.time_limit!r}"
            )
        if self.delegate is not None and not isinstance(
            self.delegate, ContinuationDelegate
        ):
            raise ConfigurationError(
                "delegate must implement before_iteration() and after_iteration()",
                details={"delegate": type(self.delegate).__name__},
            )

    @classmethod
    def from_config(
        cls, source: SolverRunConfig | ConfigurationSnapshot
    ) -> ConfigurationSnapshot:
        if source.base_path is None:
            raise ConfigurationError(
                "Base path is required",
                user_message="Set a base directory for the run's export files.",
            )
        return cls(
            name=source.name,
            base_path=Path(source.base_path),
            model_export_path=_opt_path(source.model_export_path),
            params_export_path=_opt_path(source.params_export_path),
            solution_export_path=_opt_path(source.solution_export_path),
            progress_report_interval=source.progress_report_interval,
            iteration_limit=source.iteration_limit,
            time_limit=source.time_limit,
            delegate=source.delegate,
        )

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.base_path / path

    @property
    def model_export_file(self) -> Path | None:
        if self.model_export_path is None:
            return None
        return self.resolve(self.model_export_path)

    @property
    def params_export_file(self) -> Path | None:
        if self.params_export_path is None:
            return None
        return self.resolve(self.params_export_path)

    @property
    def solution_export_file(self) -> Path | None:
        if self.solution_export_path is None:
            return None
        return self.resolve(self.solution_export_path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_path": str(self.base_path),
            "model_export_path": _str_or_none(self.model_export_path),
            "params_export_path": _str_or_none(self.params_export_path),
            "solution_export_path": _str_or_none(self.solution_export_path),
            "progress_report_interval": self.progress_report_interval,
            "iteration_limit": self.iteration_limit,
            "time_limit": self.time_limit,
            "delegate": type(self.delegate).__name__ if self.delegate else None,
        }


def _str_or_none(path: Path | None) -> str | None:
    return None if path is None else str(path)
