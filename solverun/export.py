from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pipeline.io.files import ensure_dir


class ArtifactExporter:
    """Optional export of model, parameters and solution to files.

    Exports are diagnostics for offline inspection. Every failure (directory
    creation, engine serialization, I/O) is logged as a warning and swallowed.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def export_model(self, engine: Any, path: Path) -> bool:
        return self._export("model", path, engine.export_model)

    def export_params(self, engine: Any, path: Path) -> bool:
        return self._export("parameters", path, engine.export_params)

    def export_solution(self, engine: Any, path: Path) -> bool:
        return self._export("solution", path, engine.export_solution)

    def _export(self, kind: str, path: Path, write: Callable[[Path], Any]) -> bool:
        try:
            ensure_dir(path.parent)
            write(path)
            if not path.exists():
                raise FileNotFoundError(f"Engine did not write {path}")
        except Exception:
            self.logger.warning(
                "Failed to save a copy of the %s to file %s.", kind, path, exc_info=True
            )
            return False
        self.logger.info("A copy of the %s was saved to file %s.", kind, path)
        return True
