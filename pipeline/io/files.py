from __future__ import annotations

from pathlib import Path

import pandas as pd


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_parquet(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Rely on pyarrow via pandas
    df.to_parquet(path, index=False)


def append_parquet(df: pd.DataFrame, path: Path) -> pd.DataFrame:
    """Append rows to a parquet table, creating it if missing."""
    if path.exists():
        existing = pd.read_parquet(path)
        df = pd.concat([existing, df], ignore_index=True)
    write_parquet(df, path)
    return df


def write_frame(df: pd.DataFrame, path: Path) -> None:
    """Write a DataFrame in the format implied by the file suffix."""
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        write_parquet(df, path)
    elif suffix == ".csv":
        df.to_csv(path, index=False)
    elif suffix == ".json":
        path.write_text(df.to_json(orient="records", indent=2), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported table format for {path}")
