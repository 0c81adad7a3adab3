from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pandas as pd

from catencode.config import PathsConfig, get_paths
from catencode.data.frames import require_columns
from catencode.exceptions import DataError
from catencode.logging_config import get_logger

logger = get_logger(__name__)

_READERS: dict[str, Callable[..., pd.DataFrame]] = {
    "csv": pd.read_csv,
    "parquet": pd.read_parquet,
    "feather": pd.read_feather,
}

_WRITERS: dict[str, Callable[[pd.DataFrame, Path], None]] = {
    "csv": lambda frame, path: frame.to_csv(path, index=False),
    "parquet": lambda frame, path: frame.to_parquet(path, index=False),
    "feather": lambda frame, path: frame.reset_index(drop=True).to_feather(path),
}


def _resolve_format(path: Path, override: str | None, supported: Iterable[str], location: str) -> str:
    """Explicit `override`, else the file suffix; anything unknown by suffix is csv."""
    if override is not None:
        fmt = override.lower()
    else:
        suffix = path.suffix.lower().lstrip(".")
        fmt = suffix if suffix in _READERS else "csv"

    if fmt not in supported:
        raise DataError(
            f"Cannot handle {fmt!r} files; use one of {sorted(supported)}",
            code="data_unsupported_format",
            context={"path": str(path), "format": fmt},
            location=location,
        )
    return fmt


def load_dataframe(
    path: str | Path,
    *,
    format: str | None = None,
    required_columns: Iterable[str] | None = None,
    read_kwargs: Mapping[str, Any] | None = None,
) -> pd.DataFrame:
    """Read a csv, parquet or feather file into a DataFrame.

    Parameters
    ----------
    path:
        File to read.
    format:
        'csv', 'parquet' or 'feather'. Taken from the suffix when omitted.
    required_columns:
        Columns that must be present, typically the categorical column and
        the outcome of a fit.
    read_kwargs:
        Passed through to the pandas reader.

    Raises
    ------
    DataError
        data_file_not_found, data_unsupported_format, data_load_error or
        data_missing_columns.
    """
    location = f"{__name__}.load_dataframe"
    source = Path(path)
    if not source.exists():
        raise DataError(
            f"No data file at {source}",
            code="data_file_not_found",
            context={"path": str(source)},
            location=location,
        )

    fmt = _resolve_format(source, format, _READERS, location)
    logger.info("Reading %s as %s", source, fmt)
    try:
        frame = _READERS[fmt](source, **dict(read_kwargs or {}))
    except Exception as exc:
        raise DataError(
            f"Could not read {source} as {fmt}",
            code="data_load_error",
            cause=exc,
            context={"path": str(source), "format": fmt},
            location=location,
        ) from exc

    if required_columns:
        require_columns(frame, required_columns, location=location)

    logger.info("Read %d rows, %d columns from %s", len(frame), frame.shape[1], source.name)
    return frame


def save_dataframe(
    frame: pd.DataFrame,
    path: str | Path,
    *,
    format: str | None = None,
) -> Path:
    """Write `frame` without its index, creating parent directories; returns the path."""
    location = f"{__name__}.save_dataframe"
    target = Path(path)
    fmt = _resolve_format(target, format, _WRITERS, location)
    target.parent.mkdir(parents=True, exist_ok=True)

    try:
        _WRITERS[fmt](frame, target)
    except Exception as exc:
        raise DataError(
            f"Could not write {fmt} file {target}",
            code="data_write_error",
            cause=exc,
            context={"path": str(target), "format": fmt},
            location=location,
        ) from exc

    logger.info("Wrote %d rows to %s", len(frame), target)
    return target


def load_dataset(
    filename: str,
    *,
    paths: PathsConfig | None = None,
    required_columns: Iterable[str] | None = None,
    read_kwargs: Mapping[str, Any] | None = None,
) -> pd.DataFrame:
    """Read `filename` relative to the configured data directory."""
    data_dir = (paths or get_paths()).data_dir
    return load_dataframe(
        data_dir / filename,
        required_columns=required_columns,
        read_kwargs=read_kwargs,
    )
