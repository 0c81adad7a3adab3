from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import yaml

from catencode.data.frames import NEW_LEVEL, level_key, level_keys, require_columns
from catencode.exceptions import DataError, ModelError, UnknownLevelWarning
from catencode.logging_config import get_logger

logger = get_logger(__name__)

# Max unseen values quoted in a warning message.
_MAX_REPORTED_LEVELS = 5


def embedding_columns(terms: str, dim: int) -> Tuple[str, ...]:
    """Value column names of an embedding table: `<terms>_embed_1..dim`."""
    return tuple(f"{terms}_embed_{i}" for i in range(1, dim + 1))


def _frozen_array(data: Any, *, ndim: int, name: str) -> np.ndarray:
    arr = np.array(data, dtype=np.float64, copy=True)
    if arr.ndim != ndim:
        raise ModelError(
            f"Encoding table {name} must be {ndim}-dimensional, got shape {arr.shape}.",
            code="invalid_table",
            location="catencode.encoders.table.EncodingTable",
        )
    if not np.all(np.isfinite(arr)):
        raise ModelError(
            f"Encoding table {name} contains non-finite values.",
            code="invalid_table",
            location="catencode.encoders.table.EncodingTable",
        )
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class EncodingTable:
    """Immutable mapping from training levels to numeric vectors.

    A table holds one row per training level plus a fallback row used for
    levels not seen at fit time (and for missing values). It is produced by
    every encoder's `fit` and is all that `apply` needs.

    Attributes
    ----------
    terms:
        Name of the categorical column the table was fitted on.
    method:
        Estimation method: "glm", "bayes", "mixed" or "embedding".
    value_columns:
        Names of the output columns, one per vector component.
    levels:
        Sorted, unique training levels in string form.
    values:
        Read-only float64 array of shape (len(levels), len(value_columns)).
    fallback:
        Read-only float64 array of shape (len(value_columns),).
    id:
        Identifier reported in `tidy()` output.
    """

    terms: str
    method: str
    value_columns: Tuple[str, ...]
    levels: Tuple[str, ...]
    values: np.ndarray
    fallback: np.ndarray
    id: str

    def __post_init__(self) -> None:
        levels = tuple(str(level_key(level)) for level in self.levels)
        value_columns = tuple(str(c) for c in self.value_columns)
        values = _frozen_array(self.values, ndim=2, name="values")
        fallback = _frozen_array(self.fallback, ndim=1, name="fallback")

        if len(set(levels)) != len(levels):
            raise ModelError(
                "Encoding table levels must be unique.",
                code="invalid_table",
                context={"terms": self.terms},
                location="catencode.encoders.table.EncodingTable",
            )
        if NEW_LEVEL in levels:
            raise ModelError(
                f"Encoding table levels must not contain the reserved label {NEW_LEVEL!r}.",
                code="invalid_table",
                context={"terms": self.terms},
                location="catencode.encoders.table.EncodingTable",
            )
        if not value_columns:
            raise ModelError(
                "Encoding table needs at least one value column.",
                code="invalid_table",
                context={"terms": self.terms},
                location="catencode.encoders.table.EncodingTable",
            )

        expected = (len(levels), len(value_columns))
        if values.shape != expected or fallback.shape != (len(value_columns),):
            raise ModelError(
                "Encoding table arrays do not match its levels and value columns.",
                code="invalid_table",
                context={
                    "terms": self.terms,
                    "values_shape": values.shape,
                    "fallback_shape": fallback.shape,
                    "expected_values_shape": expected,
                },
                location="catencode.encoders.table.EncodingTable",
            )

        object.__setattr__(self, "levels", levels)
        object.__setattr__(self, "value_columns", value_columns)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "fallback", fallback)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def dim(self) -> int:
        return len(self.value_columns)

    @property
    def is_embedding(self) -> bool:
        return self.method == "embedding"

    def __repr__(self) -> str:
        return (
            f"EncodingTable(terms={self.terms!r}, method={self.method!r}, "
            f"n_levels={self.n_levels}, dim={self.dim}, id={self.id!r})"
        )

    def equals(self, other: object) -> bool:
        """True if `other` is a table with identical metadata and values."""
        if not isinstance(other, EncodingTable):
            return False
        return (
            self.terms == other.terms
            and self.method == other.method
            and self.id == other.id
            and self.levels == other.levels
            and self.value_columns == other.value_columns
            and np.array_equal(self.values, other.values)
            and np.array_equal(self.fallback, other.fallback)
        )

    # ------------------------------------------------------------------
    # Lookup / apply
    # ------------------------------------------------------------------

    def lookup(self, level: Any) -> np.ndarray:
        """Return the vector for `level`, or the fallback if it is unseen."""
        key = level_key(level)
        if key is None:
            return self.fallback.copy()
        try:
            row = self.levels.index(key)
        except ValueError:
            return self.fallback.copy()
        return self.values[row].copy()

    def _row_indices(self, values: pd.Series) -> Tuple[np.ndarray, np.ndarray]:
        """Row index of each value into `values`, plus the unseen mask."""
        keys = level_keys(values)
        idx = pd.Index(self.levels).get_indexer(keys.to_numpy(dtype=object))
        unknown = idx < 0
        return np.where(unknown, self.n_levels, idx), unknown

    def apply(self, frame: pd.DataFrame, column: Optional[str] = None) -> pd.DataFrame:
        """Encode `column` of `frame` (defaults to the fitted column name).

        Returns a frame with the same index and row order as `frame` and one
        float column per value column. Rows whose level was not seen at fit
        time, or is missing, receive the fallback vector.
        """
        column = self.terms if column is None else column
        require_columns(frame, [column], location="catencode.encoders.table.EncodingTable.apply")

        source = frame[column]
        rows, unknown = self._row_indices(source)
        stacked = np.vstack([self.values, self.fallback[np.newaxis, :]])
        encoded = pd.DataFrame(
            stacked[rows],
            index=frame.index,
            columns=list(self.value_columns),
        )

        n_unknown = int(unknown.sum())
        if n_unknown:
            unseen = level_keys(source[unknown]).dropna().unique()
            n_missing = int(source[unknown].isna().sum())
            sample = ", ".join(repr(v) for v in unseen[:_MAX_REPORTED_LEVELS])
            message = (
                f"{n_unknown} row(s) of column {column!r} received the fallback encoding "
                f"({len(unseen)} unseen level(s), {n_missing} missing value(s))."
            )
            if sample:
                message += f" Unseen levels include: {sample}."
            warnings.warn(message, UnknownLevelWarning, stacklevel=2)
            logger.warning(message)

        return encoded

    def transform(self, frame: pd.DataFrame, column: Optional[str] = None) -> pd.DataFrame:
        """Return a copy of `frame` with `column` replaced by its encoding.

        The encoded columns are inserted where the categorical column was.
        """
        column = self.terms if column is None else column
        encoded = self.apply(frame, column)

        rest = frame.drop(columns=[column])
        clash = sorted(set(encoded.columns).intersection(rest.columns))
        if clash:
            raise DataError(
                "Encoded column names clash with existing columns.",
                code="data_column_clash",
                context={"columns": clash},
                location="catencode.encoders.table.EncodingTable.transform",
            )

        pos = frame.columns.get_loc(column)
        return pd.concat(
            [frame.iloc[:, :pos], encoded, frame.iloc[:, pos + 1 :]],
            axis=1,
        )

    # ------------------------------------------------------------------
    # Reporting / persistence
    # ------------------------------------------------------------------

    def tidy(self) -> pd.DataFrame:
        """Row per level plus the fallback row labelled "..new"."""
        levels = list(self.levels) + [NEW_LEVEL]
        stacked = np.vstack([self.values, self.fallback[np.newaxis, :]])
        n = len(levels)

        if self.is_embedding:
            report = pd.DataFrame({"terms": [self.terms] * n, "level": levels})
            for j, name in enumerate(self.value_columns):
                report[name] = stacked[:, j]
            report["id"] = self.id
            return report

        return pd.DataFrame(
            {
                "level": levels,
                "value": stacked[:, 0],
                "terms": [self.terms] * n,
                "id": [self.id] * n,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "terms": self.terms,
            "method": self.method,
            "id": self.id,
            "value_columns": list(self.value_columns),
            "levels": list(self.levels),
            "values": self.values.tolist(),
            "fallback": self.fallback.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EncodingTable:
        missing = [
            key
            for key in ("terms", "method", "id", "value_columns", "levels", "values", "fallback")
            if key not in data
        ]
        if missing:
            raise DataError(
                "Encoding table mapping is missing keys.",
                code="table_missing_keys",
                context={"missing_keys": missing},
                location="catencode.encoders.table.EncodingTable.from_dict",
            )
        n_cols = len(data["value_columns"])
        return cls(
            terms=str(data["terms"]),
            method=str(data["method"]),
            value_columns=tuple(data["value_columns"]),
            levels=tuple(data["levels"]),
            values=np.asarray(data["values"], dtype=np.float64).reshape(-1, n_cols),
            fallback=data["fallback"],
            id=str(data["id"]),
        )

    def save(self, path: str | Path) -> Path:
        """Write the table to a YAML file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False), encoding="utf-8")
        logger.info("Saved encoding table %s to %s", self.id, target)
        return target

    @classmethod
    def load(cls, path: str | Path) -> EncodingTable:
        """Read a table written by `save`."""
        source = Path(path)
        if not source.exists():
            raise DataError(
                f"Encoding table file not found: {source}",
                code="data_file_not_found",
                context={"path": str(source)},
                location="catencode.encoders.table.EncodingTable.load",
            )
        try:
            loaded = yaml.safe_load(source.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise DataError(
                f"Failed to parse encoding table file: {source}",
                code="table_parse_error",
                cause=exc,
                context={"path": str(source)},
                location="catencode.encoders.table.EncodingTable.load",
            ) from exc
        if not isinstance(loaded, Mapping):
            raise DataError(
                f"Encoding table file {source} must contain a mapping.",
                code="table_parse_error",
                context={"path": str(source)},
                location="catencode.encoders.table.EncodingTable.load",
            )
        return cls.from_dict(loaded)


def likelihood_table(
    terms: str,
    method: str,
    levels: Sequence[str],
    values: np.ndarray,
    fallback: float,
    *,
    id: Optional[str] = None,
) -> EncodingTable:
    """Build a one-column table whose value column is named after `terms`."""
    return EncodingTable(
        terms=terms,
        method=method,
        value_columns=(terms,),
        levels=tuple(levels),
        values=np.asarray(values, dtype=np.float64).reshape(-1, 1),
        fallback=np.array([fallback], dtype=np.float64),
        id=id or f"lencode_{method}",
    )


def apply_encoding(
    table: EncodingTable,
    frame: pd.DataFrame,
    column: Optional[str] = None,
) -> pd.DataFrame:
    """Encode `column` of `frame` with `table`; see EncodingTable.apply."""
    return table.apply(frame, column)
