from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from catencode.exceptions import DataError, InsufficientDataError, OutcomeTypeError
from catencode.logging_config import get_logger

logger = get_logger(__name__)

OutcomeKind = Literal["numeric", "binary", "multiclass"]

# Reserved label for the fallback row of an encoding table.
NEW_LEVEL = "..new"


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------


def require_columns(
    frame: pd.DataFrame,
    columns: Iterable[str],
    *,
    location: str,
) -> None:
    """Raise DataError if any of `columns` is missing from `frame`."""
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise DataError(
            "Missing required columns in frame.",
            code="data_missing_columns",
            context={
                "missing_columns": missing,
                "available_columns": [str(c) for c in frame.columns],
            },
            location=location,
        )


def level_key(value: object) -> Optional[str]:
    """String key of a single level, or None when it is missing.

    Whole-number floats are written without the decimal part, so `1`, `1.0`
    and `"1"` name the same level. An int column that picks up a NaN (and
    becomes float64) still matches the levels it was fitted on.
    """
    if value is None or (np.ndim(value) == 0 and pd.isna(value)):
        return None
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def level_keys(values: pd.Series) -> pd.Series:
    """Apply `level_key` to every value; missing values stay None."""
    return pd.Series(
        [level_key(v) for v in values.to_numpy(dtype=object)],
        index=values.index,
        dtype=object,
        name=values.name,
    )


def infer_outcome_kind(outcome: pd.Series) -> OutcomeKind:
    """Classify an outcome column as numeric, binary or multiclass.

    * bool dtype -> binary
    * other numeric dtypes -> numeric
    * anything else -> binary (2 distinct values) or multiclass (> 2)

    Raises
    ------
    OutcomeTypeError
        For datetime-like outcomes and for categorical outcomes with fewer
        than two observed classes.
    """
    if pd.api.types.is_bool_dtype(outcome):
        if outcome.nunique(dropna=True) < 2:
            raise OutcomeTypeError(
                "Boolean outcome must contain both True and False.",
                code="outcome_single_class",
                context={"outcome": str(outcome.name)},
                location="catencode.data.frames.infer_outcome_kind",
            )
        return "binary"

    if pd.api.types.is_datetime64_any_dtype(outcome) or pd.api.types.is_timedelta64_dtype(
        outcome
    ):
        raise OutcomeTypeError(
            "Datetime-like outcomes are not supported.",
            context={"outcome": str(outcome.name), "dtype": str(outcome.dtype)},
            location="catencode.data.frames.infer_outcome_kind",
        )

    if pd.api.types.is_numeric_dtype(outcome):
        return "numeric"

    n_classes = int(level_keys(outcome).dropna().nunique())
    if n_classes == 2:
        return "binary"
    if n_classes > 2:
        return "multiclass"

    raise OutcomeTypeError(
        "Categorical outcome must have at least two observed classes.",
        code="outcome_single_class",
        context={"outcome": str(outcome.name), "n_classes": n_classes},
        location="catencode.data.frames.infer_outcome_kind",
    )


# ---------------------------------------------------------------------------
# Prepared inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EncoderInputs:
    """Validated, integer-coded view of a training frame.

    Attributes
    ----------
    column:
        Name of the categorical column being encoded.
    outcome_column:
        Name of the outcome column.
    kind:
        Outcome kind: "numeric", "binary" or "multiclass".
    levels:
        Sorted distinct levels (string form). Level `levels[i]` has code `i`.
    codes:
        int64 array (n_rows,) with the level code of each row.
    y:
        float64 array (n_rows,). Numeric outcomes as-is; binary outcomes as
        0/1 event indicators; multiclass outcomes as class indices.
    classes:
        Sorted outcome classes for binary/multiclass outcomes, else ().
    event_level:
        The class counted as the event for binary outcomes.
    predictors:
        Optional float64 array (n_rows, P) of auxiliary numeric predictors.
    predictor_names:
        Names of the predictor columns, in order.
    """

    column: str
    outcome_column: str
    kind: OutcomeKind
    levels: Tuple[str, ...]
    codes: np.ndarray
    y: np.ndarray
    classes: Tuple[str, ...] = ()
    event_level: Optional[str] = None
    predictors: Optional[np.ndarray] = None
    predictor_names: Tuple[str, ...] = ()

    @property
    def n_rows(self) -> int:
        return int(self.codes.shape[0])

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    def level_counts(self) -> np.ndarray:
        """Number of rows per level, aligned with `levels`."""
        return np.bincount(self.codes, minlength=self.n_levels).astype(np.float64)

    def level_sums(self) -> np.ndarray:
        """Sum of `y` per level (event counts for binary outcomes)."""
        return np.bincount(self.codes, weights=self.y, minlength=self.n_levels)

    def indicator_matrix(self) -> np.ndarray:
        """Dense (n_rows, n_levels) one-hot matrix of level membership."""
        design = np.zeros((self.n_rows, self.n_levels), dtype=np.float64)
        design[np.arange(self.n_rows), self.codes] = 1.0
        return design


def _encode_outcome(
    outcome: pd.Series,
    kind: OutcomeKind,
    event_level: Literal["first", "second"],
) -> Tuple[np.ndarray, Tuple[str, ...], Optional[str]]:
    if kind == "numeric":
        y = outcome.to_numpy(dtype=np.float64)
        if not np.all(np.isfinite(y)):
            raise DataError(
                "Numeric outcome contains non-finite values.",
                code="outcome_not_finite",
                context={"outcome": str(outcome.name)},
                location="catencode.data.frames._encode_outcome",
            )
        return y, (), None

    if pd.api.types.is_bool_dtype(outcome):
        return outcome.to_numpy(dtype=np.float64), ("False", "True"), "True"

    keys = level_keys(outcome)
    classes = tuple(sorted(keys.unique()))
    class_index = pd.Index(classes)
    y = class_index.get_indexer(keys).astype(np.float64)

    if kind == "binary":
        event = classes[1] if event_level == "second" else classes[0]
        y = (keys == event).to_numpy(dtype=np.float64)
        return y, classes, event

    return y, classes, None


def _resolve_outcome_kind(
    outcome: pd.Series,
    requested: Literal["auto", "numeric", "binary"],
    location: str,
) -> OutcomeKind:
    if requested == "auto":
        kind = infer_outcome_kind(outcome)
        if kind == "numeric" and set(np.unique(outcome.to_numpy())) <= {0, 1}:
            logger.info(
                "Outcome %r only holds 0/1 and is encoded as numeric; "
                "set outcome_kind='binary' for log-odds.",
                outcome.name,
            )
        return kind

    if requested == "numeric":
        if not pd.api.types.is_numeric_dtype(outcome):
            raise OutcomeTypeError(
                f"Outcome {outcome.name!r} is not numeric (dtype {outcome.dtype}).",
                code="outcome_not_numeric",
                context={"outcome": str(outcome.name), "dtype": str(outcome.dtype)},
                location=location,
            )
        return "numeric"

    n_classes = int(level_keys(outcome).nunique())
    if n_classes != 2:
        raise OutcomeTypeError(
            f"Outcome {outcome.name!r} has {n_classes} distinct values; binary needs exactly 2.",
            code="outcome_not_binary",
            context={"outcome": str(outcome.name), "n_classes": n_classes},
            location=location,
        )
    return "binary"


def prepare_inputs(
    frame: pd.DataFrame,
    categorical_column: str,
    outcome_column: str,
    *,
    predictor_columns: Sequence[str] = (),
    event_level: Literal["first", "second"] = "second",
    allowed_kinds: Sequence[OutcomeKind] = ("numeric", "binary"),
    outcome_kind: Literal["auto", "numeric", "binary"] = "auto",
    min_levels: int = 2,
    location: str = "catencode.data.frames.prepare_inputs",
) -> EncoderInputs:
    """Validate a training frame and turn it into EncoderInputs.

    `outcome_kind` overrides dtype-based inference: "binary" treats a
    two-valued column (e.g. 0/1 integers) as event/non-event, "numeric"
    requires a numeric column.

    Raises
    ------
    DataError
        Missing columns, missing values, or invalid predictor columns.
    InsufficientDataError
        No rows, or fewer than `min_levels` distinct levels.
    OutcomeTypeError
        The outcome kind is not in `allowed_kinds`.
    """
    predictor_columns = list(predictor_columns)
    require_columns(
        frame,
        [categorical_column, outcome_column, *predictor_columns],
        location=location,
    )

    overlap = {categorical_column, outcome_column}.intersection(predictor_columns)
    if categorical_column == outcome_column or overlap:
        raise DataError(
            "Categorical, outcome and predictor columns must be distinct.",
            code="data_column_overlap",
            context={
                "categorical_column": categorical_column,
                "outcome_column": outcome_column,
                "predictor_columns": predictor_columns,
            },
            location=location,
        )

    if frame.shape[0] == 0:
        raise InsufficientDataError(
            "Training frame has no rows.",
            context={"column": categorical_column},
            location=location,
        )

    raw_levels = frame[categorical_column]
    if raw_levels.isna().any():
        raise DataError(
            "Categorical column contains missing values.",
            code="categorical_missing_values",
            context={
                "column": categorical_column,
                "n_missing": int(raw_levels.isna().sum()),
            },
            location=location,
        )

    outcome = frame[outcome_column]
    if outcome.isna().any():
        raise OutcomeTypeError(
            "Outcome column contains missing values.",
            code="outcome_missing_values",
            context={"outcome": outcome_column, "n_missing": int(outcome.isna().sum())},
            location=location,
        )

    kind = _resolve_outcome_kind(outcome, outcome_kind, location)
    if kind not in allowed_kinds:
        raise OutcomeTypeError(
            f"Outcome kind {kind!r} is not supported by this encoder.",
            context={
                "outcome": outcome_column,
                "kind": kind,
                "allowed_kinds": list(allowed_kinds),
            },
            location=location,
        )

    keys = level_keys(raw_levels)
    levels = tuple(sorted(keys.unique()))
    if NEW_LEVEL in levels:
        raise DataError(
            f"Level {NEW_LEVEL!r} is reserved for unseen levels.",
            code="reserved_level_name",
            context={"column": categorical_column},
            location=location,
        )

    if len(levels) < min_levels:
        raise InsufficientDataError(
            f"Need at least {min_levels} distinct levels, found {len(levels)}.",
            context={"column": categorical_column, "n_levels": len(levels)},
            location=location,
        )

    codes = pd.Index(levels).get_indexer(keys).astype(np.int64)
    y, classes, event = _encode_outcome(outcome, kind, event_level)

    predictors: Optional[np.ndarray] = None
    if predictor_columns:
        block = frame[predictor_columns]
        non_numeric = [
            c for c in predictor_columns if not pd.api.types.is_numeric_dtype(block[c])
        ]
        if non_numeric:
            raise DataError(
                "Predictor columns must be numeric.",
                code="predictor_not_numeric",
                context={"columns": non_numeric},
                location=location,
            )
        predictors = block.to_numpy(dtype=np.float64)
        if not np.all(np.isfinite(predictors)):
            raise DataError(
                "Predictor columns contain missing or non-finite values.",
                code="predictor_not_finite",
                context={"columns": predictor_columns},
                location=location,
            )

    logger.debug(
        "Prepared inputs: column=%s, outcome=%s (%s), n_rows=%d, n_levels=%d",
        categorical_column,
        outcome_column,
        kind,
        len(codes),
        len(levels),
    )

    return EncoderInputs(
        column=categorical_column,
        outcome_column=outcome_column,
        kind=kind,
        levels=levels,
        codes=codes,
        y=y,
        classes=classes,
        event_level=event,
        predictors=predictors,
        predictor_names=tuple(predictor_columns),
    )


# ---------------------------------------------------------------------------
# Per-level statistics
# ---------------------------------------------------------------------------


def corrected_counts(
    inputs: EncoderInputs,
    pseudo_count: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Per-level (events, non-events) with the Haldane-Anscombe correction.

    Only levels whose outcome never varies get `pseudo_count` added to both
    cells; every other level keeps its raw counts.
    """
    n = inputs.level_counts()
    events = inputs.level_sums()
    non_events = n - events
    degenerate = (events == 0) | (non_events == 0)
    bump = np.where(degenerate, pseudo_count, 0.0)
    return events + bump, non_events + bump


def summarize_levels(inputs: EncoderInputs, *, pseudo_count: float = 0.5) -> pd.DataFrame:
    """Row-per-level statistics: n, mean outcome and (binary) raw log-odds."""
    n = inputs.level_counts()
    sums = inputs.level_sums()
    stats = pd.DataFrame(
        {
            "level": list(inputs.levels),
            "n": n.astype(np.int64),
            "mean": sums / n,
        }
    )
    if inputs.kind == "binary":
        events, non_events = corrected_counts(inputs, pseudo_count)
        stats["log_odds"] = np.log(events / non_events)
    return stats
