from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from catencode.data.frames import (
    NEW_LEVEL,
    corrected_counts,
    infer_outcome_kind,
    level_keys,
    prepare_inputs,
    summarize_levels,
)
from catencode.exceptions import DataError, InsufficientDataError, OutcomeTypeError


# ---------------------------------------------------------------------------
# Outcome kinds
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "values, expected",
    [
        ([1.5, 2.0, 3.0], "numeric"),
        ([0, 1, 1, 0], "numeric"),
        ([True, False, True], "binary"),
        (["yes", "no", "yes"], "binary"),
        (["red", "green", "blue"], "multiclass"),
    ],
)
def test_infer_outcome_kind(values, expected) -> None:
    assert infer_outcome_kind(pd.Series(values)) == expected


def test_single_class_outcomes_are_rejected() -> None:
    with pytest.raises(OutcomeTypeError) as ctx:
        infer_outcome_kind(pd.Series(["yes", "yes"]))
    assert ctx.value.code == "outcome_single_class"

    with pytest.raises(OutcomeTypeError):
        infer_outcome_kind(pd.Series([True, True, True]))


def test_datetime_outcome_is_rejected() -> None:
    with pytest.raises(OutcomeTypeError):
        infer_outcome_kind(pd.Series(pd.date_range("2024-01-01", periods=3)))


def test_level_keys_use_string_form_and_keep_missing() -> None:
    keys = level_keys(pd.Series([1, "1", None, 2.5]))

    assert keys.iloc[0] == keys.iloc[1] == "1"
    assert keys.iloc[2] is None
    assert keys.iloc[3] == "2.5"


def test_level_keys_drop_the_decimal_of_whole_floats() -> None:
    keys = level_keys(pd.Series([1.0, 2.5, np.nan, 3]))

    assert keys.tolist() == ["1", "2.5", None, "3"]


# ---------------------------------------------------------------------------
# prepare_inputs
# ---------------------------------------------------------------------------


def test_prepare_inputs_binary(binary_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(binary_frame, "zip_code", "churned")

    assert inputs.kind == "binary"
    assert inputs.levels == ("a", "b", "c")
    assert inputs.classes == ("no", "yes")
    assert inputs.event_level == "yes"
    assert inputs.n_rows == len(binary_frame)
    np.testing.assert_array_equal(inputs.level_counts(), [10, 8, 5])
    np.testing.assert_array_equal(inputs.level_sums(), [6, 2, 5])


def test_prepare_inputs_first_event_level(binary_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(binary_frame, "zip_code", "churned", event_level="first")

    assert inputs.event_level == "no"
    np.testing.assert_array_equal(inputs.level_sums(), [4, 6, 0])


def test_prepare_inputs_bool_outcome_uses_true_as_event(scenario_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(scenario_frame, "group", "outcome", event_level="first")

    assert inputs.event_level == "True"
    np.testing.assert_array_equal(inputs.level_sums(), [80, 3])


def test_prepare_inputs_numeric_with_predictors(numeric_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(
        numeric_frame, "region", "price", predictor_columns=["sqft"]
    )

    assert inputs.kind == "numeric"
    assert inputs.levels == ("east", "north", "south", "west")
    assert inputs.predictors is not None
    assert inputs.predictors.shape == (len(numeric_frame), 1)
    assert inputs.predictor_names == ("sqft",)

    design = inputs.indicator_matrix()
    assert design.shape == (len(numeric_frame), 4)
    np.testing.assert_array_equal(design.sum(axis=1), 1.0)


def test_prepare_inputs_multiclass_needs_permission() -> None:
    frame = pd.DataFrame({"g": ["a", "a", "b", "b"], "y": ["x", "y", "z", "x"]})

    with pytest.raises(OutcomeTypeError):
        prepare_inputs(frame, "g", "y")

    inputs = prepare_inputs(
        frame, "g", "y", allowed_kinds=("numeric", "binary", "multiclass")
    )
    assert inputs.classes == ("x", "y", "z")
    np.testing.assert_array_equal(inputs.y, [0, 1, 2, 0])


def test_prepare_inputs_zero_one_integers_as_binary() -> None:
    frame = pd.DataFrame({"g": ["a", "a", "b", "b"], "y": [0, 1, 1, 1]})

    assert prepare_inputs(frame, "g", "y").kind == "numeric"

    inputs = prepare_inputs(frame, "g", "y", outcome_kind="binary")
    assert inputs.kind == "binary"
    assert inputs.classes == ("0", "1")
    assert inputs.event_level == "1"
    np.testing.assert_array_equal(inputs.level_sums(), [1, 2])


@pytest.mark.parametrize(
    "y, outcome_kind, code",
    [
        ([0, 1, 2, 1], "binary", "outcome_not_binary"),
        (["x", "y", "x", "y"], "numeric", "outcome_not_numeric"),
    ],
)
def test_prepare_inputs_rejects_forced_outcome_kind(y, outcome_kind, code) -> None:
    frame = pd.DataFrame({"g": ["a", "a", "b", "b"], "y": y})

    with pytest.raises(OutcomeTypeError) as ctx:
        prepare_inputs(frame, "g", "y", outcome_kind=outcome_kind)

    assert ctx.value.code == code


@pytest.mark.parametrize(
    "frame, error, code",
    [
        (pd.DataFrame({"g": ["a", "b"]}), DataError, "data_missing_columns"),
        (pd.DataFrame({"g": [], "y": []}), InsufficientDataError, "insufficient_data"),
        (
            pd.DataFrame({"g": ["a", None, "b"], "y": [1.0, 2.0, 3.0]}),
            DataError,
            "categorical_missing_values",
        ),
        (
            pd.DataFrame({"g": ["a", "b", "b"], "y": [1.0, np.nan, 3.0]}),
            OutcomeTypeError,
            "outcome_missing_values",
        ),
        (
            pd.DataFrame({"g": ["a", "a", "a"], "y": [1.0, 2.0, 3.0]}),
            InsufficientDataError,
            "insufficient_data",
        ),
        (
            pd.DataFrame({"g": ["a", NEW_LEVEL], "y": [1.0, 2.0]}),
            DataError,
            "reserved_level_name",
        ),
        (
            pd.DataFrame({"g": ["a", "b"], "y": [1.0, np.inf]}),
            DataError,
            "outcome_not_finite",
        ),
    ],
)
def test_prepare_inputs_rejects_bad_frames(frame, error, code) -> None:
    with pytest.raises(error) as ctx:
        prepare_inputs(frame, "g", "y")

    assert ctx.value.code == code


def test_prepare_inputs_rejects_overlapping_columns(numeric_frame: pd.DataFrame) -> None:
    with pytest.raises(DataError) as ctx:
        prepare_inputs(numeric_frame, "region", "price", predictor_columns=["price"])

    assert ctx.value.code == "data_column_overlap"


def test_prepare_inputs_rejects_bad_predictors(numeric_frame: pd.DataFrame) -> None:
    frame = numeric_frame.assign(label="x")
    with pytest.raises(DataError) as ctx:
        prepare_inputs(frame, "region", "price", predictor_columns=["label"])
    assert ctx.value.code == "predictor_not_numeric"

    frame = numeric_frame.copy()
    frame.loc[0, "sqft"] = np.nan
    with pytest.raises(DataError) as ctx:
        prepare_inputs(frame, "region", "price", predictor_columns=["sqft"])
    assert ctx.value.code == "predictor_not_finite"


# ---------------------------------------------------------------------------
# Per-level statistics
# ---------------------------------------------------------------------------


def test_corrected_counts_only_touch_degenerate_levels(binary_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(binary_frame, "zip_code", "churned")

    events, non_events = corrected_counts(inputs, 0.5)

    np.testing.assert_allclose(events, [6.0, 2.0, 5.5])
    np.testing.assert_allclose(non_events, [4.0, 6.0, 0.5])


def test_summarize_levels_binary(binary_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(binary_frame, "zip_code", "churned")

    stats = summarize_levels(inputs)

    assert list(stats.columns) == ["level", "n", "mean", "log_odds"]
    assert stats["n"].tolist() == [10, 8, 5]
    np.testing.assert_allclose(stats["mean"], [0.6, 0.25, 1.0])
    np.testing.assert_allclose(stats["log_odds"], np.log([6 / 4, 2 / 6, 5.5 / 0.5]))


def test_summarize_levels_numeric_has_no_log_odds(numeric_frame: pd.DataFrame) -> None:
    inputs = prepare_inputs(numeric_frame, "region", "price")

    stats = summarize_levels(inputs)

    assert "log_odds" not in stats.columns
    expected = numeric_frame.groupby("region")["price"].mean().sort_index()
    np.testing.assert_allclose(stats["mean"], expected.to_numpy())
