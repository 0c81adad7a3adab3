from __future__ import annotations

import warnings

import numpy as np
import pytest
import torch
from torch.utils.data import DataLoader

from catencode.exceptions import DataError
from catencode.torch.datasets.tabular import EmbeddingTabularDataset


# ---------------------------------------------------------------------------
# Item layout
# ---------------------------------------------------------------------------


def test_regression_items_have_expected_shapes_and_dtypes() -> None:
    x_num = np.arange(8, dtype=np.float64).reshape(4, 2)
    ds = EmbeddingTabularDataset(x_num, np.array([0, 1, 2, 1]), np.array([0.5, 1.0, 1.5, 2.0]))

    (num, cat), y = ds[1]

    assert len(ds) == 4
    assert num.dtype == torch.float32 and num.shape == (2,)
    assert cat.dtype == torch.long and cat.dim() == 0
    assert int(cat) == 1
    assert y.dtype == torch.float32 and y.shape == (1,)

    meta = ds.metadata
    assert meta.n_samples == 4
    assert meta.n_numeric_features == 2
    assert meta.n_levels == 3
    assert meta.has_targets


def test_classification_targets_are_long_scalars() -> None:
    ds = EmbeddingTabularDataset(
        None,
        np.array([0, 1, 1]),
        np.array([2, 0, 1]),
        n_levels=4,
        target_kind="classification",
    )

    (num, _), y = ds[0]

    assert num.shape == (0,)
    assert y.dtype == torch.long and y.dim() == 0
    assert ds.metadata.n_levels == 4


def test_dataset_without_targets_returns_inputs_only() -> None:
    ds = EmbeddingTabularDataset(np.ones(3), np.array([0, 1, 0]))

    num, cat = ds[2]

    assert num.shape == (1,)
    assert int(cat) == 0
    assert not ds.metadata.has_targets


def test_read_only_inputs_are_copied_without_warnings() -> None:
    x_num = np.arange(6, dtype=np.float32).reshape(3, 2)
    level_idx = np.array([0, 1, 0])
    targets = np.array([0.5, 1.0, 1.5])
    for arr in (x_num, level_idx, targets):
        arr.setflags(write=False)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        ds = EmbeddingTabularDataset(x_num, level_idx, targets)

    (num, cat), y = ds[2]
    num[0] = 99.0

    assert x_num[2, 0] == 4.0
    assert int(cat) == 0
    assert float(y) == pytest.approx(1.5)


def test_batches_through_a_dataloader() -> None:
    ds = EmbeddingTabularDataset(
        np.random.randn(10, 3), np.arange(10) % 5, np.random.randn(10)
    )
    loader = DataLoader(ds, batch_size=4, shuffle=False)

    (num, cat), y = next(iter(loader))

    assert num.shape == (4, 3)
    assert cat.shape == (4,)
    assert y.shape == (4, 1)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"x_num": None, "level_idx": np.zeros((2, 2), dtype=int)}, "embedding_tabular_cat_not_1d"),
        ({"x_num": None, "level_idx": np.array([], dtype=int)}, "embedding_tabular_empty"),
        (
            {"x_num": np.ones((3, 2)), "level_idx": np.array([0, 1])},
            "embedding_tabular_shapes_mismatch_features",
        ),
        (
            {"x_num": None, "level_idx": np.array([0, 3]), "n_levels": 3},
            "embedding_tabular_bad_index",
        ),
        (
            {"x_num": None, "level_idx": np.array([0, 1]), "targets": np.ones(3)},
            "embedding_tabular_shapes_mismatch_targets",
        ),
        (
            {
                "x_num": None,
                "level_idx": np.array([0, 1]),
                "targets": np.ones(2),
                "target_kind": "ranking",
            },
            "embedding_tabular_bad_target_kind",
        ),
    ],
)
def test_invalid_inputs_raise_data_error(kwargs, code) -> None:
    with pytest.raises(DataError) as ctx:
        EmbeddingTabularDataset(**kwargs)

    assert ctx.value.code == code
