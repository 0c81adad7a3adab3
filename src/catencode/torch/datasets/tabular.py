from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import torch
from torch.utils.data import Dataset

from catencode.exceptions import DataError
from catencode.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingTabularDatasetMetadata:
    """Shape information for an EmbeddingTabularDataset.

    Attributes
    ----------
    n_samples:
        Number of rows.
    n_numeric_features:
        Number of auxiliary numeric predictors per row (may be 0).
    n_levels:
        Number of distinct level indices the dataset may contain.
    has_targets:
        Whether targets are attached.
    """

    n_samples: int
    n_numeric_features: int
    n_levels: int
    has_targets: bool = True


class EmbeddingTabularDataset(Dataset):
    """Rows of (numeric predictors, level index[, target]) for embedding training.

    The key behavior is the __getitem__ signature:

        - With targets:    ((x_num, x_cat), y)
        - Without targets: (x_num, x_cat)

    `x_num` is a float32 vector of length P (possibly 0), `x_cat` a scalar
    int64 level index. Targets are float32 of shape (1,) for regression
    (`target_kind="regression"`) or scalar int64 class indices
    (`target_kind="classification"`), matching MSELoss and CrossEntropyLoss.
    """

    def __init__(
        self,
        x_num: Optional[np.ndarray],
        level_idx: np.ndarray,
        targets: Optional[np.ndarray] = None,
        *,
        n_levels: Optional[int] = None,
        target_kind: str = "regression",
    ) -> None:
        super().__init__()
        location = "catencode.torch.datasets.tabular.EmbeddingTabularDataset.__init__"

        level_np = np.asarray(level_idx)
        if level_np.ndim != 1:
            raise DataError(
                "Level indices must be a 1D array.",
                code="embedding_tabular_cat_not_1d",
                context={"shape": level_np.shape},
                location=location,
            )
        n_samples = int(level_np.shape[0])
        if n_samples == 0:
            raise DataError(
                "EmbeddingTabularDataset needs at least one row.",
                code="embedding_tabular_empty",
                location=location,
            )

        if x_num is None:
            num_np = np.zeros((n_samples, 0), dtype=np.float32)
        else:
            num_np = np.asarray(x_num, dtype=np.float32)
            if num_np.ndim == 1:
                num_np = num_np.reshape(-1, 1)
        if num_np.ndim != 2 or num_np.shape[0] != n_samples:
            raise DataError(
                "Numeric predictors must be (n_samples, n_numeric_features).",
                code="embedding_tabular_shapes_mismatch_features",
                context={"numeric_shape": num_np.shape, "n_samples": n_samples},
                location=location,
            )

        if n_levels is None:
            n_levels = int(level_np.max()) + 1
        if level_np.min() < 0 or level_np.max() >= n_levels:
            raise DataError(
                "Level indices must lie in [0, n_levels - 1].",
                code="embedding_tabular_bad_index",
                context={
                    "min_index": int(level_np.min()),
                    "max_index": int(level_np.max()),
                    "n_levels": n_levels,
                },
                location=location,
            )

        self._x_num = torch.tensor(num_np, dtype=torch.float32)
        self._x_cat = torch.tensor(level_np, dtype=torch.long)

        self._y: Optional[torch.Tensor] = None
        if targets is not None:
            y_np = np.asarray(targets)
            if y_np.shape[0] != n_samples:
                raise DataError(
                    "Features and targets must have the same number of rows.",
                    code="embedding_tabular_shapes_mismatch_targets",
                    context={"n_samples_features": n_samples, "n_samples_targets": int(y_np.shape[0])},
                    location=location,
                )
            if target_kind == "classification":
                self._y = torch.tensor(y_np.reshape(-1), dtype=torch.long)
            elif target_kind == "regression":
                self._y = torch.tensor(y_np.reshape(-1, 1), dtype=torch.float32)
            else:
                raise DataError(
                    f"Unknown target_kind: {target_kind!r}",
                    code="embedding_tabular_bad_target_kind",
                    context={"target_kind": target_kind},
                    location=location,
                )

        self._metadata = EmbeddingTabularDatasetMetadata(
            n_samples=n_samples,
            n_numeric_features=int(self._x_num.shape[1]),
            n_levels=int(n_levels),
            has_targets=self._y is not None,
        )

        logger.debug(
            "Created EmbeddingTabularDataset: n_samples=%d, n_num_features=%d, n_levels=%d",
            n_samples,
            self._metadata.n_numeric_features,
            n_levels,
        )

    def __len__(self) -> int:
        return self._metadata.n_samples

    def __getitem__(self, idx: int):
        inputs: Tuple[torch.Tensor, torch.Tensor] = (self._x_num[idx], self._x_cat[idx])
        if self._y is None:
            return inputs
        return inputs, self._y[idx]

    @property
    def metadata(self) -> EmbeddingTabularDatasetMetadata:
        return self._metadata
