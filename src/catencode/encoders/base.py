from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Tuple

import numpy as np
import pandas as pd

from catencode.config import LikelihoodConfig
from catencode.data.frames import EncoderInputs, prepare_inputs, summarize_levels
from catencode.encoders.table import EncodingTable, likelihood_table
from catencode.exceptions import ModelError
from catencode.logging_config import get_logger

logger = get_logger(__name__)


class BaseEncoder(ABC):
    """Common fit/apply lifecycle shared by all encoders.

    Subclasses implement `fit`, which must store the fitted table on
    `self._table`; everything else delegates to that table.
    """

    method: ClassVar[str]

    def __init__(self) -> None:
        self._table: Optional[EncodingTable] = None

    @property
    def is_fitted(self) -> bool:
        return self._table is not None

    @property
    def table_(self) -> EncodingTable:
        if self._table is None:
            raise ModelError(
                f"{type(self).__name__} is not fitted yet; call fit() first.",
                code="not_fitted",
                location=f"catencode.encoders.{type(self).__name__}.table_",
            )
        return self._table

    @abstractmethod
    def fit(self, frame: pd.DataFrame, categorical_column: str, outcome_column: str, *args: Any, **kwargs: Any) -> Any:
        ...

    def apply(self, frame: pd.DataFrame, column: Optional[str] = None) -> pd.DataFrame:
        return self.table_.apply(frame, column)

    def transform(self, frame: pd.DataFrame, column: Optional[str] = None) -> pd.DataFrame:
        return self.table_.transform(frame, column)

    def tidy(self) -> pd.DataFrame:
        return self.table_.tidy()


class LikelihoodEncoder(BaseEncoder):
    """Base for encoders that map each level to a single effect estimate.

    Binary outcomes are encoded on the log-odds scale, numeric outcomes on
    the outcome scale. Subclasses implement `_estimate`, returning the
    per-level values (aligned with `inputs.levels`) and the fallback value.
    """

    def __init__(self, likelihood_config: Optional[LikelihoodConfig] = None) -> None:
        super().__init__()
        self.likelihood_config = likelihood_config or LikelihoodConfig()
        self.level_stats_: Optional[pd.DataFrame] = None
        self.outcome_kind_: Optional[str] = None
        self.event_level_: Optional[str] = None

    @abstractmethod
    def _estimate(self, inputs: EncoderInputs, **kwargs: Any) -> Tuple[np.ndarray, float]:
        ...

    def _fit_table(
        self,
        frame: pd.DataFrame,
        categorical_column: str,
        outcome_column: str,
        **estimate_kwargs: Any,
    ) -> EncodingTable:
        location = f"catencode.encoders.{type(self).__name__}.fit"
        inputs = prepare_inputs(
            frame,
            categorical_column,
            outcome_column,
            event_level=self.likelihood_config.event_level,
            outcome_kind=self.likelihood_config.outcome_kind,
            allowed_kinds=("numeric", "binary"),
            location=location,
        )

        logger.info(
            "Fitting %s encoder: column=%s, outcome=%s (%s), n_rows=%d, n_levels=%d",
            self.method,
            categorical_column,
            outcome_column,
            inputs.kind,
            inputs.n_rows,
            inputs.n_levels,
        )
        started = time.perf_counter()
        values, fallback = self._estimate(inputs, **estimate_kwargs)

        table = likelihood_table(
            categorical_column,
            self.method,
            inputs.levels,
            values,
            fallback,
        )
        self._table = table
        self.level_stats_ = summarize_levels(
            inputs, pseudo_count=self.likelihood_config.pseudo_count
        )
        self.outcome_kind_ = inputs.kind
        self.event_level_ = inputs.event_level

        logger.info(
            "Fitted %s encoder for %s in %.2fs (fallback=%.4f)",
            self.method,
            categorical_column,
            time.perf_counter() - started,
            fallback,
        )
        return table
