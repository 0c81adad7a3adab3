from __future__ import annotations

from typing import Any, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm

from catencode.data.frames import EncoderInputs, corrected_counts
from catencode.encoders.base import LikelihoodEncoder
from catencode.encoders.table import EncodingTable
from catencode.exceptions import ModelError
from catencode.logging_config import get_logger

logger = get_logger(__name__)


class NoPoolingEncoder(LikelihoodEncoder):
    """Likelihood encoder with one independent estimate per level.

    Binary outcomes: a binomial GLM with one indicator per level (no
    intercept) on per-level event/non-event counts, so each coefficient is
    that level's log-odds. Levels whose outcome never varies get the
    Haldane-Anscombe correction (`pseudo_count` added to both cells) so the
    estimate stays finite.

    Numeric outcomes: least squares on the level indicators, which gives the
    level means. A 0/1 integer outcome counts as numeric unless
    `LikelihoodConfig(outcome_kind="binary")` is set.

    The fallback is the intercept of the matching intercept-only model, i.e.
    the pooled log-odds or the global mean.

        encoder = NoPoolingEncoder()
        table = encoder.fit(train, "zip_code", "churned")
        encoded = encoder.apply(test)
    """

    method = "glm"

    def fit(
        self,
        frame: pd.DataFrame,
        categorical_column: str,
        outcome_column: str,
    ) -> EncodingTable:
        return self._fit_table(frame, categorical_column, outcome_column)

    def _estimate(self, inputs: EncoderInputs, **kwargs: Any) -> Tuple[np.ndarray, float]:
        try:
            if inputs.kind == "binary":
                return self._estimate_binary(inputs)
            return self._estimate_numeric(inputs)
        except np.linalg.LinAlgError as exc:
            raise ModelError.from_exception(
                exc,
                message="No-pooling fit failed numerically.",
                code="glm_fit_failed",
                context={"column": inputs.column, "n_levels": inputs.n_levels},
                location="catencode.encoders.glm.NoPoolingEncoder.fit",
            ) from exc

    def _estimate_binary(self, inputs: EncoderInputs) -> Tuple[np.ndarray, float]:
        raw_events = inputs.level_sums()
        raw_non_events = inputs.level_counts() - raw_events
        events, non_events = corrected_counts(inputs, self.likelihood_config.pseudo_count)

        n_corrected = int(np.sum((raw_events == 0) | (raw_non_events == 0)))
        if n_corrected:
            logger.debug(
                "Applied pseudo-count %.3g to %d level(s) with a constant outcome",
                self.likelihood_config.pseudo_count,
                n_corrected,
            )

        per_level = sm.GLM(
            np.column_stack([events, non_events]),
            np.eye(inputs.n_levels),
            family=sm.families.Binomial(),
        ).fit()

        # Intercept-only fit on the raw per-level counts: the pooled log-odds.
        pooled = sm.GLM(
            np.column_stack([raw_events, raw_non_events]),
            np.ones((inputs.n_levels, 1)),
            family=sm.families.Binomial(),
        ).fit()

        return np.asarray(per_level.params, dtype=np.float64), float(pooled.params[0])

    def _estimate_numeric(self, inputs: EncoderInputs) -> Tuple[np.ndarray, float]:
        # Least squares on level indicators is solved on per-level means
        # weighted by level size; the estimates equal the row-level fit.
        counts = inputs.level_counts()
        means = inputs.level_sums() / counts

        per_level = sm.WLS(means, np.eye(inputs.n_levels), weights=counts).fit()
        pooled = sm.WLS(means, np.ones((inputs.n_levels, 1)), weights=counts).fit()

        return np.asarray(per_level.params, dtype=np.float64), float(pooled.params[0])
