from __future__ import annotations

import warnings
from typing import Any, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM
from statsmodels.regression.mixed_linear_model import MixedLM

from catencode.config import LikelihoodConfig, MixedSolverConfig
from catencode.data.frames import EncoderInputs
from catencode.encoders.base import LikelihoodEncoder
from catencode.encoders.table import EncodingTable
from catencode.exceptions import NonConvergenceError
from catencode.logging_config import get_logger

logger = get_logger(__name__)

# scipy.optimize status codes: 1 = iteration budget exhausted, 3 = NaN seen.
_FAILED_OPTIMIZER_STATUS = {1, 3}


class MixedEncoder(LikelihoodEncoder):
    """Partial-pooling likelihood encoder fitted by empirical Bayes.

    A random intercept per level is estimated with a point-estimate solver:

    * numeric outcomes: linear mixed model (`MixedLM`, REML by default);
      level value = fixed intercept + predicted random effect (BLUP).
    * binary outcomes: `BinomialBayesMixedGLM` fitted at the posterior mode
      (`fit_map`) with one variance component shared by all levels; level
      value = fixed-effect mean + level random-effect mean (log-odds scale).

    The fallback is the fixed intercept. Levels with few rows are shrunk
    towards it.
    """

    method = "mixed"

    def __init__(
        self,
        likelihood_config: Optional[LikelihoodConfig] = None,
        solver_config: Optional[MixedSolverConfig] = None,
    ) -> None:
        super().__init__(likelihood_config)
        self.solver_config = solver_config or MixedSolverConfig()

    def fit(
        self,
        frame: pd.DataFrame,
        categorical_column: str,
        outcome_column: str,
    ) -> EncodingTable:
        return self._fit_table(frame, categorical_column, outcome_column)

    def _estimate(self, inputs: EncoderInputs, **kwargs: Any) -> Tuple[np.ndarray, float]:
        location = "catencode.encoders.mixed.MixedEncoder.fit"
        try:
            with warnings.catch_warnings():
                # Solver warnings are turned into NonConvergenceError below.
                warnings.simplefilter("ignore")
                if inputs.kind == "binary":
                    values, fallback = self._estimate_binary(inputs, location)
                else:
                    values, fallback = self._estimate_numeric(inputs, location)
        except np.linalg.LinAlgError as exc:
            raise NonConvergenceError.from_exception(
                exc,
                message="Mixed model solver failed numerically (singular matrix).",
                context={"column": inputs.column, "kind": inputs.kind},
                location=location,
            ) from exc

        if not (np.all(np.isfinite(values)) and np.isfinite(fallback)):
            raise NonConvergenceError(
                "Mixed model solver produced non-finite estimates.",
                context={"column": inputs.column, "kind": inputs.kind},
                location=location,
            )
        return values, fallback

    def _estimate_numeric(
        self,
        inputs: EncoderInputs,
        location: str,
    ) -> Tuple[np.ndarray, float]:
        cfg = self.solver_config
        model = MixedLM(inputs.y, np.ones((inputs.n_rows, 1)), groups=inputs.codes)
        result = model.fit(reml=cfg.reml, maxiter=cfg.max_iter)

        if not result.converged:
            raise NonConvergenceError(
                f"MixedLM did not converge within {cfg.max_iter} iterations.",
                context={"column": inputs.column, "reml": cfg.reml, "max_iter": cfg.max_iter},
                location=location,
            )

        intercept = float(np.asarray(result.fe_params)[0])
        effects = result.random_effects
        values = np.array(
            [intercept + float(np.asarray(effects[code])[0]) for code in range(inputs.n_levels)],
            dtype=np.float64,
        )
        logger.debug(
            "MixedLM: intercept=%.4f, group variance=%.4g",
            intercept,
            float(np.asarray(result.cov_re)[0, 0]),
        )
        return values, intercept

    def _estimate_binary(
        self,
        inputs: EncoderInputs,
        location: str,
    ) -> Tuple[np.ndarray, float]:
        cfg = self.solver_config
        membership = sparse.csr_matrix(
            (np.ones(inputs.n_rows), (np.arange(inputs.n_rows), inputs.codes)),
            shape=(inputs.n_rows, inputs.n_levels),
        )
        model = BinomialBayesMixedGLM(
            inputs.y,
            np.ones((inputs.n_rows, 1)),
            membership,
            np.zeros(inputs.n_levels, dtype=int),
            vcp_p=cfg.vcp_prior_sd,
            fe_p=cfg.fe_prior_sd,
            fep_names=["Intercept"],
            vcp_names=[inputs.column],
            vc_names=list(inputs.levels),
        )
        result = model.fit_map(minim_opts={"maxiter": cfg.max_iter})

        retvals = result.optim_retvals
        status = int(getattr(retvals, "status", 0))
        if status in _FAILED_OPTIMIZER_STATUS:
            raise NonConvergenceError(
                f"Posterior-mode solver did not converge: {getattr(retvals, 'message', '')}",
                context={"column": inputs.column, "status": status, "max_iter": cfg.max_iter},
                location=location,
            )
        if not getattr(retvals, "success", True):
            logger.warning(
                "Posterior-mode solver for %s stopped early (%s); estimates kept",
                inputs.column,
                getattr(retvals, "message", "unknown reason"),
            )

        intercept = float(np.asarray(result.fe_mean)[0])
        values = intercept + np.asarray(result.vc_mean, dtype=np.float64)
        logger.debug(
            "BinomialBayesMixedGLM: intercept=%.4f, log between-level sd=%.4f",
            intercept,
            float(np.asarray(result.vcp_mean)[0]),
        )
        return values, intercept
