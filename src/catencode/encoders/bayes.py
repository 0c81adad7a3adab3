from __future__ import annotations

import warnings
from typing import Any, Dict, Optional, Tuple

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from catencode.config import LikelihoodConfig, SamplerConfig
from catencode.data.frames import EncoderInputs
from catencode.deadline import Deadline
from catencode.encoders.base import LikelihoodEncoder
from catencode.encoders.table import EncodingTable
from catencode.exceptions import ConvergenceError, ConvergenceWarning
from catencode.logging_config import get_logger

logger = get_logger(__name__)

DIAGNOSED_VARS = ("intercept", "sigma", "effect")


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


def build_model(inputs: EncoderInputs, sampler_config: SamplerConfig) -> pm.Model:
    """Hierarchical random-intercept model over the levels of `inputs`.

    Non-centred parameterisation: `effect = sigma * z` with `z ~ N(0, 1)`
    per level. Binary outcomes use a binomial likelihood on per-level
    counts (log-odds scale); numeric outcomes a normal likelihood per row,
    with priors centred and scaled by the outcome mean and SD.
    """
    cfg = sampler_config
    coords = {"level": list(inputs.levels)}

    with pm.Model(coords=coords) as model:
        if inputs.kind == "binary":
            intercept = pm.Normal("intercept", mu=0.0, sigma=cfg.prior_intercept_scale)
            sigma = pm.HalfNormal("sigma", sigma=cfg.prior_sigma_scale)
            z = pm.Normal("z", mu=0.0, sigma=1.0, dims="level")
            effect = pm.Deterministic("effect", sigma * z, dims="level")
            pm.Binomial(
                "events",
                n=inputs.level_counts().astype(np.int64),
                p=pm.math.invlogit(intercept + effect),
                observed=inputs.level_sums().astype(np.int64),
                dims="level",
            )
        else:
            y_mean = float(np.mean(inputs.y))
            y_sd = float(np.std(inputs.y)) or 1.0
            intercept = pm.Normal(
                "intercept", mu=y_mean, sigma=cfg.prior_intercept_scale * y_sd
            )
            sigma = pm.HalfNormal("sigma", sigma=cfg.prior_sigma_scale * y_sd)
            z = pm.Normal("z", mu=0.0, sigma=1.0, dims="level")
            effect = pm.Deterministic("effect", sigma * z, dims="level")
            resid_sd = pm.HalfNormal("resid_sd", sigma=y_sd)
            pm.Normal(
                "y",
                mu=intercept + effect[inputs.codes],
                sigma=resid_sd,
                observed=inputs.y,
            )

    return model


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _flat(dataset: Any, var_names: Tuple[str, ...]) -> np.ndarray:
    return np.concatenate([np.ravel(np.asarray(dataset[name])) for name in var_names])


def summarize_diagnostics(
    idata: Any,
    sampler_config: SamplerConfig,
    *,
    chains: int,
) -> Dict[str, Any]:
    """R-hat / bulk-ESS summary of the posterior and whether it passes.

    R-hat needs at least two chains; with a single chain it is reported as
    None and only the ESS threshold applies. NaN diagnostics fail.
    """
    var_names = list(DIAGNOSED_VARS)
    ess = _flat(az.ess(idata, var_names=var_names, method="bulk"), DIAGNOSED_VARS)
    min_ess = float(np.min(ess))

    max_rhat: Optional[float] = None
    if chains > 1:
        rhat = _flat(az.rhat(idata, var_names=var_names), DIAGNOSED_VARS)
        max_rhat = float(np.max(rhat))

    n_divergent = 0
    sample_stats = getattr(idata, "sample_stats", None)
    if sample_stats is not None and "diverging" in sample_stats:
        n_divergent = int(np.asarray(sample_stats["diverging"]).sum())

    problems = []
    if np.isnan(min_ess) or min_ess < sampler_config.min_ess:
        problems.append(f"min bulk ESS {min_ess:.1f} < {sampler_config.min_ess}")
    if max_rhat is not None and (np.isnan(max_rhat) or max_rhat > sampler_config.max_rhat):
        problems.append(f"max R-hat {max_rhat:.3f} > {sampler_config.max_rhat}")

    return {
        "max_rhat": max_rhat,
        "min_ess": min_ess,
        "n_divergent": n_divergent,
        "chains": chains,
        "draws": sampler_config.draws,
        "converged": not problems,
        "problems": problems,
    }


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------


class BayesEncoder(LikelihoodEncoder):
    """Partial-pooling likelihood encoder fitted by MCMC (PyMC / NUTS).

    Level value = posterior mean of `intercept + effect[level]`; fallback =
    posterior mean of `intercept`. Levels with little data are pulled
    towards the intercept, more strongly the fewer rows they have.

    After each fit `diagnostics_` holds the convergence summary. Failed
    diagnostics raise ConvergenceError, or with `on_failure="warn"` emit a
    ConvergenceWarning and keep the table.

        encoder = BayesEncoder(sampler_config=SamplerConfig(chains=4, seed=1))
        table = encoder.fit(train, "zip_code", "churned")
    """

    method = "bayes"

    def __init__(
        self,
        likelihood_config: Optional[LikelihoodConfig] = None,
        sampler_config: Optional[SamplerConfig] = None,
    ) -> None:
        super().__init__(likelihood_config)
        self.sampler_config = sampler_config or SamplerConfig()
        self.diagnostics_: Optional[Dict[str, Any]] = None

    def fit(
        self,
        frame: pd.DataFrame,
        categorical_column: str,
        outcome_column: str,
        sampler_config: Optional[SamplerConfig] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> EncodingTable:
        """Sample the hierarchical model and return the encoding table.

        Parameters
        ----------
        frame, categorical_column, outcome_column:
            Training data and the columns to use.
        sampler_config:
            Overrides the encoder's SamplerConfig for this fit only.
        deadline:
            Optional Deadline polled after every draw. When omitted,
            `sampler_config.timeout_seconds` (if set) starts one.

        Raises
        ------
        InsufficientDataError, OutcomeTypeError
            Invalid training data (nothing is sampled).
        ConvergenceError
            Diagnostics failed and `on_failure="raise"`.
        DeadlineExceededError
            The deadline passed or was cancelled while sampling.
        """
        cfg = sampler_config or self.sampler_config
        if deadline is None:
            deadline = Deadline.from_timeout(cfg.timeout_seconds)
        return self._fit_table(
            frame,
            categorical_column,
            outcome_column,
            sampler_config=cfg,
            deadline=deadline,
        )

    def _estimate(
        self,
        inputs: EncoderInputs,
        *,
        sampler_config: SamplerConfig,
        deadline: Optional[Deadline] = None,
        **kwargs: Any,
    ) -> Tuple[np.ndarray, float]:
        cfg = sampler_config
        location = "catencode.encoders.bayes.BayesEncoder.fit"
        model = build_model(inputs, cfg)

        callback = None
        if deadline is not None:

            def callback(**_: Any) -> None:
                deadline.check(location)

        logger.info(
            "Sampling %d chain(s) x %d iterations (%d warm-up) on %d core(s), seed=%s",
            cfg.chains,
            cfg.iterations,
            cfg.tune,
            cfg.cores,
            cfg.seed,
        )
        with model:
            idata = pm.sample(
                draws=cfg.draws,
                tune=cfg.tune,
                chains=cfg.chains,
                cores=cfg.cores,
                random_seed=cfg.seed,
                target_accept=cfg.target_accept,
                progressbar=False,
                compute_convergence_checks=False,
                return_inferencedata=True,
                callback=callback,
            )

        diagnostics = summarize_diagnostics(idata, cfg, chains=cfg.chains)
        self.diagnostics_ = diagnostics
        self._handle_diagnostics(inputs, cfg, diagnostics, location)

        posterior = idata.posterior
        intercept_draws = np.asarray(posterior["intercept"], dtype=np.float64)
        effect_draws = np.asarray(posterior["effect"], dtype=np.float64)

        values = (intercept_draws[..., np.newaxis] + effect_draws).mean(axis=(0, 1))
        fallback = float(intercept_draws.mean())
        return values, fallback

    def _handle_diagnostics(
        self,
        inputs: EncoderInputs,
        cfg: SamplerConfig,
        diagnostics: Dict[str, Any],
        location: str,
    ) -> None:
        if diagnostics["n_divergent"]:
            logger.warning(
                "%d divergent transition(s) while sampling %s",
                diagnostics["n_divergent"],
                inputs.column,
            )

        if diagnostics["converged"]:
            logger.info(
                "Sampler diagnostics OK: max_rhat=%s, min_ess=%.1f",
                diagnostics["max_rhat"],
                diagnostics["min_ess"],
            )
            return

        message = f"MCMC diagnostics failed for {inputs.column!r}: " + "; ".join(
            diagnostics["problems"]
        )
        if cfg.on_failure == "raise":
            raise ConvergenceError(
                message,
                context={"column": inputs.column, **diagnostics},
                location=location,
            )

        warnings.warn(message, ConvergenceWarning, stacklevel=4)
        logger.warning(message)
