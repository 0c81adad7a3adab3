from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import numpy as np
import pandas as pd
import pytest

from catencode.config import MixedSolverConfig
from catencode.encoders import mixed as mixed_module
from catencode.encoders.glm import NoPoolingEncoder
from catencode.encoders.mixed import MixedEncoder
from catencode.exceptions import ConvergenceError, NonConvergenceError


# ---------------------------------------------------------------------------
# Partial pooling
# ---------------------------------------------------------------------------


def test_binary_small_level_is_shrunk_more_than_large(shrinkage_frame: pd.DataFrame) -> None:
    table = MixedEncoder().fit(shrinkage_frame, "store", "flag")
    value = dict(zip(table.levels, table.values[:, 0]))
    intercept = table.fallback[0]
    raw_log_odds = np.log(3.0)

    assert table.method == "mixed"
    assert table.id == "lencode_mixed"
    assert intercept < value["small"] < value["large"] < raw_log_odds


def test_numeric_estimates_lie_between_level_mean_and_intercept(
    numeric_frame: pd.DataFrame,
) -> None:
    table = MixedEncoder().fit(numeric_frame, "region", "price")
    intercept = table.fallback[0]
    means = numeric_frame.groupby("region")["price"].mean().sort_index().to_numpy()

    for estimate, mean in zip(table.values[:, 0], means):
        assert abs(estimate - intercept) <= abs(mean - intercept) + 1e-8
        assert np.sign(estimate - intercept) == np.sign(mean - intercept)


def test_pooled_estimates_are_less_spread_than_no_pooling(
    shrinkage_frame: pd.DataFrame,
) -> None:
    pooled = MixedEncoder().fit(shrinkage_frame, "store", "flag")
    unpooled = NoPoolingEncoder().fit(shrinkage_frame, "store", "flag")

    assert np.std(pooled.values) < np.std(unpooled.values)


def test_refit_is_deterministic(shrinkage_frame: pd.DataFrame) -> None:
    first = MixedEncoder().fit(shrinkage_frame, "store", "flag")
    second = MixedEncoder().fit(shrinkage_frame, "store", "flag")

    assert first.equals(second)


def test_tiny_constant_level_is_pulled_towards_the_intercept(
    scenario_frame: pd.DataFrame,
) -> None:
    pooled = MixedEncoder().fit(scenario_frame, "group", "outcome")
    raw = NoPoolingEncoder().fit(scenario_frame, "group", "outcome")
    intercept = pooled.fallback[0]

    pooled_b = pooled.values[1, 0]
    raw_b = raw.values[1, 0]

    assert np.isfinite(pooled_b)
    assert abs(pooled_b - intercept) < abs(raw_b - intercept)


# ---------------------------------------------------------------------------
# Solver failures
# ---------------------------------------------------------------------------


class _FakeMixedLM:
    result: Any = None
    error: Exception | None = None

    def __init__(self, endog, exog, groups) -> None:
        self.groups = groups

    def fit(self, reml: bool, maxiter: int) -> Any:
        if self.error is not None:
            raise self.error
        return self.result


def test_numeric_non_convergence_raises(
    monkeypatch: pytest.MonkeyPatch,
    numeric_frame: pd.DataFrame,
) -> None:
    fake = type(
        "NotConverged",
        (_FakeMixedLM,),
        {"result": SimpleNamespace(converged=False)},
    )
    monkeypatch.setattr(mixed_module, "MixedLM", fake)

    encoder = MixedEncoder(solver_config=MixedSolverConfig(max_iter=3))
    with pytest.raises(NonConvergenceError) as ctx:
        encoder.fit(numeric_frame, "region", "price")

    assert isinstance(ctx.value, ConvergenceError)
    assert ctx.value.code == "solver_not_converged"
    assert ctx.value.context["max_iter"] == 3
    assert not encoder.is_fitted


def test_singular_matrix_becomes_non_convergence(
    monkeypatch: pytest.MonkeyPatch,
    numeric_frame: pd.DataFrame,
) -> None:
    fake = type(
        "Singular",
        (_FakeMixedLM,),
        {"error": np.linalg.LinAlgError("Singular matrix")},
    )
    monkeypatch.setattr(mixed_module, "MixedLM", fake)

    with pytest.raises(NonConvergenceError) as ctx:
        MixedEncoder().fit(numeric_frame, "region", "price")

    assert isinstance(ctx.value.cause, np.linalg.LinAlgError)


def test_non_finite_estimates_raise(
    monkeypatch: pytest.MonkeyPatch,
    numeric_frame: pd.DataFrame,
) -> None:
    result = SimpleNamespace(
        converged=True,
        fe_params=np.array([np.nan]),
        random_effects={code: np.array([0.0]) for code in range(4)},
        cov_re=np.array([[1.0]]),
    )
    fake = type("NaNResult", (_FakeMixedLM,), {"result": result})
    monkeypatch.setattr(mixed_module, "MixedLM", fake)

    with pytest.raises(NonConvergenceError):
        MixedEncoder().fit(numeric_frame, "region", "price")


def test_binary_optimizer_failure_raises(
    monkeypatch: pytest.MonkeyPatch,
    shrinkage_frame: pd.DataFrame,
) -> None:
    class _FailedGLMM:
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            pass

        def fit_map(self, minim_opts: Any = None) -> Any:
            return SimpleNamespace(
                optim_retvals=SimpleNamespace(
                    status=1, success=False, message="Maximum number of iterations"
                ),
            )

    monkeypatch.setattr(mixed_module, "BinomialBayesMixedGLM", _FailedGLMM)

    with pytest.raises(NonConvergenceError) as ctx:
        MixedEncoder().fit(shrinkage_frame, "store", "flag")

    assert ctx.value.context["status"] == 1
