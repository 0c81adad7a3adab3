from __future__ import annotations

import random
from pathlib import Path
from typing import Generator

import numpy as np
import pandas as pd
import pytest
import torch
import yaml

from catencode.config import AppConfig, EmbeddingConfig, SamplerConfig, TrainConfig


# ---------------------------------------------------------------------------
# Global test seed
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _set_test_seed() -> Generator[None, None, None]:
    """Set a deterministic random seed for every test."""
    seed = 1234
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    yield


# ---------------------------------------------------------------------------
# In-memory frames
# ---------------------------------------------------------------------------


@pytest.fixture
def binary_frame() -> pd.DataFrame:
    """Three levels with different event rates; outcome coded 'no'/'yes'.

    a: 6/10 events, b: 2/8 events, c: 5/5 events (constant outcome).
    """
    rows = (
        [("a", "yes")] * 6
        + [("a", "no")] * 4
        + [("b", "yes")] * 2
        + [("b", "no")] * 6
        + [("c", "yes")] * 5
    )
    return pd.DataFrame(rows, columns=["zip_code", "churned"])


@pytest.fixture
def numeric_frame() -> pd.DataFrame:
    """Four levels with distinct means plus one auxiliary numeric predictor."""
    rng = np.random.default_rng(7)
    levels = np.repeat(["north", "south", "east", "west"], [12, 10, 8, 6])
    means = {"north": 10.0, "south": 12.0, "east": 8.0, "west": 15.0}
    price = np.array([means[lvl] for lvl in levels]) + rng.normal(0.0, 1.0, len(levels))
    return pd.DataFrame(
        {
            "region": levels,
            "sqft": rng.normal(0.0, 1.0, len(levels)),
            "price": price,
        }
    )


@pytest.fixture
def scenario_frame() -> pd.DataFrame:
    """Level A: n=100 at an 80% event rate; level B: n=3, all events."""
    rows = [("A", True)] * 80 + [("A", False)] * 20 + [("B", True)] * 3
    return pd.DataFrame(rows, columns=["group", "outcome"])


@pytest.fixture
def shrinkage_frame() -> pd.DataFrame:
    """Levels sharing a 75% event rate but different sizes.

    small (n=4) and large (n=40) share identical raw log-odds; the other
    levels anchor the pooled intercept well below them.
    """
    spec = {
        "small": (3, 4),
        "large": (30, 40),
        "l1": (10, 40),
        "l2": (12, 40),
        "l3": (8, 40),
        "l4": (14, 40),
        "l5": (11, 40),
    }
    rows = []
    for level, (events, n) in spec.items():
        rows += [(level, 1.0)] * events + [(level, 0.0)] * (n - events)
    frame = pd.DataFrame(rows, columns=["store", "flag"])
    frame["flag"] = frame["flag"].astype(bool)
    return frame


@pytest.fixture
def embedding_frame() -> pd.DataFrame:
    """Six levels, numeric outcome driven by level and one predictor."""
    rng = np.random.default_rng(11)
    levels = np.repeat([f"L{i}" for i in range(6)], 20)
    effects = {f"L{i}": float(i) for i in range(6)}
    x = rng.normal(0.0, 1.0, len(levels))
    y = np.array([effects[lvl] for lvl in levels]) + 0.5 * x + rng.normal(0.0, 0.1, len(levels))
    return pd.DataFrame({"shop": levels, "x": x, "y": y})


# ---------------------------------------------------------------------------
# Configs
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_train_config() -> TrainConfig:
    return TrainConfig(epochs=5, batch_size=16, learning_rate=1e-2, seed=3)


@pytest.fixture
def fast_embedding_config(fast_train_config: TrainConfig) -> EmbeddingConfig:
    return EmbeddingConfig(embed_dim=2, hidden_units=8, train=fast_train_config)


@pytest.fixture
def fast_sampler_config() -> SamplerConfig:
    return SamplerConfig(
        chains=2,
        iterations=1000,
        warmup_fraction=0.5,
        seed=2024,
        cores=1,
        min_ess=50,
        max_rhat=1.1,
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


# ---------------------------------------------------------------------------
# On-disk data and configs
# ---------------------------------------------------------------------------


@pytest.fixture
def binary_csv(tmp_path: Path, binary_frame: pd.DataFrame) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / "train.csv"
    binary_frame.to_csv(path, index=False)
    return path


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Minimal YAML config with dev/prod profiles under tmp_path."""
    config = {
        "dev": {
            "env": "dev",
            "experiment_name": "test_encoders",
            "log_level": "INFO",
            "paths": {"base_dir": str(tmp_path), "data_dir": "data", "tables_dir": "tables"},
            "likelihood": {"pseudo_count": 0.5},
            "embedding": {"embed_dim": 2, "train": {"epochs": 2, "seed": 1}},
        },
        "prod": {
            "env": "prod",
            "log_level": "WARNING",
            "bayes": {"chains": 2, "iterations": 400},
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return path
