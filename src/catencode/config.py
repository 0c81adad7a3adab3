"""Typed settings for catencode, read from YAML profiles and CATENCODE_* variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from catencode.exceptions import ConfigError

# ----------------------------------------------------------------------
# Variable names and file discovery
# ----------------------------------------------------------------------

# CATENCODE_ENV, CATENCODE_CONFIG_PATH, CATENCODE_BAYES__CHAINS, ...
ENV_PREFIX = "CATENCODE_"
ENV_CONFIG_PATH = ENV_PREFIX + "CONFIG_PATH"

DEFAULT_ENV = (os.getenv(ENV_PREFIX + "ENV") or "dev").lower()
DEFAULT_CONFIG_FILENAMES = ("config.yaml", "config.yml")
PRODUCTION_ENVS = frozenset({"prod", "production"})


# ----------------------------------------------------------------------
# Section models
# ----------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Where input frames and fitted encoding tables live."""

    model_config = ConfigDict(frozen=True)

    base_dir: Path = Path(".")
    data_dir: Path = Path("data")
    tables_dir: Path = Path("tables")

    def resolve(self, base: Path | None = None) -> PathsConfig:
        """Absolute copy, with relative dirs taken from `base` (default base_dir)."""
        base_dir = Path(base) if base is not None else self.base_dir
        return PathsConfig(
            base_dir=base_dir,
            data_dir=(base_dir / self.data_dir).resolve(),
            tables_dir=(base_dir / self.tables_dir).resolve(),
        )


class LikelihoodConfig(BaseModel):
    """Settings shared by the likelihood (effect) encoders."""

    model_config = ConfigDict(frozen=True)

    event_level: Literal["first", "second"] = Field(
        "second",
        description=(
            "Which of the two sorted outcome levels is modelled as the event. "
            "Boolean outcomes always use True."
        ),
    )
    pseudo_count: float = Field(
        0.5,
        gt=0.0,
        description=(
            "Haldane-Anscombe correction added to both cells of a level whose "
            "outcome is all events or all non-events (no-pooling fits only)."
        ),
    )
    outcome_kind: Literal["auto", "numeric", "binary"] = Field(
        "auto",
        description=(
            "'auto' infers the kind from the dtype, so a 0/1 integer outcome is "
            "numeric (level means). Set 'binary' to get log-odds for such columns."
        ),
    )


class SamplerConfig(BaseModel):
    """MCMC settings for the Bayesian partial-pooling encoder."""

    model_config = ConfigDict(frozen=True)

    chains: int = Field(4, ge=1, description="Number of independent chains.")
    iterations: int = Field(
        2000,
        ge=10,
        description="Iterations per chain, warm-up included.",
    )
    warmup_fraction: float = Field(
        0.5,
        gt=0.0,
        lt=1.0,
        description="Fraction of `iterations` spent tuning (discarded).",
    )
    seed: int | None = Field(
        42,
        ge=0,
        description="Sampler seed. None gives a different posterior sample each fit.",
    )
    cores: int = Field(1, ge=1, description="Chains sampled in parallel.")
    target_accept: float = Field(0.9, gt=0.0, lt=1.0)
    prior_intercept_scale: float = Field(
        2.5,
        gt=0.0,
        description="SD of the Normal prior on the intercept (outcome-sd units for numeric outcomes).",
    )
    prior_sigma_scale: float = Field(
        1.0,
        gt=0.0,
        description="Scale of the HalfNormal prior on the between-level SD.",
    )
    max_rhat: float = Field(1.05, gt=1.0)
    min_ess: float = Field(100.0, ge=0.0)
    on_failure: Literal["raise", "warn"] = Field(
        "raise",
        description="Raise ConvergenceError, or warn and return the table anyway.",
    )
    timeout_seconds: float | None = Field(None, gt=0.0)

    @property
    def tune(self) -> int:
        return int(round(self.iterations * self.warmup_fraction))

    @property
    def draws(self) -> int:
        return self.iterations - self.tune

    @model_validator(mode="after")
    def _check_draws(self) -> SamplerConfig:
        if self.draws < 1:
            raise ValueError("warmup_fraction leaves no post-warm-up draws.")
        return self


class MixedSolverConfig(BaseModel):
    """Settings for the empirical-Bayes (mixed model) encoder."""

    model_config = ConfigDict(frozen=True)

    reml: bool = Field(True, description="Use REML for numeric outcomes.")
    max_iter: int = Field(200, ge=1, description="Optimizer iteration budget.")
    vcp_prior_sd: float = Field(
        1.0,
        gt=0.0,
        description="Prior SD of the log between-level SD (binary outcomes).",
    )
    fe_prior_sd: float = Field(
        2.0,
        gt=0.0,
        description="Prior SD of the fixed intercept (binary outcomes).",
    )


class TrainConfig(BaseModel):
    """Training hyperparameters for the embedding network."""

    model_config = ConfigDict(frozen=True)

    epochs: int = Field(20, gt=0)
    batch_size: int = Field(32, gt=0)
    learning_rate: float = Field(1e-3, gt=0.0)
    optimizer: Literal["adam", "adamw", "sgd"] = "adam"
    weight_decay: float = Field(0.0, ge=0.0)
    validation_split: float = Field(
        0.0,
        ge=0.0,
        lt=1.0,
        description="Fraction of rows held out to monitor validation loss.",
    )
    seed: int | None = Field(
        None,
        ge=0,
        description="Seed for weight init, split and batch order. None = not reproducible.",
    )
    device: str = Field("cpu", description="'cpu', 'cuda' or 'auto'.")
    max_grad_norm: float | None = Field(None, gt=0.0)
    early_stopping_patience: int | None = Field(None, gt=0)
    timeout_seconds: float | None = Field(None, gt=0.0)
    log_interval: int | None = Field(None, gt=0)


class EmbeddingConfig(BaseModel):
    """Architecture and table-extraction settings for the embedding encoder."""

    model_config = ConfigDict(frozen=True)

    embed_dim: int = Field(2, ge=1, description="Embedding dimension D.")
    hidden_units: int = Field(16, ge=1, description="Hidden layer size H.")
    fallback: Literal["zero", "mean"] = Field(
        "zero",
        description="Vector used for unseen levels: all zeros or the mean embedding row.",
    )
    train: TrainConfig = TrainConfig()


class MlflowConfig(BaseModel):
    """Optional MLflow run tracking for CLI fits."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(
        False,
        description="If True, the CLI logs encoder params and training metrics to MLflow.",
    )
    tracking_uri: str | None = Field(None)
    experiment_name: str | None = Field(None)
    run_name: str | None = Field(None)


# ----------------------------------------------------------------------
# Application settings
# ----------------------------------------------------------------------


class AppConfig(BaseSettings):
    """Everything an encoder fit can be configured with.

    Precedence, highest first: constructor keywords (the YAML profile),
    CATENCODE_* environment variables, a .env file, field defaults. Nested
    sections use a double underscore:

        CATENCODE_BAYES__CHAINS=2
        CATENCODE_EMBEDDING__TRAIN__EPOCHS=50
        CATENCODE_MLFLOW__ENABLED=true

    YAML files are either a single flat mapping

        likelihood:
          pseudo_count: 0.5
        bayes:
          chains: 4

    or one mapping per environment (`dev:`, `prod:`, ...), picked by
    CATENCODE_ENV or the `env` argument of load_config().
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    _origin: Path | None = PrivateAttr(default=None)
    _profile: str | None = PrivateAttr(default=None)

    env: str = Field("dev", description="'dev', 'test', 'prod', ...")
    log_level: str = Field("INFO", description="Level for the catencode logger.")
    experiment_name: str = Field(
        "catencode",
        description="MLflow experiment used when mlflow.experiment_name is unset.",
    )

    paths: PathsConfig = PathsConfig()
    likelihood: LikelihoodConfig = LikelihoodConfig()
    bayes: SamplerConfig = SamplerConfig()
    mixed: MixedSolverConfig = MixedSolverConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    mlflow: MlflowConfig = MlflowConfig()

    @model_validator(mode="after")
    def _cross_field_rules(self) -> AppConfig:
        if self.env.lower() in PRODUCTION_ENVS and self.log_level.upper() == "DEBUG":
            raise ValueError("log_level DEBUG is not allowed when env is production.")
        if self.bayes.cores > self.bayes.chains:
            raise ValueError("bayes.cores must not exceed bayes.chains.")
        return self

    @property
    def source_path(self) -> Path | None:
        """YAML file this config was read from, if any."""
        return self._origin

    @property
    def profile(self) -> str | None:
        """Environment profile requested when loading."""
        return self._profile

    def resolved_paths(self) -> PathsConfig:
        return self.paths.resolve(self.paths.base_dir)

    def to_dict(self, *, include_private: bool = False) -> dict[str, Any]:
        """JSON-compatible dump; `include_private` adds where it was loaded from."""
        dumped = self.model_dump(mode="json")
        if include_private:
            dumped["_source_path"] = None if self._origin is None else str(self._origin)
            dumped["_loaded_env"] = self._profile
        return dumped

    def to_yaml(self, path: Path | str, *, include_private: bool = False) -> None:
        """Save the effective settings, e.g. next to the table they produced."""
        content = yaml.safe_dump(self.to_dict(include_private=include_private), sort_keys=False)
        Path(path).write_text(content, encoding="utf-8")


# ----------------------------------------------------------------------
# Reading YAML files
# ----------------------------------------------------------------------

_cached: AppConfig | None = None


def _locate_config_file() -> Path | None:
    """CATENCODE_CONFIG_PATH if set, else config.yaml/config.yml in the cwd."""
    from_env = os.getenv(ENV_CONFIG_PATH)
    if from_env:
        # Existence is checked by the caller so a typo is reported, not ignored.
        return Path(from_env)
    return next(
        (Path.cwd() / name for name in DEFAULT_CONFIG_FILENAMES if (Path.cwd() / name).exists()),
        None,
    )


def _read_profile(path: Path, profile: str) -> dict[str, Any]:
    """Parse `path` and return the mapping for `profile` (or the whole file)."""
    details = {"config_path": str(path), "env": profile}
    where = "catencode.config.load_config"

    if not path.exists():
        raise ConfigError(
            f"No config file at {path}",
            code="config_file_not_found",
            context=details,
            location=where,
        )
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not read {path}",
            code="config_read_error",
            cause=exc,
            context=details,
            location=where,
        ) from exc
    try:
        document = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(
            f"{path} is not valid YAML",
            code="config_parse_error",
            cause=exc,
            context=details,
            location=where,
        ) from exc

    if not isinstance(document, Mapping):
        raise ConfigError(
            f"{path} must contain a mapping at the top level, found {type(document).__name__}",
            code="config_structure_error",
            context=details,
            location=where,
        )

    section = document.get(profile)
    return dict(section) if isinstance(section, Mapping) else dict(document)


def load_config(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
) -> AppConfig:
    """Build a validated AppConfig.

    Parameters
    ----------
    config_path:
        YAML file to read. When omitted, CATENCODE_CONFIG_PATH and then
        ./config.yaml / ./config.yml are tried; with none found only
        environment variables and defaults apply.
    env:
        Profile to pick from a multi-environment file. Defaults to
        CATENCODE_ENV, then "dev".

    Raises
    ------
    ConfigError
        With code config_file_not_found, config_read_error,
        config_parse_error, config_structure_error or
        config_validation_error (the pydantic errors are in
        ``context["errors"]``).
    """
    profile = (env or DEFAULT_ENV).lower()
    path = Path(config_path) if config_path is not None else _locate_config_file()
    overrides = _read_profile(path, profile) if path is not None else {}

    try:
        cfg = AppConfig(**overrides)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid configuration ({exc.error_count()} error(s))",
            code="config_validation_error",
            cause=exc,
            context={
                "config_path": None if path is None else str(path),
                "env": profile,
                "errors": exc.errors(),
            },
            location="catencode.config.load_config",
        ) from exc

    cfg._origin = path
    cfg._profile = profile
    return cfg


def get_config(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
    force_reload: bool = False,
) -> AppConfig:
    """Process-wide AppConfig, loaded on the first call.

    Later calls ignore `config_path` and `env` unless `force_reload` is set.
    """
    global _cached

    if force_reload or _cached is None:
        _cached = load_config(config_path, env=env)
    return _cached


def get_paths(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
    force_reload: bool = False,
) -> PathsConfig:
    return get_config(config_path, env=env, force_reload=force_reload).resolved_paths()
