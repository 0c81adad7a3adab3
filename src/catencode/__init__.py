"""
catencode: categorical encoders for high-cardinality predictors.

Likelihood encoders (no pooling, Bayesian partial pooling, empirical-Bayes
mixed models) and an entity-embedding encoder, all producing an immutable
EncodingTable that maps each training level to a numeric vector and unseen
levels to a fallback:

    from catencode import NoPoolingEncoder

    encoder = NoPoolingEncoder()
    table = encoder.fit(train, "zip_code", "churned")
    encoded = table.apply(test)
"""

from __future__ import annotations

from importlib import metadata as _metadata

# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------

try:
    __version__ = _metadata.version("catencode")
except _metadata.PackageNotFoundError:
    # Running from a source checkout without installation.
    __version__ = "0.0.0"

# ---------------------------------------------------------------------------
# Public API re-exports
# ---------------------------------------------------------------------------

from .config import AppConfig, get_config, get_paths, load_config  # noqa: F401,E402
from .data.frames import NEW_LEVEL, summarize_levels  # noqa: F401,E402
from .deadline import Deadline  # noqa: F401,E402
from .encoders import (  # noqa: F401,E402
    BayesEncoder,
    EmbeddingEncoder,
    EncodingTable,
    MixedEncoder,
    NoPoolingEncoder,
    apply_encoding,
    make_encoder,
)
from .exceptions import (  # noqa: F401,E402
    AppError,
    ConfigError,
    ConvergenceError,
    ConvergenceWarning,
    DataError,
    DeadlineExceededError,
    InsufficientDataError,
    ModelError,
    NonConvergenceError,
    OutcomeTypeError,
    TrainingError,
    UnknownLevelWarning,
)
from .logging_config import get_logger  # noqa: F401,E402
from .torch.training.history import TrainingHistory  # noqa: F401,E402

__all__ = [
    "__version__",
    # Config
    "AppConfig",
    "get_config",
    "get_paths",
    "load_config",
    # Logging
    "get_logger",
    # Encoders
    "NoPoolingEncoder",
    "BayesEncoder",
    "MixedEncoder",
    "EmbeddingEncoder",
    "make_encoder",
    # Tables
    "EncodingTable",
    "apply_encoding",
    "NEW_LEVEL",
    "summarize_levels",
    "TrainingHistory",
    "Deadline",
    # Exceptions / warnings
    "AppError",
    "ConfigError",
    "DataError",
    "InsufficientDataError",
    "OutcomeTypeError",
    "ModelError",
    "TrainingError",
    "ConvergenceError",
    "NonConvergenceError",
    "DeadlineExceededError",
    "UnknownLevelWarning",
    "ConvergenceWarning",
]
