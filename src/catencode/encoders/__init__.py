"""Categorical encoders and the encoding table they produce."""

from __future__ import annotations

from typing import Optional

from catencode.config import AppConfig, get_config
from catencode.encoders.base import BaseEncoder, LikelihoodEncoder
from catencode.encoders.bayes import BayesEncoder
from catencode.encoders.embedding import EmbeddingEncoder
from catencode.encoders.glm import NoPoolingEncoder
from catencode.encoders.mixed import MixedEncoder
from catencode.encoders.table import EncodingTable, apply_encoding
from catencode.exceptions import ConfigError

METHODS = ("glm", "bayes", "mixed", "embedding")


def make_encoder(method: str, app_config: Optional[AppConfig] = None) -> BaseEncoder:
    """Return an encoder for `method` configured from `app_config`.

    `method` is one of "glm", "bayes", "mixed" or "embedding". When no
    config is given, the cached get_config() is used.

        encoder = make_encoder("mixed")
        table = encoder.fit(frame, "zip_code", "churned")
    """
    cfg = app_config or get_config()
    key = method.lower()

    if key == "glm":
        return NoPoolingEncoder(cfg.likelihood)
    if key == "bayes":
        return BayesEncoder(cfg.likelihood, cfg.bayes)
    if key == "mixed":
        return MixedEncoder(cfg.likelihood, cfg.mixed)
    if key == "embedding":
        return EmbeddingEncoder(cfg.embedding, app_config=cfg)

    raise ConfigError(
        f"Unknown encoding method: {method!r}",
        code="unknown_method",
        context={"method": method, "supported": list(METHODS)},
        location="catencode.encoders.make_encoder",
    )


__all__ = [
    "METHODS",
    "BaseEncoder",
    "LikelihoodEncoder",
    "NoPoolingEncoder",
    "BayesEncoder",
    "MixedEncoder",
    "EmbeddingEncoder",
    "EncodingTable",
    "apply_encoding",
    "make_encoder",
]
