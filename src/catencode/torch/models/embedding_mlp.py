from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
import torch
from torch import Tensor, nn

from catencode.exceptions import ModelError
from catencode.logging_config import get_logger

logger = get_logger(__name__)

_ACTIVATIONS = {
    "relu": nn.ReLU,
    "gelu": nn.GELU,
    "tanh": nn.Tanh,
    "silu": nn.SiLU,
}


def _get_activation(name: str) -> nn.Module:
    """Return a fresh activation module by name."""
    try:
        return _ACTIVATIONS[name.lower()]()
    except KeyError:
        raise ModelError(
            f"Unsupported activation: {name!r}",
            code="invalid_model_config",
            context={"activation": name, "supported": sorted(_ACTIVATIONS)},
            location="catencode.torch.models.embedding_mlp._get_activation",
        ) from None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityEmbeddingMLPConfig:
    """Configuration for EntityEmbeddingMLP.

    Parameters
    ----------
    n_levels:
        Number of distinct levels C of the categorical column. Level indices
        fed to the model must lie in [0, n_levels - 1].
    embed_dim:
        Embedding dimension D. Must be smaller than n_levels, otherwise the
        embedding is no compression of a one-hot encoding.
    n_numeric_features:
        Number P of auxiliary numeric predictors concatenated to the embedding.
        May be 0.
    hidden_units:
        Width H of the single hidden layer.
    output_dim:
        1 for a numeric outcome, number of classes for a categorical one.
    activation:
        Hidden-layer activation.
    """

    n_levels: int
    embed_dim: int
    n_numeric_features: int = 0
    hidden_units: int = 16
    output_dim: int = 1
    activation: str = "relu"

    def validate(self) -> None:
        """Raise ModelError if any config values are invalid."""
        location = "catencode.torch.models.embedding_mlp.EntityEmbeddingMLPConfig.validate"
        positive = {
            "n_levels": self.n_levels,
            "embed_dim": self.embed_dim,
            "hidden_units": self.hidden_units,
            "output_dim": self.output_dim,
        }
        for field_name, value in positive.items():
            if value <= 0:
                raise ModelError(
                    f"{field_name} must be > 0, got {value}",
                    code="invalid_model_config",
                    context={"field": field_name, "value": value},
                    location=location,
                )

        if self.n_numeric_features < 0:
            raise ModelError(
                f"n_numeric_features must be >= 0, got {self.n_numeric_features}",
                code="invalid_model_config",
                context={"field": "n_numeric_features", "value": self.n_numeric_features},
                location=location,
            )

        if self.n_levels <= self.embed_dim:
            raise ModelError(
                "n_levels must exceed embed_dim.",
                code="invalid_model_config",
                context={"n_levels": self.n_levels, "embed_dim": self.embed_dim},
                location=location,
            )

        _get_activation(self.activation)

    @property
    def input_dim(self) -> int:
        """Width of the hidden layer's input: embedding + numeric predictors."""
        return self.embed_dim + self.n_numeric_features


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class EntityEmbeddingMLP(nn.Module):
    """Entity-embedding network for one categorical column.

        level index -> Embedding(C, D) -+
                                        +-> concat -> Linear(D+P, H) -> act -> Linear(H, K)
        numeric predictors (P) ---------+

    The forward pass returns raw outputs (logits for categorical outcomes);
    losses are applied by the training loop. After training, `embedding_matrix()`
    gives the learned (C, D) table.

    Forward API
    -----------
    Accepts either `forward((x_num, x_cat))`, as produced by
    EmbeddingTabularDataset batches, or `forward(x_num, x_cat)`. `x_num` may
    be None or have zero columns when there are no numeric predictors. `x_cat`
    has shape (B,) or (B, 1).
    """

    def __init__(self, config: EntityEmbeddingMLPConfig) -> None:
        super().__init__()

        config.validate()
        self.config = config

        self.embedding = nn.Embedding(config.n_levels, config.embed_dim)
        self.hidden = nn.Linear(config.input_dim, config.hidden_units)
        self.activation = _get_activation(config.activation)
        self.output_layer = nn.Linear(config.hidden_units, config.output_dim)

        logger.debug(
            "Initialized EntityEmbeddingMLP: C=%d, D=%d, P=%d, H=%d, K=%d, params=%d",
            config.n_levels,
            config.embed_dim,
            config.n_numeric_features,
            config.hidden_units,
            config.output_dim,
            self.count_parameters(),
        )

    def count_parameters(self, *, trainable_only: bool = True) -> int:
        """Return the number of parameters in the model."""
        params = (p for p in self.parameters() if (p.requires_grad or not trainable_only))
        return sum(p.numel() for p in params)

    def embedding_matrix(self) -> np.ndarray:
        """Copy of the learned embedding weights as a (C, D) float64 array."""
        return self.embedding.weight.detach().cpu().to(torch.float64).numpy().copy()

    def _parse_inputs(
        self,
        inputs: Union[Tensor, Tuple[Optional[Tensor], Tensor]],
        x_cat: Optional[Tensor],
    ) -> Tuple[Optional[Tensor], Tensor]:
        location = "catencode.torch.models.embedding_mlp.EntityEmbeddingMLP._parse_inputs"
        if isinstance(inputs, (list, tuple)):
            if len(inputs) != 2:
                raise ModelError(
                    "EntityEmbeddingMLP expected a tuple/list (x_num, x_cat).",
                    code="invalid_input_structure",
                    context={"len_inputs": len(inputs)},
                    location=location,
                )
            x_num, x_cat = inputs
        else:
            x_num = inputs

        if x_cat is None:
            raise ModelError(
                "Level indices (x_cat) were not provided.",
                code="missing_categorical_inputs",
                location=location,
            )

        if x_cat.ndim == 2 and x_cat.shape[1] == 1:
            x_cat = x_cat[:, 0]
        if x_cat.ndim != 1:
            raise ModelError(
                "x_cat must have shape (batch_size,) or (batch_size, 1).",
                code="invalid_input_shape",
                context={"x_cat_shape": tuple(x_cat.shape)},
                location=location,
            )

        if x_num is not None and x_num.ndim != 2:
            raise ModelError(
                "x_num must have shape (batch_size, n_numeric_features).",
                code="invalid_input_shape",
                context={"x_num_shape": tuple(x_num.shape)},
                location=location,
            )

        return x_num, x_cat.long()

    def forward(  # type: ignore[override]
        self,
        inputs: Union[Tensor, Tuple[Optional[Tensor], Tensor]],
        x_cat: Optional[Tensor] = None,
    ) -> Tensor:
        """Return outputs of shape (batch_size, output_dim)."""
        x_num, level_idx = self._parse_inputs(inputs, x_cat)

        features = self.embedding(level_idx)
        if self.config.n_numeric_features > 0:
            if x_num is None or x_num.shape[1] != self.config.n_numeric_features:
                raise ModelError(
                    "x_num feature dimension does not match n_numeric_features.",
                    code="invalid_input_shape",
                    context={
                        "x_num_shape": None if x_num is None else tuple(x_num.shape),
                        "n_numeric_features": self.config.n_numeric_features,
                    },
                    location="catencode.torch.models.embedding_mlp.EntityEmbeddingMLP.forward",
                )
            features = torch.cat([features, x_num.to(features.dtype)], dim=1)

        return self.output_layer(self.activation(self.hidden(features)))
