from __future__ import annotations

import time
from typing import Any, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import torch
from sklearn.model_selection import train_test_split
from torch import nn
from torch.utils.data import DataLoader, Subset

from catencode.config import AppConfig, EmbeddingConfig, TrainConfig
from catencode.data.frames import EncoderInputs, prepare_inputs
from catencode.deadline import Deadline
from catencode.encoders.base import BaseEncoder
from catencode.encoders.table import EncodingTable, embedding_columns
from catencode.exceptions import InsufficientDataError, TrainingError
from catencode.logging_config import get_logger
from catencode.torch.datasets.tabular import EmbeddingTabularDataset
from catencode.torch.models.embedding_mlp import EntityEmbeddingMLP, EntityEmbeddingMLPConfig
from catencode.torch.training.history import TrainingHistory
from catencode.torch.training.loops import EarlyStopping, fit as fit_loop

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_device(name: str) -> torch.device:
    """Map 'auto' to cuda when available, otherwise use the name as given."""
    if name == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    try:
        return torch.device(name)
    except RuntimeError as exc:
        raise TrainingError.from_exception(
            exc,
            message=f"Invalid device: {name!r}",
            code="invalid_device",
            location="catencode.encoders.embedding.resolve_device",
        ) from exc


def build_optimizer(model: nn.Module, train_config: TrainConfig) -> torch.optim.Optimizer:
    params = model.parameters()
    lr = train_config.learning_rate
    wd = train_config.weight_decay
    if train_config.optimizer == "adamw":
        return torch.optim.AdamW(params, lr=lr, weight_decay=wd)
    if train_config.optimizer == "sgd":
        return torch.optim.SGD(params, lr=lr, weight_decay=wd)
    return torch.optim.Adam(params, lr=lr, weight_decay=wd)


def _split_indices(
    n_rows: int,
    validation_split: float,
    seed: Optional[int],
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    indices = np.arange(n_rows)
    if validation_split <= 0.0:
        return indices, None
    train_idx, val_idx = train_test_split(
        indices,
        test_size=validation_split,
        random_state=seed,
        shuffle=True,
    )
    return np.sort(train_idx), np.sort(val_idx)


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------


class EmbeddingEncoder(BaseEncoder):
    """Entity-embedding encoder.

    A small supervised network (see EntityEmbeddingMLP) is trained to predict
    the outcome from the categorical column and optional numeric predictors.
    The learned (C, D) embedding matrix becomes the encoding table, with
    value columns `<column>_embed_1..D`.

    Numeric outcomes are fitted with MSE, binary and multi-class outcomes
    with cross-entropy. With `train.seed` set, weight init, the validation
    split and batch order are seeded locally, so repeated fits produce the
    same table without touching the global torch RNG.

        encoder = EmbeddingEncoder(EmbeddingConfig(embed_dim=3))
        table, history = encoder.fit(train, "zip_code", "price", ["sqft"])
    """

    method = "embedding"

    def __init__(
        self,
        embedding_config: Optional[EmbeddingConfig] = None,
        *,
        app_config: Optional[AppConfig] = None,
    ) -> None:
        super().__init__()
        self.embedding_config = embedding_config or EmbeddingConfig()
        self.app_config = app_config
        self.history_: Optional[TrainingHistory] = None
        self.outcome_kind_: Optional[str] = None
        self.classes_: Tuple[str, ...] = ()

    def fit(
        self,
        frame: pd.DataFrame,
        categorical_column: str,
        outcome_column: str,
        predictor_columns: Sequence[str] = (),
        *,
        train_config: Optional[TrainConfig] = None,
        deadline: Optional[Deadline] = None,
    ) -> Tuple[EncodingTable, TrainingHistory]:
        """Train the network and return (table, history).

        Raises
        ------
        InsufficientDataError
            Empty frame, fewer than two levels, or no more levels than
            `embed_dim`.
        OutcomeTypeError
            Missing values in, or unsupported type of, the outcome column.
        DataError
            Missing, non-numeric or non-finite predictor columns.
        TrainingError
            Non-finite loss during training.
        DeadlineExceededError
            The deadline passed or was cancelled during training.
        """
        cfg = self.embedding_config
        train_cfg = train_config or cfg.train
        location = "catencode.encoders.embedding.EmbeddingEncoder.fit"

        inputs = prepare_inputs(
            frame,
            categorical_column,
            outcome_column,
            predictor_columns=predictor_columns,
            allowed_kinds=("numeric", "binary", "multiclass"),
            location=location,
        )
        if inputs.n_levels <= cfg.embed_dim:
            raise InsufficientDataError(
                f"Need more levels than embed_dim ({cfg.embed_dim}), found {inputs.n_levels}.",
                context={
                    "column": categorical_column,
                    "n_levels": inputs.n_levels,
                    "embed_dim": cfg.embed_dim,
                },
                location=location,
            )

        if deadline is None:
            deadline = Deadline.from_timeout(train_cfg.timeout_seconds)

        logger.info(
            "Fitting embedding encoder: column=%s, outcome=%s (%s), n_rows=%d, "
            "n_levels=%d, embed_dim=%d, predictors=%s",
            categorical_column,
            outcome_column,
            inputs.kind,
            inputs.n_rows,
            inputs.n_levels,
            cfg.embed_dim,
            list(inputs.predictor_names),
        )
        started = time.perf_counter()

        if train_cfg.seed is None:
            matrix, summary = self._train(inputs, train_cfg, deadline)
        else:
            with torch.random.fork_rng(devices=[]):
                torch.manual_seed(train_cfg.seed)
                matrix, summary = self._train(inputs, train_cfg, deadline)

        if cfg.fallback == "mean":
            fallback = matrix.mean(axis=0)
        else:
            fallback = np.zeros(cfg.embed_dim, dtype=np.float64)

        table = EncodingTable(
            terms=categorical_column,
            method=self.method,
            value_columns=embedding_columns(categorical_column, cfg.embed_dim),
            levels=inputs.levels,
            values=matrix,
            fallback=fallback,
            id="embed",
        )
        history = TrainingHistory.from_epoch_summaries(summary["history"])

        self._table = table
        self.history_ = history
        self.outcome_kind_ = inputs.kind
        self.classes_ = inputs.classes

        logger.info(
            "Fitted embedding encoder for %s in %.2fs (%d epoch(s), final train loss=%.6f)",
            categorical_column,
            time.perf_counter() - started,
            history.n_epochs,
            summary["last_epoch"]["train_loss"],
        )
        return table, history

    def _train(
        self,
        inputs: EncoderInputs,
        train_cfg: TrainConfig,
        deadline: Optional[Deadline],
    ) -> Tuple[np.ndarray, dict[str, Any]]:
        cfg = self.embedding_config
        classification = inputs.kind != "numeric"
        output_dim = max(2, len(inputs.classes)) if classification else 1

        model = EntityEmbeddingMLP(
            EntityEmbeddingMLPConfig(
                n_levels=inputs.n_levels,
                embed_dim=cfg.embed_dim,
                n_numeric_features=len(inputs.predictor_names),
                hidden_units=cfg.hidden_units,
                output_dim=output_dim,
            )
        )

        dataset = EmbeddingTabularDataset(
            inputs.predictors,
            inputs.codes,
            inputs.y.astype(np.int64) if classification else inputs.y,
            n_levels=inputs.n_levels,
            target_kind="classification" if classification else "regression",
        )
        train_idx, val_idx = _split_indices(
            inputs.n_rows, train_cfg.validation_split, train_cfg.seed
        )

        generator = None
        if train_cfg.seed is not None:
            generator = torch.Generator().manual_seed(train_cfg.seed)

        train_loader = DataLoader(
            Subset(dataset, train_idx.tolist()),
            batch_size=train_cfg.batch_size,
            shuffle=True,
            generator=generator,
        )
        val_loader = None
        if val_idx is not None and len(val_idx) > 0:
            val_loader = DataLoader(
                Subset(dataset, val_idx.tolist()),
                batch_size=train_cfg.batch_size,
                shuffle=False,
            )

        early_stopping = None
        if train_cfg.early_stopping_patience is not None and val_loader is not None:
            early_stopping = EarlyStopping(
                monitor="loss", mode="min", patience=train_cfg.early_stopping_patience
            )

        loss_fn: nn.Module = nn.CrossEntropyLoss() if classification else nn.MSELoss()
        summary = fit_loop(
            model,
            train_loader,
            val_loader,
            build_optimizer(model, train_cfg),
            loss_fn,
            resolve_device(train_cfg.device),
            num_epochs=train_cfg.epochs,
            max_grad_norm=train_cfg.max_grad_norm,
            log_interval=train_cfg.log_interval,
            early_stopping=early_stopping,
            deadline=deadline,
            use_mlflow=self.app_config is not None,
            app_config=self.app_config,
        )
        return model.embedding_matrix(), summary
