from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import torch
from torch import nn
from torch.utils.data import DataLoader

from catencode.config import AppConfig
from catencode.deadline import Deadline
from catencode.exceptions import TrainingError
from catencode.logging_config import get_logger
from catencode.mlops.mlflow_utils import log_metrics as mlflow_log_metrics
from catencode.mlops.mlflow_utils import mlflow_is_enabled

logger = get_logger(__name__)

LossFn = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]

_HERE = "catencode.torch.training.loops"


# ---------------------------------------------------------------------------
# Early stopping
# ---------------------------------------------------------------------------


@dataclass
class EarlyStopping:
    """Stop training once a validation metric stops improving.

    ``step()`` is fed each epoch's validation metrics. ``should_stop`` flips to
    True after `patience` consecutive epochs that fail to beat ``best_score``
    by more than `min_delta` (lower is better for mode "min", higher for "max").
    ``best_epoch`` is the 1-based epoch passed to the winning ``step()`` call.
    """

    monitor: str = "loss"
    mode: str = "min"
    patience: int = 5
    min_delta: float = 0.0

    best_score: Optional[float] = None
    best_epoch: Optional[int] = None
    num_bad_epochs: int = 0
    should_stop: bool = False

    def __post_init__(self) -> None:
        self.mode = self.mode.lower()
        if self.mode not in ("min", "max"):
            raise TrainingError(
                f"EarlyStopping mode must be 'min' or 'max', got {self.mode!r}.",
                code="early_stopping_bad_mode",
                context={"mode": self.mode},
                location=f"{_HERE}.EarlyStopping",
            )
        if self.patience < 1:
            raise TrainingError(
                f"EarlyStopping patience must be at least 1, got {self.patience}.",
                code="early_stopping_bad_patience",
                context={"patience": self.patience},
                location=f"{_HERE}.EarlyStopping",
            )

    def _beats_best(self, value: float) -> bool:
        if self.best_score is None:
            return True
        gain = self.best_score - value if self.mode == "min" else value - self.best_score
        return gain > self.min_delta

    def step(self, metrics: Mapping[str, float], *, epoch: Optional[int] = None) -> bool:
        """Record one epoch; True when it sets a new best."""
        try:
            value = float(metrics[self.monitor])
        except KeyError:
            raise TrainingError(
                f"Monitored metric {self.monitor!r} is missing.",
                code="early_stopping_missing_metric",
                context={"available_metrics": sorted(metrics)},
                location=f"{_HERE}.EarlyStopping.step",
            ) from None

        if self._beats_best(value):
            self.best_score, self.best_epoch, self.num_bad_epochs = value, epoch, 0
            logger.debug("New best %s=%.6f (epoch %s)", self.monitor, value, epoch)
            return True

        self.num_bad_epochs += 1
        if self.num_bad_epochs >= self.patience and not self.should_stop:
            self.should_stop = True
            logger.info("%s has not improved for %d epochs", self.monitor, self.patience)
        return False


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


def _to_device(obj: Any, device: torch.device) -> Any:
    """Move a tensor, or tensors nested in tuples/lists, to `device`."""
    if isinstance(obj, torch.Tensor):
        return obj.to(device)
    if isinstance(obj, (list, tuple)):
        return type(obj)(_to_device(item, device) for item in obj)
    return obj


def _rows_in(inputs: Any) -> int:
    """Number of rows in a batch: leading dim of its first tensor."""
    pending: List[Any] = [inputs]
    while pending:
        item = pending.pop(0)
        if isinstance(item, torch.Tensor) and item.ndim > 0:
            return int(item.shape[0])
        if isinstance(item, (list, tuple)):
            pending = list(item) + pending
    raise TrainingError(
        "Cannot tell the batch size: no tensor with a leading dimension in the inputs.",
        code="batch_size_infer_failed",
        context={"type": type(inputs).__name__},
        location=f"{_HERE}._rows_in",
    )


def _unpack(batch: Any, device: torch.device, location: str) -> Tuple[Any, torch.Tensor]:
    if not isinstance(batch, (list, tuple)) or len(batch) != 2:
        raise TrainingError(
            "DataLoader batches must be (inputs, targets) pairs.",
            code="batch_bad_structure",
            context={"type": type(batch).__name__},
            location=location,
        )
    inputs, targets = batch
    return _to_device(inputs, device), _to_device(targets, device)


# ---------------------------------------------------------------------------
# One pass over a loader
# ---------------------------------------------------------------------------


def train_one_epoch(
    model: nn.Module,
    dataloader: DataLoader,
    optimizer: torch.optim.Optimizer,
    loss_fn: LossFn,
    device: torch.device,
    *,
    max_grad_norm: Optional[float] = None,
    log_interval: Optional[int] = None,
    deadline: Optional[Deadline] = None,
) -> Dict[str, float]:
    """One optimisation pass; returns {"loss": row-weighted mean batch loss}.

    Gradients are clipped to `max_grad_norm` when given. `deadline` is
    checked before each batch, so a cancelled fit stops mid-epoch with
    DeadlineExceededError. A NaN/inf loss raises TrainingError
    ("non_finite_loss") before the optimizer step.
    """
    location = f"{_HERE}.train_one_epoch"
    model.train()
    total, rows = 0.0, 0

    for batch_no, batch in enumerate(dataloader, start=1):
        if deadline is not None:
            deadline.check(location)

        inputs, targets = _unpack(batch, device, location)
        optimizer.zero_grad(set_to_none=True)
        loss = loss_fn(model(inputs), targets)
        value = float(loss.detach().cpu().item())

        if not torch.isfinite(loss):
            raise TrainingError(
                f"Loss became {value} at batch {batch_no}.",
                code="non_finite_loss",
                context={"loss": value, "batch": batch_no},
                location=location,
            )

        loss.backward()
        if max_grad_norm is not None:
            nn.utils.clip_grad_norm_(model.parameters(), max_grad_norm)
        optimizer.step()

        n = _rows_in(inputs)
        total += value * n
        rows += n
        if log_interval and batch_no % log_interval == 0:
            logger.info("batch %d loss=%.6f", batch_no, value)

    if rows == 0:
        raise TrainingError(
            "Training loader produced no rows.",
            code="no_samples_seen_train",
            location=location,
        )
    return {"loss": total / rows}


@torch.no_grad()
def evaluate(
    model: nn.Module,
    dataloader: DataLoader,
    loss_fn: LossFn,
    device: torch.device,
) -> Dict[str, float]:
    """{"loss": row-weighted mean loss} of `model` on `dataloader`, without gradients."""
    location = f"{_HERE}.evaluate"
    model.eval()
    total, rows = 0.0, 0

    for batch in dataloader:
        inputs, targets = _unpack(batch, device, location)
        n = _rows_in(inputs)
        total += float(loss_fn(model(inputs), targets).cpu().item()) * n
        rows += n

    if rows == 0:
        raise TrainingError(
            "Evaluation loader produced no rows.",
            code="no_samples_seen_eval",
            location=location,
        )
    return {"loss": total / rows}


# ---------------------------------------------------------------------------
# Multi-epoch fit
# ---------------------------------------------------------------------------


def fit(
    model: nn.Module,
    train_loader: DataLoader,
    val_loader: Optional[DataLoader],
    optimizer: torch.optim.Optimizer,
    loss_fn: LossFn,
    device: torch.device,
    *,
    num_epochs: int,
    max_grad_norm: Optional[float] = None,
    log_interval: Optional[int] = None,
    early_stopping: Optional[EarlyStopping] = None,
    restore_best: bool = True,
    deadline: Optional[Deadline] = None,
    use_mlflow: bool = False,
    app_config: Optional[AppConfig] = None,
) -> Dict[str, Any]:
    """Train for up to `num_epochs`, validating after each epoch when possible.

    Parameters
    ----------
    val_loader:
        Held-out rows. Without one, `early_stopping` is ignored.
    early_stopping:
        Watches the validation metrics; with `restore_best` the weights of
        the best epoch are loaded back before returning.
    deadline:
        Checked at every epoch and every batch.
    use_mlflow, app_config:
        Log each epoch's losses to the active MLflow run when tracking is
        enabled in `app_config`.

    Returns
    -------
    dict
        "history": one dict per epoch with "epoch" (float), "train_loss" and,
        with validation, "val_loss"; "last_epoch": the final entry;
        "stopped_early": bool; "best_epoch": entry of the best epoch, present
        only when early stopping was active.
    """
    location = f"{_HERE}.fit"
    if num_epochs < 1:
        raise TrainingError(
            f"num_epochs must be at least 1, got {num_epochs}.",
            code="fit_bad_num_epochs",
            context={"num_epochs": num_epochs},
            location=location,
        )

    model.to(device)
    stopper = early_stopping if val_loader is not None else None
    track = use_mlflow and mlflow_is_enabled(app_config)

    history: List[Dict[str, float]] = []
    best_weights: Optional[Dict[str, torch.Tensor]] = None
    stopped_early = False

    for epoch in range(1, num_epochs + 1):
        if deadline is not None:
            deadline.check(location)

        train = train_one_epoch(
            model,
            train_loader,
            optimizer,
            loss_fn,
            device,
            max_grad_norm=max_grad_norm,
            log_interval=log_interval,
            deadline=deadline,
        )
        row: Dict[str, float] = {"train_loss": train["loss"]}

        if val_loader is not None:
            val = evaluate(model, val_loader, loss_fn, device)
            row["val_loss"] = val["loss"]
            if stopper is not None and stopper.step(val, epoch=epoch) and restore_best:
                best_weights = copy.deepcopy(model.state_dict())

        logger.info(
            "Epoch %d/%d %s",
            epoch,
            num_epochs,
            " ".join(f"{key}={value:.6f}" for key, value in row.items()),
        )
        row["epoch"] = float(epoch)
        history.append(row)
        if track:
            mlflow_log_metrics(row, step=epoch, cfg=app_config)

        if stopper is not None and stopper.should_stop:
            stopped_early = True
            logger.info(
                "Stopping after epoch %d; best val_%s=%.6f at epoch %s",
                epoch,
                stopper.monitor,
                stopper.best_score,
                stopper.best_epoch,
            )
            break

    summary: Dict[str, Any] = {
        "history": history,
        "last_epoch": history[-1],
        "stopped_early": stopped_early,
    }
    if stopper is not None and stopper.best_epoch is not None:
        summary["best_epoch"] = history[stopper.best_epoch - 1]
        if best_weights is not None:
            model.load_state_dict(best_weights)
            logger.info("Restored weights from epoch %d", stopper.best_epoch)

    return summary
