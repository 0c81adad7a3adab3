from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Sequence

import pandas as pd

Split = Literal["training", "validation"]


@dataclass(frozen=True)
class HistoryRecord:
    """Loss of one epoch on one data split."""

    epoch: int
    loss: float
    split: Split


@dataclass(frozen=True)
class TrainingHistory:
    """Ordered per-epoch losses of an embedding fit.

    Records are sorted by epoch, with the training record of an epoch
    preceding its validation record.
    """

    records: Sequence[HistoryRecord] = field(default_factory=tuple)

    @classmethod
    def from_epoch_summaries(cls, summaries: Sequence[Mapping[str, float]]) -> TrainingHistory:
        """Build a history from the per-epoch dicts returned by loops.fit."""
        records: List[HistoryRecord] = []
        for summary in summaries:
            epoch = int(summary["epoch"])
            records.append(HistoryRecord(epoch, float(summary["train_loss"]), "training"))
            if "val_loss" in summary:
                records.append(HistoryRecord(epoch, float(summary["val_loss"]), "validation"))
        return cls(records=tuple(records))

    def __len__(self) -> int:
        return len(self.records)

    @property
    def n_epochs(self) -> int:
        return len({r.epoch for r in self.records})

    def losses(self, split: Split = "training") -> List[float]:
        return [r.loss for r in self.records if r.split == split]

    def to_dict(self) -> Dict[str, Any]:
        """Dict-of-lists form: {"epoch": [...], "loss": [...], "type": [...]}."""
        return {
            "epoch": [r.epoch for r in self.records],
            "loss": [r.loss for r in self.records],
            "type": [r.split for r in self.records],
        }

    def tidy(self) -> pd.DataFrame:
        """Long-format frame with columns epoch, loss, type."""
        return pd.DataFrame(self.to_dict(), columns=["epoch", "loss", "type"])
