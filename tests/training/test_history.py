from __future__ import annotations

import pytest

from catencode.torch.training.history import HistoryRecord, TrainingHistory


@pytest.fixture
def summaries() -> list[dict]:
    return [
        {"epoch": 1.0, "train_loss": 2.0, "val_loss": 2.5},
        {"epoch": 2.0, "train_loss": 1.0, "val_loss": 1.8},
    ]


def test_from_epoch_summaries_orders_training_before_validation(summaries) -> None:
    history = TrainingHistory.from_epoch_summaries(summaries)

    assert list(history.records) == [
        HistoryRecord(1, 2.0, "training"),
        HistoryRecord(1, 2.5, "validation"),
        HistoryRecord(2, 1.0, "training"),
        HistoryRecord(2, 1.8, "validation"),
    ]
    assert len(history) == 4
    assert history.n_epochs == 2
    assert history.losses() == [2.0, 1.0]
    assert history.losses("validation") == [2.5, 1.8]


def test_tidy_is_long_format(summaries) -> None:
    report = TrainingHistory.from_epoch_summaries(summaries).tidy()

    assert list(report.columns) == ["epoch", "loss", "type"]
    assert report["type"].tolist() == ["training", "validation"] * 2
    assert report["epoch"].tolist() == [1, 1, 2, 2]


def test_training_only_history() -> None:
    history = TrainingHistory.from_epoch_summaries([{"epoch": 1.0, "train_loss": 0.3}])

    assert history.losses("validation") == []
    assert history.to_dict() == {"epoch": [1], "loss": [0.3], "type": ["training"]}


def test_empty_history() -> None:
    history = TrainingHistory()

    assert len(history) == 0
    assert history.n_epochs == 0
    assert history.tidy().shape == (0, 3)
