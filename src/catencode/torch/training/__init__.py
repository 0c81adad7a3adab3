"""
Training loops and utilities for the embedding network.

- train_one_epoch / evaluate: single pass over a DataLoader.
- fit: multi-epoch training with validation, early stopping, deadlines and
  optional MLflow metric logging.
- TrainingHistory: per-epoch losses with a tidy() frame.
"""

from __future__ import annotations

__all__: list[str] = []
