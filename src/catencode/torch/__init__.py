"""
PyTorch components of the embedding encoder.

- datasets: EmbeddingTabularDataset yielding ((x_num, x_cat), y) rows.
- models: EntityEmbeddingMLP, the network whose embedding becomes the table.
- training: epoch loops, early stopping and the training history.

Import from the subpackages directly:

    from catencode.torch.training.loops import fit, EarlyStopping
"""

from __future__ import annotations

__all__: list[str] = []
