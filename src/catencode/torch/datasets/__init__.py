"""Dataset definitions for PyTorch-based embedding training."""

from __future__ import annotations

__all__: list[str] = []
