"""Network architectures used by the embedding encoder."""

from __future__ import annotations

__all__: list[str] = []
