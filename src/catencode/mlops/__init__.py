"""
Optional MLflow tracking for encoder fits.

All helpers are no-ops unless `mlflow.enabled` is set in the AppConfig, so
the core library never requires mlflow to be installed.
"""

from __future__ import annotations

__all__: list[str] = []
