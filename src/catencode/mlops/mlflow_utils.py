"""Optional MLflow tracking for encoder fits.

All helpers are no-ops unless ``mlflow.enabled`` is set in the AppConfig, so
library code can call them unconditionally. ``mlflow`` itself is only
imported when tracking is on (install the ``mlops`` extra).
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

from catencode.config import AppConfig, get_config
from catencode.exceptions import PipelineError
from catencode.logging_config import get_logger

logger = get_logger(__name__)

_PARAM_TYPES = (str, int, float, bool, type(None))


def _import_mlflow() -> Any:
    try:
        import mlflow  # type: ignore
    except ImportError as exc:
        raise PipelineError(
            "MLflow tracking is enabled but mlflow is not installed; "
            "install catencode[mlops] or set mlflow.enabled to false.",
            code="mlflow_not_installed",
            cause=exc,
            location="catencode.mlops.mlflow_utils._import_mlflow",
        ) from exc
    return mlflow


def mlflow_is_enabled(cfg: Optional[AppConfig] = None) -> bool:
    """Whether tracking is switched on (falls back to get_config())."""
    return bool((cfg or get_config()).mlflow.enabled)


def _tracking_client(cfg: Optional[AppConfig], what: str) -> Any:
    """The mlflow module when tracking is on and a run is open, else None."""
    if not mlflow_is_enabled(cfg):
        return None
    mlflow = _import_mlflow()
    if mlflow.active_run() is not None:
        return mlflow
    logger.warning("Skipping MLflow %s: no active run (open one with mlflow_run()).", what)
    return None


def _flatten(mapping: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ("bayes.chains", 4) style pairs from nested mappings."""
    for key, value in mapping.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            yield from _flatten(value, dotted)
        else:
            yield dotted, value


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@contextmanager
def mlflow_run(
    cfg: Optional[AppConfig] = None,
    *,
    experiment_name: Optional[str] = None,
    run_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Iterator[Any]:
    """Open an MLflow run around a fit; yields the mlflow module, or None when disabled.

        with mlflow_run(cfg, run_name="bayes-zip_code"):
            log_params({"method": "bayes"}, cfg=cfg)
            table = encoder.fit(frame, "zip_code", "churned")
    """
    cfg = cfg or get_config()
    if not cfg.mlflow.enabled:
        yield None
        return

    mlflow = _import_mlflow()
    settings = cfg.mlflow
    if settings.tracking_uri:
        mlflow.set_tracking_uri(settings.tracking_uri)

    experiment = experiment_name or settings.experiment_name or cfg.experiment_name
    if experiment:
        mlflow.set_experiment(experiment)

    name = run_name or settings.run_name
    logger.info("MLflow run %r started in experiment %r", name, experiment)
    with mlflow.start_run(run_name=name):
        if tags:
            mlflow.set_tags(tags)
        yield mlflow
    logger.info("MLflow run %r finished", name)


# ---------------------------------------------------------------------------
# Params, metrics and artifacts
# ---------------------------------------------------------------------------


def log_params(
    params: Mapping[str, Any],
    *,
    prefix: Optional[str] = None,
    flatten: bool = False,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Record params on the active run.

    Nested mappings become dotted keys when `flatten` is set. Values that are
    not plain scalars are logged as their ``str()``.
    """
    mlflow = _tracking_client(cfg, "params")
    if mlflow is None:
        return

    pairs = _flatten(params) if flatten else params.items()
    cleaned = {
        f"{prefix or ''}{key}": value if isinstance(value, _PARAM_TYPES) else str(value)
        for key, value in pairs
    }
    if cleaned:
        mlflow.log_params(cleaned)


def log_metrics(
    metrics: Mapping[str, float],
    *,
    step: Optional[int] = None,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Record metrics (e.g. per-epoch losses) on the active run."""
    if not metrics:
        return
    mlflow = _tracking_client(cfg, "metrics")
    if mlflow is not None:
        mlflow.log_metrics(dict(metrics), step=step)


def log_artifact(
    path: Path | str,
    *,
    artifact_path: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Attach a file, typically a saved encoding table, to the active run."""
    mlflow = _tracking_client(cfg, "artifact")
    if mlflow is None:
        return

    source = Path(path).resolve()
    if not source.is_file():
        raise PipelineError(
            f"Cannot log missing artifact {source}",
            code="mlflow_artifact_missing",
            context={"path": str(source)},
            location="catencode.mlops.mlflow_utils.log_artifact",
        )
    mlflow.log_artifact(str(source), artifact_path=artifact_path)
