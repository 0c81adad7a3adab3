"""
Command-line interface for catencode.

Fit an encoding table from a data file, apply a saved table to new data, or
print a table report:

    catencode fit --method mixed --data train.csv --column zip_code \\
        --outcome churned --output tables/zip_code.yaml
    catencode apply --table tables/zip_code.yaml --data test.csv --output test_encoded.csv
    catencode tidy --table tables/zip_code.yaml

The console script entry point in pyproject.toml is:

    [project.scripts]
    catencode = "catencode.cli:app"
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .config import AppConfig, load_config
from .data.loading import load_dataframe, save_dataframe
from .encoders import METHODS, make_encoder
from .encoders.table import EncodingTable
from .exceptions import AppError, ConfigError
from .logging_config import configure_logging_from_app_config, get_logger
from .mlops.mlflow_utils import log_artifact, log_params, mlflow_run

app = typer.Typer(
    help="Fit and apply categorical encodings (likelihood and entity embeddings).",
    no_args_is_help=True,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fail(exc: AppError) -> None:
    """Report an application error and exit with status 1."""
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _load_app_config(config: Optional[Path], env: Optional[str]) -> AppConfig:
    cfg = load_config(config, env=env)
    configure_logging_from_app_config(cfg, force=True)
    return cfg


def _encoder_params(method: str, cfg: AppConfig) -> dict:
    sections = {
        "glm": {"likelihood": cfg.likelihood},
        "bayes": {"likelihood": cfg.likelihood, "bayes": cfg.bayes},
        "mixed": {"likelihood": cfg.likelihood, "mixed": cfg.mixed},
        "embedding": {"embedding": cfg.embedding},
    }[method]
    return {name: section.model_dump(mode="json") for name, section in sections.items()}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("version")
def version() -> None:
    """Print the installed catencode version."""
    typer.echo(f"catencode version: {__version__}")


@app.command("fit")
def fit(
    method: str = typer.Option(
        ...,
        "--method",
        "-m",
        case_sensitive=False,
        help=f"Encoding method: {', '.join(METHODS)}.",
    ),
    data: Path = typer.Option(..., "--data", "-d", help="Training data (csv/parquet/feather)."),
    column: str = typer.Option(..., "--column", help="Categorical column to encode."),
    outcome: str = typer.Option(..., "--outcome", help="Outcome column."),
    predictor: Optional[List[str]] = typer.Option(
        None,
        "--predictor",
        "-p",
        help="Numeric predictor column for the embedding network (repeatable).",
    ),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the table (YAML)."),
    history: Optional[Path] = typer.Option(
        None,
        "--history",
        help="Optional CSV path for the embedding training history.",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        dir_okay=False,
        help="YAML config file. Defaults to CATENCODE_CONFIG_PATH or ./config.yaml.",
    ),
    env: Optional[str] = typer.Option(
        None,
        "--env",
        help="Config environment/profile name (e.g. 'dev', 'prod').",
    ),
) -> None:
    """Fit an encoder on a data file and save its encoding table."""
    method = method.lower()
    predictors = list(predictor or [])
    try:
        if method not in METHODS:
            raise ConfigError(
                f"Unknown encoding method: {method!r}",
                code="unknown_method",
                context={"method": method, "supported": list(METHODS)},
                location="catencode.cli.fit",
            )
        if predictors and method != "embedding":
            raise ConfigError(
                "--predictor is only used by the embedding method.",
                code="predictors_not_supported",
                context={"method": method},
                location="catencode.cli.fit",
            )

        cfg = _load_app_config(config, env)
        frame = load_dataframe(data, required_columns=[column, outcome, *predictors])
        encoder = make_encoder(method, cfg)

        with mlflow_run(cfg, run_name=f"{method}-{column}"):
            log_params(
                {"method": method, "column": column, "outcome": outcome, "n_rows": len(frame)},
                cfg=cfg,
            )
            log_params(_encoder_params(method, cfg), flatten=True, cfg=cfg)

            if method == "embedding":
                table, train_history = encoder.fit(frame, column, outcome, predictors)
                if history is not None:
                    save_dataframe(train_history.tidy(), history)
            else:
                table = encoder.fit(frame, column, outcome)

            table.save(output)
            log_artifact(output, cfg=cfg)
    except AppError as exc:
        _fail(exc)

    typer.echo(f"Wrote {method} encoding of {column!r} ({table.n_levels} levels) to {output}")


@app.command("apply")
def apply(
    table: Path = typer.Option(..., "--table", "-t", help="Encoding table written by `fit`."),
    data: Path = typer.Option(..., "--data", "-d", help="Data file to encode."),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the encoded data."),
    column: Optional[str] = typer.Option(
        None,
        "--column",
        help="Column to encode. Defaults to the column the table was fitted on.",
    ),
) -> None:
    """Replace a categorical column in a data file by its encoding."""
    try:
        encoding = EncodingTable.load(table)
        frame = load_dataframe(data)
        encoded = encoding.transform(frame, column)
        save_dataframe(encoded, output)
    except AppError as exc:
        _fail(exc)

    typer.echo(f"Wrote {len(encoded)} encoded rows to {output}")


@app.command("tidy")
def tidy(
    table: Path = typer.Option(..., "--table", "-t", help="Encoding table written by `fit`."),
) -> None:
    """Print an encoding table report (one row per level plus '..new') as CSV."""
    try:
        encoding = EncodingTable.load(table)
    except AppError as exc:
        _fail(exc)

    typer.echo(encoding.tidy().to_csv(index=False), nl=False)


# ---------------------------------------------------------------------------
# Entry point for `python -m catencode.cli`
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    app()
