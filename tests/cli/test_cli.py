from __future__ import annotations

from pathlib import Path
from typing import Generator

import pandas as pd
import pytest
from typer.testing import CliRunner

from catencode.cli import app
from catencode.encoders.table import EncodingTable
from catencode.logging_config import configure_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    # The CLI binds its log handler to the runner's temporary stdout.
    yield
    configure_logging(env="dev", level="INFO", force=True)


@pytest.fixture
def numeric_csv(tmp_path: Path, numeric_frame: pd.DataFrame) -> Path:
    path = tmp_path / "data" / "houses.csv"
    path.parent.mkdir(parents=True, exist_ok=True)
    numeric_frame.to_csv(path, index=False)
    return path


def _fit(method: str, data: Path, column: str, outcome: str, output: Path, config: Path, *extra: str):
    return runner.invoke(
        app,
        [
            "fit",
            "--method",
            method,
            "--data",
            str(data),
            "--column",
            column,
            "--outcome",
            outcome,
            "--output",
            str(output),
            "--config",
            str(config),
            "--env",
            "dev",
            *extra,
        ],
    )


# ---------------------------------------------------------------------------
# Root CLI behaviour
# ---------------------------------------------------------------------------


def test_cli_root_help_shows_commands() -> None:
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0, result.output
    for command in ("fit", "apply", "tidy", "version"):
        assert command in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "catencode version:" in result.output


# ---------------------------------------------------------------------------
# fit / apply / tidy
# ---------------------------------------------------------------------------


def test_fit_apply_tidy_round_trip(tmp_path: Path, binary_csv: Path, config_path: Path) -> None:
    table_path = tmp_path / "tables" / "zip_code.yaml"

    fitted = _fit("glm", binary_csv, "zip_code", "churned", table_path, config_path)

    assert fitted.exit_code == 0, fitted.output
    assert "Wrote glm encoding of 'zip_code' (3 levels)" in fitted.output
    table = EncodingTable.load(table_path)
    assert table.method == "glm"
    assert table.levels == ("a", "b", "c")

    encoded_path = tmp_path / "encoded.csv"
    applied = runner.invoke(
        app,
        ["apply", "--table", str(table_path), "--data", str(binary_csv), "--output", str(encoded_path)],
    )

    assert applied.exit_code == 0, applied.output
    assert "Wrote 23 encoded rows" in applied.output
    encoded = pd.read_csv(encoded_path)
    assert list(encoded.columns) == ["zip_code", "churned"]
    assert encoded["zip_code"].dtype.kind == "f"

    tidied = runner.invoke(app, ["tidy", "--table", str(table_path)])

    assert tidied.exit_code == 0, tidied.output
    assert "level,value,terms,id" in tidied.output
    assert "..new" in tidied.output


def test_fit_embedding_with_predictor_and_history(
    tmp_path: Path,
    numeric_csv: Path,
    config_path: Path,
) -> None:
    table_path = tmp_path / "tables" / "region.yaml"
    history_path = tmp_path / "history.csv"

    result = _fit(
        "embedding",
        numeric_csv,
        "region",
        "price",
        table_path,
        config_path,
        "--predictor",
        "sqft",
        "--history",
        str(history_path),
    )

    assert result.exit_code == 0, result.output
    table = EncodingTable.load(table_path)
    assert table.value_columns == ("region_embed_1", "region_embed_2")
    history = pd.read_csv(history_path)
    assert list(history.columns) == ["epoch", "loss", "type"]
    assert history["epoch"].max() == 2


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------


def test_unknown_method_exits_with_error(tmp_path: Path, binary_csv: Path, config_path: Path) -> None:
    result = _fit("median", binary_csv, "zip_code", "churned", tmp_path / "t.yaml", config_path)

    assert result.exit_code == 1
    assert "unknown_method" in result.output


def test_predictor_with_likelihood_method_is_rejected(
    tmp_path: Path,
    binary_csv: Path,
    config_path: Path,
) -> None:
    result = _fit(
        "glm", binary_csv, "zip_code", "churned", tmp_path / "t.yaml", config_path, "-p", "x"
    )

    assert result.exit_code == 1
    assert "predictors_not_supported" in result.output


def test_missing_column_exits_with_error(tmp_path: Path, binary_csv: Path, config_path: Path) -> None:
    result = _fit("glm", binary_csv, "zip", "churned", tmp_path / "t.yaml", config_path)

    assert result.exit_code == 1
    assert "data_missing_columns" in result.output
    assert not (tmp_path / "t.yaml").exists()


def test_apply_with_missing_table_exits_with_error(tmp_path: Path, binary_csv: Path) -> None:
    result = runner.invoke(
        app,
        [
            "apply",
            "--table",
            str(tmp_path / "nope.yaml"),
            "--data",
            str(binary_csv),
            "--output",
            str(tmp_path / "out.csv"),
        ],
    )

    assert result.exit_code == 1
    assert "data_file_not_found" in result.output
