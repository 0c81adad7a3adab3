"""Frame validation and dataset I/O."""

from catencode.data.frames import (
    NEW_LEVEL,
    EncoderInputs,
    infer_outcome_kind,
    prepare_inputs,
    summarize_levels,
)
from catencode.data.loading import load_dataframe, load_dataset, save_dataframe

__all__ = [
    "NEW_LEVEL",
    "EncoderInputs",
    "infer_outcome_kind",
    "prepare_inputs",
    "summarize_levels",
    "load_dataframe",
    "load_dataset",
    "save_dataframe",
]
