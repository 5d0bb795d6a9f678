"""Checkpoint management for Bayesian optimization."""

import os
import pickle
from pathlib import Path

import pandas as pd

from .exceptions import CheckpointWriteError


def save_checkpoint(score_table: pd.DataFrame, checkpoint_file: str | Path) -> None:
    """Overwrite the checkpoint with the full score table.

    The table is written next to the target first and then moved into place,
    so a failed write never leaves a truncated checkpoint behind. Files ending
    in ``.csv`` are written as CSV, anything else as a pandas pickle.

    Args:
        score_table: Score table with Iteration, parameter, Elapsed and Score columns
        checkpoint_file: Destination path
    """
    checkpoint_file = Path(checkpoint_file)
    tmp_file = checkpoint_file.with_name(checkpoint_file.name + ".tmp")

    try:
        if checkpoint_file.suffix == ".csv":
            score_table.to_csv(tmp_file, index=False)
        else:
            score_table.to_pickle(tmp_file)
        os.replace(tmp_file, checkpoint_file)
    except (OSError, pickle.PicklingError, TypeError, AttributeError) as exc:
        # Unpicklable extra fields surface as TypeError or AttributeError.
        tmp_file.unlink(missing_ok=True)
        raise CheckpointWriteError(
            f"Failed to save intermediary results to {checkpoint_file}: {exc}"
        ) from exc


def load_checkpoint(checkpoint_file: str | Path) -> pd.DataFrame | None:
    """Load a score table saved by :func:`save_checkpoint`.

    Args:
        checkpoint_file: Path of the checkpoint

    Returns:
        Score table, or None if the file does not exist
    """
    checkpoint_file = Path(checkpoint_file)

    if not checkpoint_file.exists():
        return None
    if checkpoint_file.suffix == ".csv":
        return pd.read_csv(checkpoint_file)
    return pd.read_pickle(checkpoint_file)
