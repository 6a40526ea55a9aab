from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import pandas as pd

from exercise_quality.utils.config import data_section

log = logging.getLogger(__name__)


DEFAULT_LABEL_COL = "classe"
DEFAULT_ID_COL = "problem_id"
# Leading row-number column; written by R/pandas without a header name
ROW_NUMBER_COL = "X"


def _rename_row_number_col(df: pd.DataFrame) -> pd.DataFrame:
    if df.columns.empty:
        return df
    first = str(df.columns[0])
    if first == "" or first.startswith("Unnamed: 0"):
        df = df.rename(columns={df.columns[0]: ROW_NUMBER_COL})
    return df


def load_table(path: Union[str, Path], *, label_col: Optional[str] = None) -> pd.DataFrame:
    """
    Reads one delimited-text table with a header row.

    Only the standard NA markers become missing here; formatting artifacts such
    as "#DIV/0!" are left as text and handled by the type normalizer.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing input table: {path}")

    try:
        df = pd.read_csv(path, low_memory=False)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Input table is empty: {path}") from e

    if df.empty:
        raise ValueError(f"Input table has a header but no rows: {path}")

    df = _rename_row_number_col(df)

    if label_col is not None and label_col not in df.columns:
        raise KeyError(
            f"Label column '{label_col}' not found in {path.name}. "
            f"Available columns (first 10): {list(df.columns)[:10]}"
        )

    log.info("Loaded %s: %d rows x %d columns", path.name, len(df), df.shape[1])
    return df


def load_observation_tables(cfg: Dict[str, Any]) -> Tuple[pd.DataFrame, pd.DataFrame, Dict[str, Any]]:
    """
    Loads the labeled training table and the unlabeled evaluation table.

    Returns (training, evaluation, meta).
    """
    ds = data_section(cfg)
    label_col = str(ds.get("label_column", DEFAULT_LABEL_COL))

    if not ds.get("training_csv") or not ds.get("evaluation_csv"):
        raise KeyError("Config keys data.training_csv and data.evaluation_csv are both required.")

    training_path = Path(ds["training_csv"])
    evaluation_path = Path(ds["evaluation_csv"])

    training = load_table(training_path, label_col=label_col)
    evaluation = load_table(evaluation_path)

    if label_col in evaluation.columns:
        log.warning(
            "Evaluation table %s carries the label column '%s'; it will be ignored.",
            evaluation_path.name,
            label_col,
        )

    n_missing_label = int(training[label_col].isna().sum())
    if n_missing_label:
        log.warning("Dropping %d training rows without a label.", n_missing_label)
        training = training.dropna(subset=[label_col]).reset_index(drop=True)
    training[label_col] = training[label_col].astype(str).str.strip()

    meta = {
        "training_csv": str(training_path),
        "evaluation_csv": str(evaluation_path),
        "n_rows_training": int(len(training)),
        "n_rows_evaluation": int(len(evaluation)),
        "n_columns": int(training.shape[1]),
        "label_counts": {str(k): int(v) for k, v in training[label_col].value_counts().sort_index().items()},
    }
    return training, evaluation, meta
