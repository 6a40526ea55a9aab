from __future__ import annotations

import logging
from typing import Dict, Optional

import pandas as pd
from sklearn.model_selection import train_test_split

log = logging.getLogger(__name__)


def _safe_stratify(df: pd.DataFrame, stratify_col: Optional[str]) -> Optional[pd.Series]:
    if not stratify_col or stratify_col not in df.columns:
        return None
    vc = df[stratify_col].value_counts(dropna=False)
    # Need at least 2 classes and each class at least 2 samples for stratify to be valid.
    if vc.shape[0] < 2:
        return None
    if vc.min() < 2:
        return None
    return df[stratify_col]


def split_train_validation(
    df: pd.DataFrame,
    train: float = 0.6,
    seed: int = 42,
    stratify_col: Optional[str] = None,
) -> Dict[str, pd.DataFrame]:
    """
    Seeded train/validation partition, stratified on `stratify_col` when possible.

    The two partitions are disjoint and together cover every row of `df`.
    """
    if df is None or df.empty:
        raise ValueError("split_train_validation received an empty dataframe.")
    if not 0.0 < train < 1.0:
        raise ValueError(f"train ratio must be in (0, 1), got {train}")

    n = len(df)
    if n < 2:
        raise ValueError(f"Need at least 2 rows to split, got {n}.")

    stratify = _safe_stratify(df, stratify_col)
    if stratify_col and stratify is None:
        log.warning("Stratification on '%s' not possible; falling back to a plain random split.", stratify_col)

    val_size = max(1, int(round((1.0 - train) * n)))
    val_size = min(val_size, n - 1)  # ensure train not empty

    try:
        df_train, df_val = train_test_split(
            df,
            test_size=val_size,
            random_state=seed,
            stratify=stratify,
        )
    except ValueError as e:
        # e.g. validation smaller than the number of classes
        log.warning("Stratified split failed (%s). Falling back to non-stratified split.", e)
        df_train, df_val = train_test_split(df, test_size=val_size, random_state=seed)

    log.info("Partitioned %d rows: train=%d validation=%d (seed=%d)", n, len(df_train), len(df_val), seed)
    return {
        "train": df_train.reset_index(drop=True),
        "validation": df_val.reset_index(drop=True),
    }
