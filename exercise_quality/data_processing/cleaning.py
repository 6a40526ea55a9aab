from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

log = logging.getLogger(__name__)


DEFAULT_MISSING_THRESHOLD = 0.975

# Row id, subject, timestamps and window markers of the WLE tables
DEFAULT_METADATA_COLS = (
    "X",
    "user_name",
    "raw_timestamp_part_1",
    "raw_timestamp_part_2",
    "cvtd_timestamp",
    "new_window",
    "num_window",
)


@dataclass(frozen=True)
class FeatureSchema:
    """
    Cleaning decisions taken on the training partition and replayed on every
    other table.

    numeric_cols: columns coerced to numeric (everything but metadata/label)
    feature_cols: numeric columns kept by the missingness filter, training order
    """

    label_col: str
    metadata_cols: Tuple[str, ...]
    numeric_cols: Tuple[str, ...]
    feature_cols: Tuple[str, ...]
    threshold: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "label_col": self.label_col,
            "metadata_cols": list(self.metadata_cols),
            "numeric_cols": list(self.numeric_cols),
            "feature_cols": list(self.feature_cols),
            "threshold": self.threshold,
        }


def infer_numeric_cols(
    df: pd.DataFrame,
    *,
    label_col: str,
    metadata_cols: Sequence[str],
    extra_exclude: Iterable[str] = (),
) -> List[str]:
    skip = set(metadata_cols) | {label_col} | set(extra_exclude)
    return [c for c in df.columns if c not in skip]


def normalize_types(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """
    Returns a copy of `df` with every listed column coerced to numeric.

    Cells that do not parse (e.g. "#DIV/0!") become NaN; no error is raised.
    Columns not listed, or not present in `df`, are left untouched.
    Already-numeric columns pass through unchanged.
    """
    out = df.copy()
    n_coerced = 0
    for c in columns:
        if c not in out.columns:
            continue
        s = out[c]
        if pd.api.types.is_numeric_dtype(s):
            continue
        converted = pd.to_numeric(s, errors="coerce")
        n_coerced += int(converted.isna().sum() - s.isna().sum())
        out[c] = converted
    log.debug("Type normalization: %d non-numeric cells became missing", n_coerced)
    return out


def missingness_profile(df: pd.DataFrame, columns: Sequence[str]) -> pd.Series:
    """Fraction of missing cells per column, in the given column order."""
    if len(df) == 0:
        raise ValueError("Cannot compute missingness on an empty table.")
    profile = df.loc[:, list(columns)].isna().mean()
    profile.name = "missing_fraction"
    return profile


def select_by_missingness(profile: pd.Series, threshold: float = DEFAULT_MISSING_THRESHOLD) -> List[str]:
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"Missingness threshold must be in (0, 1], got {threshold}")
    return [str(c) for c, frac in profile.items() if frac < threshold]


def fit_feature_schema(
    train_df: pd.DataFrame,
    *,
    label_col: str,
    metadata_cols: Sequence[str] = DEFAULT_METADATA_COLS,
    threshold: float = DEFAULT_MISSING_THRESHOLD,
) -> Tuple[FeatureSchema, pd.Series]:
    """
    Decides the cleaning schema from the training partition only.

    Returns (schema, missingness profile of the numeric columns).
    """
    if label_col not in train_df.columns:
        raise KeyError(f"Training table has no label column '{label_col}'.")

    present_meta = tuple(c for c in metadata_cols if c in train_df.columns)
    numeric_cols = infer_numeric_cols(train_df, label_col=label_col, metadata_cols=present_meta)

    normalized = normalize_types(train_df, numeric_cols)
    profile = missingness_profile(normalized, numeric_cols)
    feature_cols = select_by_missingness(profile, threshold)

    if not feature_cols:
        raise RuntimeError(
            f"No feature column has a missing fraction below {threshold}. "
            "Check the input table or raise cleaning.missing_threshold."
        )

    log.info(
        "Missingness filter (threshold=%.3f): kept %d of %d numeric columns",
        threshold,
        len(feature_cols),
        len(numeric_cols),
    )
    schema = FeatureSchema(
        label_col=label_col,
        metadata_cols=present_meta,
        numeric_cols=tuple(numeric_cols),
        feature_cols=tuple(feature_cols),
        threshold=float(threshold),
    )
    return schema, profile


def apply_feature_schema(
    df: pd.DataFrame,
    schema: FeatureSchema,
    *,
    with_label: bool = True,
    keep_cols: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Replays the training-derived cleaning on any table.

    Result columns are exactly `schema.feature_cols` in training order, then
    the label (when `with_label`), then any `keep_cols` (e.g. an id column).
    A retained feature absent from `df` is a schema mismatch and aborts.
    """
    missing = [c for c in schema.feature_cols if c not in df.columns]
    if missing:
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} retained feature columns are absent "
            f"(example: {missing[:10]}). The table was not produced like the training data."
        )

    normalized = normalize_types(df, schema.numeric_cols)
    normalized = normalized.drop(columns=[c for c in schema.metadata_cols if c in normalized.columns])

    cols = list(schema.feature_cols)
    if with_label:
        if schema.label_col not in normalized.columns:
            raise KeyError(f"Table has no label column '{schema.label_col}'.")
        cols.append(schema.label_col)
    for c in keep_cols or ():
        if c in normalized.columns and c not in cols:
            cols.append(c)

    return normalized.loc[:, cols].copy()
