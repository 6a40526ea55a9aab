from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from exercise_quality.data_processing.cleaning import FeatureSchema, apply_feature_schema
from exercise_quality.modeling.trainer import FittedModel

log = logging.getLogger(__name__)


PREDICTION_COL = "prediction"


def predict_evaluation_table(
    model: FittedModel,
    df_eval: pd.DataFrame,
    schema: FeatureSchema,
    *,
    id_col: Optional[str] = None,
) -> pd.DataFrame:
    """
    Replays the training cleaning on the evaluation table and predicts one
    label per row, preserving the evaluation-file row order.
    """
    keep = [id_col] if id_col and id_col in df_eval.columns else []
    cleaned = apply_feature_schema(df_eval, schema, with_label=False, keep_cols=keep)

    out = pd.DataFrame(index=cleaned.index)
    if keep:
        out[id_col] = cleaned[id_col].to_numpy()
    out[PREDICTION_COL] = model.predict(cleaned)

    log.info("Predicted %d evaluation rows with %s", len(out), model.name)
    return out.reset_index(drop=True)


def write_predictions(
    predictions: pd.DataFrame,
    out_dir: Union[str, Path],
    *,
    id_col: Optional[str] = None,
    per_row_files: bool = True,
) -> List[Path]:
    """
    Writes predictions.csv and, when `per_row_files`, one answer file per row
    (`problem_id_<id>.txt` containing only the predicted label).
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    csv_path = out_dir / "predictions.csv"
    predictions.to_csv(csv_path, index=False)
    written = [csv_path]

    if per_row_files:
        answers = out_dir / "answers"
        answers.mkdir(parents=True, exist_ok=True)
        if id_col and id_col in predictions.columns:
            ids = predictions[id_col].tolist()
        else:
            ids = list(range(1, len(predictions) + 1))
        for rid, label in zip(ids, predictions[PREDICTION_COL].tolist()):
            fp = answers / f"problem_id_{rid}.txt"
            fp.write_text(str(label), encoding="utf-8")
            written.append(fp)

    log.info("Wrote %d prediction files under %s", len(written), out_dir.as_posix())
    return written
