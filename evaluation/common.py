from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from exercise_quality.data_processing.cleaning import (
    DEFAULT_METADATA_COLS,
    DEFAULT_MISSING_THRESHOLD,
    apply_feature_schema,
    fit_feature_schema,
)
from exercise_quality.data_processing.loading import DEFAULT_ID_COL, DEFAULT_LABEL_COL, load_observation_tables
from exercise_quality.data_processing.splits import split_train_validation
from exercise_quality.modeling.metrics import (
    ConfusionReport,
    accuracy,
    confusion_report,
    cross_validated_accuracy,
    score_models,
)
from exercise_quality.modeling.stacking import STACKED_MODEL, StackedEnsemble
from exercise_quality.modeling.trainer import (
    FINAL_MODEL,
    ParallelConfig,
    build_model_specs,
    make_x,
    resolve_reduced_features,
    train_models,
)
from exercise_quality.prediction.predictor import predict_evaluation_table, write_predictions
from exercise_quality.utils.config import data_section
from exercise_quality.utils.seed import resolve_seed
from exercise_quality.utils.timer import timed

log = logging.getLogger(__name__)


@dataclass
class AnalysisArtifacts:
    out_dir: str
    summary_path: str
    missingness_path: str
    feature_cols_path: str
    confusion_csv: str
    per_class_csv: str
    predictions_csv: str
    accuracies: Dict[str, float] = field(default_factory=dict)
    predictions: Optional[pd.DataFrame] = None


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def save_json(path: str | Path, obj: Any) -> None:
    path = Path(path)
    ensure_dir(path.parent)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")


def save_confusion_csv(report: ConfusionReport, *, out_csv: str | Path, per_class_csv: str | Path) -> None:
    out_csv = Path(out_csv)
    ensure_dir(out_csv.parent)
    report.matrix.to_csv(out_csv, index=True)
    report.per_class.to_csv(per_class_csv, index=True)


def run_analysis(cfg: Dict[str, Any], out_dir: str | Path, *, per_row_files: bool = True) -> AnalysisArtifacts:
    """
    Load → split → clean → train → stack → evaluate → predict, then write the
    run's tables and summary under `out_dir`.
    """
    out_dir = Path(out_dir)
    ensure_dir(out_dir)

    ds = data_section(cfg)
    label_col = str(ds.get("label_column", DEFAULT_LABEL_COL))
    id_col = str(ds.get("id_column", DEFAULT_ID_COL))
    metadata_cols = tuple(ds.get("metadata_columns") or DEFAULT_METADATA_COLS)
    threshold = float((cfg.get("cleaning", {}) or {}).get("missing_threshold", DEFAULT_MISSING_THRESHOLD))
    train_ratio = float((cfg.get("split", {}) or {}).get("train_ratio", 0.6))
    cv_folds = int((cfg.get("evaluation", {}) or {}).get("cv_folds", 0))

    seed = resolve_seed(cfg)
    parallel = ParallelConfig.from_cfg(cfg)
    timings: Dict[str, float] = {}

    with timed("load", timings):
        training, evaluation, load_meta = load_observation_tables(cfg)

    with timed("split", timings):
        splits = split_train_validation(training, train=train_ratio, seed=seed, stratify_col=label_col)

    with timed("clean", timings):
        schema, profile = fit_feature_schema(
            splits["train"],
            label_col=label_col,
            metadata_cols=metadata_cols,
            threshold=threshold,
        )
        df_train = apply_feature_schema(splits["train"], schema)
        df_val = apply_feature_schema(splits["validation"], schema)

    feature_cols = list(schema.feature_cols)
    reduced_cols = resolve_reduced_features(cfg, feature_cols)

    with timed("train", timings):
        specs = build_model_specs(cfg, seed)
        models = train_models(
            specs,
            df_train,
            feature_cols=feature_cols,
            reduced_cols=reduced_cols,
            label_col=label_col,
            parallel=parallel,
        )

    with timed("stack", timings):
        stacked = StackedEnsemble.from_cfg(cfg, seed, parallel).fit(models, df_train, df_train[label_col])

    with timed("evaluate", timings):
        accuracies = score_models(models, df_val, label_col=label_col)
        y_val = df_val[label_col].astype(str).to_numpy()
        accuracies[STACKED_MODEL] = accuracy(y_val, stacked.predict(df_val))
        log.info("Validation accuracy %-12s %.4f", STACKED_MODEL, accuracies[STACKED_MODEL])

        final = models[FINAL_MODEL]
        labels = sorted(df_train[label_col].astype(str).unique())
        report = confusion_report(y_val, final.predict(df_val), labels=labels)

        cv = None
        if cv_folds > 1:
            final_spec = next(s for s in specs if s.name == FINAL_MODEL)
            cv = cross_validated_accuracy(
                final_spec.factory(),
                make_x(df_train, feature_cols),
                df_train[label_col].astype(str).to_numpy(),
                folds=cv_folds,
                seed=seed,
                parallel=parallel,
            )

    with timed("predict", timings):
        predictions = predict_evaluation_table(final, evaluation, schema, id_col=id_col)
        write_predictions(predictions, out_dir, id_col=id_col, per_row_files=per_row_files)

    missingness_path = out_dir / "missingness.csv"
    profile.rename_axis("column").to_frame().to_csv(missingness_path, index=True)

    feature_cols_path = out_dir / "feature_cols.json"
    save_json(feature_cols_path, schema.to_dict())

    confusion_csv = out_dir / "confusion_validation.csv"
    per_class_csv = out_dir / "per_class_validation.csv"
    save_confusion_csv(report, out_csv=confusion_csv, per_class_csv=per_class_csv)

    summary = {
        "seed": seed,
        "config": cfg.get("_meta", {}).get("config_path"),
        "data": load_meta,
        "n_train": int(len(df_train)),
        "n_validation": int(len(df_val)),
        "n_evaluation": int(len(predictions)),
        "missing_threshold": threshold,
        "n_numeric_columns": len(schema.numeric_cols),
        "n_features": len(feature_cols),
        "reduced_features": list(reduced_cols),
        "pca_components": int(models["rf_pca"].estimator.named_steps["pca"].n_components_),
        "stacking_inputs": list(stacked.input_columns),
        "validation_accuracy": accuracies,
        "final_model": FINAL_MODEL,
        "final_model_report": report.summary(),
        "expected_out_of_sample_error": float(1.0 - report.accuracy),
        "cross_validation": cv,
        "prediction_counts": {str(k): int(v) for k, v in predictions["prediction"].value_counts().sort_index().items()},
        "fit_seconds": {n: m.fit_seconds for n, m in models.items()},
        "timings_sec": timings,
    }
    summary_path = out_dir / "summary.json"
    save_json(summary_path, _jsonable(summary))

    log.info("Analysis complete; artifacts under %s", out_dir.as_posix())
    return AnalysisArtifacts(
        out_dir=str(out_dir),
        summary_path=str(summary_path),
        missingness_path=str(missingness_path),
        feature_cols_path=str(feature_cols_path),
        confusion_csv=str(confusion_csv),
        per_class_csv=str(per_class_csv),
        predictions_csv=str(out_dir / "predictions.csv"),
        accuracies=accuracies,
        predictions=predictions,
    )


def _jsonable(obj: Any) -> Any:
    # NaN (e.g. sensitivity of an absent class) is not valid JSON
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, (float, np.floating)):
        return None if np.isnan(obj) else float(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    return obj
