from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import parallel_config
from sklearn.base import BaseEstimator
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix
from sklearn.model_selection import StratifiedKFold, cross_val_score

from exercise_quality.modeling.trainer import FittedModel, ParallelConfig

log = logging.getLogger(__name__)


@dataclass
class ConfusionReport:
    matrix: pd.DataFrame  # rows = true label, columns = predicted label
    per_class: pd.DataFrame  # sensitivity, specificity, balanced_accuracy, support
    accuracy: float
    kappa: float

    def summary(self) -> Dict[str, object]:
        return {
            "accuracy": self.accuracy,
            "kappa": self.kappa,
            "balanced_accuracy": {str(k): float(v) for k, v in self.per_class["balanced_accuracy"].items()},
        }


def accuracy(y_true: Sequence, y_pred: Sequence) -> float:
    y_true = np.asarray(y_true).astype(str)
    y_pred = np.asarray(y_pred).astype(str)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Label vectors differ in length: {y_true.shape} vs {y_pred.shape}")
    if y_true.size == 0:
        raise ValueError("Cannot score an empty label vector.")
    return float(accuracy_score(y_true, y_pred))


def score_models(models: Mapping[str, FittedModel], df: pd.DataFrame, *, label_col: str) -> Dict[str, float]:
    """Validation accuracy of every model, keyed by model name."""
    y = df[label_col].astype(str).to_numpy()
    scores: Dict[str, float] = {}
    for name, model in models.items():
        scores[name] = accuracy(y, model.predict(df))
        log.info("Validation accuracy %-12s %.4f", name, scores[name])
    return scores


def _safe_ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(den > 0, num / np.where(den > 0, den, 1), np.nan)


def confusion_report(y_true: Sequence, y_pred: Sequence, labels: Optional[Sequence[str]] = None) -> ConfusionReport:
    """
    Full confusion matrix plus one-vs-rest statistics per class:
      sensitivity = TP / (TP + FN)
      specificity = TN / (TN + FP)
      balanced_accuracy = (sensitivity + specificity) / 2
    """
    y_true = np.asarray(y_true).astype(str)
    y_pred = np.asarray(y_pred).astype(str)
    if labels is None:
        labels = sorted(set(y_true) | set(y_pred))
    labels = [str(x) for x in labels]

    cm = confusion_matrix(y_true, y_pred, labels=labels)
    total = cm.sum()
    tp = np.diag(cm).astype(float)
    fn = cm.sum(axis=1) - tp
    fp = cm.sum(axis=0) - tp
    tn = total - tp - fn - fp

    sensitivity = _safe_ratio(tp, tp + fn)
    specificity = _safe_ratio(tn, tn + fp)
    per_class = pd.DataFrame(
        {
            "sensitivity": sensitivity,
            "specificity": specificity,
            "balanced_accuracy": (sensitivity + specificity) / 2.0,
            "support": cm.sum(axis=1).astype(int),
        },
        index=pd.Index(labels, name="label"),
    )

    matrix = pd.DataFrame(
        cm,
        index=pd.Index(labels, name="true"),
        columns=pd.Index(labels, name="predicted"),
    )
    return ConfusionReport(
        matrix=matrix,
        per_class=per_class,
        accuracy=accuracy(y_true, y_pred),
        kappa=float(cohen_kappa_score(y_true, y_pred, labels=labels)),
    )


def cross_validated_accuracy(
    estimator: BaseEstimator,
    X: np.ndarray,
    y: np.ndarray,
    *,
    folds: int = 5,
    seed: int = 42,
    parallel: Optional[ParallelConfig] = None,
) -> Optional[Dict[str, float]]:
    """
    Stratified k-fold accuracy of an unfitted estimator on the training rows.
    Returns None when `folds` < 2.
    """
    if folds < 2:
        return None
    parallel = parallel or ParallelConfig()
    cv = StratifiedKFold(n_splits=int(folds), shuffle=True, random_state=seed)
    with parallel_config(backend=parallel.backend, n_jobs=parallel.n_jobs):
        scores = cross_val_score(estimator, X, y, cv=cv, scoring="accuracy")
    mean = float(np.mean(scores))
    log.info("%d-fold CV accuracy %.4f (+/- %.4f)", folds, mean, float(np.std(scores)))
    return {
        "folds": int(folds),
        "accuracy_mean": mean,
        "accuracy_std": float(np.std(scores)),
        "expected_out_of_sample_error": 1.0 - mean,
    }
