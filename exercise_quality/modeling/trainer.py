from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import parallel_config
from sklearn.base import BaseEstimator
from sklearn.decomposition import PCA
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier
from tqdm import tqdm

from exercise_quality.utils.timer import timed

log = logging.getLogger(__name__)


# Orientation angles (roll/pitch/yaw) of the belt, arm, dumbbell and forearm sensors
DEFAULT_REDUCED_FEATURES = (
    "roll_belt",
    "pitch_belt",
    "yaw_belt",
    "roll_arm",
    "pitch_arm",
    "yaw_arm",
    "roll_dumbbell",
    "pitch_dumbbell",
    "yaw_dumbbell",
    "roll_forearm",
    "pitch_forearm",
    "yaw_forearm",
)

FINAL_MODEL = "rf_full"
MODEL_NAMES = ("tree_reduced", "rf_reduced", "rf_full", "rf_pca", "gbm")


@dataclass(frozen=True)
class ParallelConfig:
    """Worker pool used for tree construction inside each fit."""

    backend: str = "loky"
    n_jobs: Optional[int] = -1

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "ParallelConfig":
        p = cfg.get("parallel", {}) or {}
        n_jobs = p.get("n_jobs", -1)
        return cls(backend=str(p.get("backend", "loky")), n_jobs=None if n_jobs is None else int(n_jobs))


@dataclass(frozen=True)
class ModelSpec:
    name: str
    feature_set: str  # "reduced" or "full"
    factory: Callable[[], BaseEstimator]


@dataclass
class FittedModel:
    name: str
    estimator: BaseEstimator
    feature_cols: Tuple[str, ...]
    fit_seconds: float = 0.0
    classes: List[str] = field(default_factory=list)

    def predict(self, df: pd.DataFrame) -> pd.Series:
        X = make_x(df, self.feature_cols)
        pred = self.estimator.predict(X)
        return pd.Series(np.asarray(pred).astype(str), index=df.index, name=self.name)


def make_x(df: pd.DataFrame, feature_cols: Sequence[str]) -> np.ndarray:
    missing = [c for c in feature_cols if c not in df.columns]
    if missing:
        raise RuntimeError(
            f"Missing {len(missing)} feature columns (example: {missing[:10]}). "
            "Predict-time table does not match the training schema."
        )
    X = df.loc[:, list(feature_cols)].fillna(0.0)
    return X.to_numpy(dtype=float)


def _forest(params: Mapping[str, Any], seed: int) -> RandomForestClassifier:
    return RandomForestClassifier(
        n_estimators=int(params.get("n_estimators", 500)),
        max_features=params.get("max_features", "sqrt"),
        min_samples_leaf=int(params.get("min_samples_leaf", 1)),
        random_state=seed,
    )


def build_model_specs(cfg: Mapping[str, Any], seed: int) -> List[ModelSpec]:
    """
    The five first-level classifiers, each independent of the others:
      tree_reduced / rf_reduced on the orientation angles,
      rf_full / rf_pca / gbm on every retained feature.
    """
    m = cfg.get("models", {}) or {}
    tree_p = m.get("decision_tree", {}) or {}
    rf_p = m.get("random_forest", {}) or {}
    pca_p = m.get("pca", {}) or {}
    gbm_p = m.get("boosting", {}) or {}

    variance = float(pca_p.get("variance", 0.90))
    if not 0.0 < variance < 1.0:
        raise ValueError(f"models.pca.variance must be in (0, 1), got {variance}")

    def tree() -> BaseEstimator:
        return DecisionTreeClassifier(
            max_depth=tree_p.get("max_depth"),
            min_samples_leaf=int(tree_p.get("min_samples_leaf", 1)),
            random_state=seed,
        )

    def pca_forest() -> BaseEstimator:
        return Pipeline(
            [
                ("scale", StandardScaler()),
                ("pca", PCA(n_components=variance, svd_solver="full")),
                ("rf", _forest(rf_p, seed)),
            ]
        )

    def boosting() -> BaseEstimator:
        return GradientBoostingClassifier(
            n_estimators=int(gbm_p.get("n_estimators", 150)),
            max_depth=int(gbm_p.get("max_depth", 3)),
            learning_rate=float(gbm_p.get("learning_rate", 0.1)),
            subsample=float(gbm_p.get("subsample", 1.0)),
            random_state=seed,
        )

    return [
        ModelSpec("tree_reduced", "reduced", tree),
        ModelSpec("rf_reduced", "reduced", lambda: _forest(rf_p, seed)),
        ModelSpec(FINAL_MODEL, "full", lambda: _forest(rf_p, seed)),
        ModelSpec("rf_pca", "full", pca_forest),
        ModelSpec("gbm", "full", boosting),
    ]


def resolve_reduced_features(cfg: Mapping[str, Any], feature_cols: Sequence[str]) -> Tuple[str, ...]:
    reduced = tuple((cfg.get("features", {}) or {}).get("reduced") or DEFAULT_REDUCED_FEATURES)
    absent = [c for c in reduced if c not in feature_cols]
    if absent:
        raise RuntimeError(
            f"Reduced feature set references columns not kept by cleaning: {absent}. "
            "Adjust features.reduced in the config."
        )
    return reduced


def fit_model(
    spec: ModelSpec,
    df_train: pd.DataFrame,
    feature_cols: Sequence[str],
    *,
    label_col: str,
    parallel: ParallelConfig,
) -> FittedModel:
    X = make_x(df_train, feature_cols)
    y = df_train[label_col].astype(str).to_numpy()

    estimator = spec.factory()
    timings: Dict[str, float] = {}
    with timed(spec.name, timings), parallel_config(backend=parallel.backend, n_jobs=parallel.n_jobs):
        estimator.fit(X, y)

    if isinstance(estimator, Pipeline) and "pca" in estimator.named_steps:
        n_comp = int(estimator.named_steps["pca"].n_components_)
        log.info("%s: %d principal components retain the requested variance", spec.name, n_comp)

    return FittedModel(
        name=spec.name,
        estimator=estimator,
        feature_cols=tuple(feature_cols),
        fit_seconds=timings.get(spec.name, 0.0),
        classes=[str(c) for c in np.unique(y)],
    )


def train_models(
    specs: Sequence[ModelSpec],
    df_train: pd.DataFrame,
    *,
    feature_cols: Sequence[str],
    reduced_cols: Sequence[str],
    label_col: str,
    parallel: Optional[ParallelConfig] = None,
) -> Dict[str, FittedModel]:
    """
    Fits every spec on the cleaned training partition.

    Fits share no state; each gets a fresh estimator from its factory.
    """
    if label_col not in df_train.columns:
        raise KeyError(f"Training table has no label column '{label_col}'.")
    parallel = parallel or ParallelConfig()

    models: Dict[str, FittedModel] = {}
    for spec in tqdm(specs, desc="Fitting models"):
        cols = reduced_cols if spec.feature_set == "reduced" else feature_cols
        models[spec.name] = fit_model(spec, df_train, cols, label_col=label_col, parallel=parallel)
        log.info(
            "Fitted %s on %d features in %.1fs",
            spec.name,
            len(cols),
            models[spec.name].fit_seconds,
        )
    return models
