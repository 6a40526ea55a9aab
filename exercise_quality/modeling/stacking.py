from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import parallel_config
from sklearn.ensemble import RandomForestClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from exercise_quality.modeling.trainer import FittedModel, ParallelConfig

log = logging.getLogger(__name__)


DEFAULT_BASE_MODELS = ("rf_pca", "rf_full", "gbm")
STACKED_MODEL = "stacked"


def prediction_column(model_name: str) -> str:
    return f"pred_{model_name}"


def build_stacking_frame(
    models: Mapping[str, FittedModel],
    df: pd.DataFrame,
    base_names: Sequence[str] = DEFAULT_BASE_MODELS,
) -> pd.DataFrame:
    """
    One column per base model, `pred_<name>` holding that model's predictions
    on `df`. Columns are keyed by model name, never by position.
    """
    absent = [n for n in base_names if n not in models]
    if absent:
        raise KeyError(f"Stacking needs base models {absent}, which were not trained.")

    columns: Dict[str, pd.Series] = {}
    for name in base_names:
        columns[prediction_column(name)] = models[name].predict(df)
    return pd.DataFrame(columns, index=df.index)


class StackedEnsemble:
    """
    Second-level random forest mapping the base models' predicted labels to
    the true label.
    """

    def __init__(
        self,
        base_names: Sequence[str] = DEFAULT_BASE_MODELS,
        *,
        n_estimators: int = 500,
        seed: int = 42,
        parallel: Optional[ParallelConfig] = None,
    ):
        self.base_names: Tuple[str, ...] = tuple(base_names)
        self.n_estimators = int(n_estimators)
        self.seed = int(seed)
        self.parallel = parallel or ParallelConfig()
        self.base_models: Dict[str, FittedModel] = {}
        self.meta_model: Optional[Pipeline] = None
        self.classes_: Tuple[str, ...] = ()

    @property
    def input_columns(self) -> Tuple[str, ...]:
        return tuple(prediction_column(n) for n in self.base_names)

    @classmethod
    def from_cfg(
        cls, cfg: Mapping[str, Any], seed: int, parallel: Optional[ParallelConfig] = None
    ) -> "StackedEnsemble":
        s = cfg.get("stacking", {}) or {}
        return cls(
            base_names=tuple(s.get("base_models") or DEFAULT_BASE_MODELS),
            n_estimators=int(s.get("n_estimators", 500)),
            seed=seed,
            parallel=parallel,
        )

    def fit(self, models: Mapping[str, FittedModel], df: pd.DataFrame, y: pd.Series) -> "StackedEnsemble":
        """
        `df` and `y` must describe the same rows; base predictions are made on
        `df` so each row's inputs line up with its true label.
        """
        if len(df) != len(y):
            raise ValueError(f"Stacking rows ({len(df)}) and labels ({len(y)}) differ in length.")

        frame = build_stacking_frame(models, df, self.base_names)
        self.base_models = {n: models[n] for n in self.base_names}

        labels = sorted(set(np.asarray(y).astype(str)) | set(np.unique(frame.to_numpy().astype(str))))
        self.classes_ = tuple(labels)

        encoder = OneHotEncoder(
            categories=[list(labels)] * len(self.base_names),
            handle_unknown="ignore",
        )
        self.meta_model = Pipeline(
            [
                ("onehot", encoder),
                ("rf", RandomForestClassifier(n_estimators=self.n_estimators, random_state=self.seed)),
            ]
        )
        with parallel_config(backend=self.parallel.backend, n_jobs=self.parallel.n_jobs):
            self.meta_model.fit(frame.loc[:, list(self.input_columns)], np.asarray(y).astype(str))

        log.info("Stacked ensemble fitted on %d rows from %s", len(df), ", ".join(self.base_names))
        return self

    def predict(self, df: pd.DataFrame) -> pd.Series:
        if self.meta_model is None:
            raise RuntimeError("StackedEnsemble.predict called before fit().")
        frame = build_stacking_frame(self.base_models, df, self.base_names)
        pred = self.meta_model.predict(frame.loc[:, list(self.input_columns)])
        return pd.Series(np.asarray(pred).astype(str), index=df.index, name=STACKED_MODEL)
