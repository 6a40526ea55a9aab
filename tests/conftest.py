# tests/conftest.py
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml

from exercise_quality.modeling.trainer import DEFAULT_REDUCED_FEATURES

LABELS = ["A", "B", "C", "D", "E"]
N_COMPLETE = 52
USERS = ["adelmo", "carlitos", "charles", "eurico", "jeremy", "pedro"]


def complete_feature_names() -> list[str]:
    extra = [f"accel_sensor_{i:02d}" for i in range(N_COMPLETE - len(DEFAULT_REDUCED_FEATURES))]
    return list(DEFAULT_REDUCED_FEATURES) + extra


def sparse_feature_names(n: int) -> list[str]:
    return [f"kurtosis_stat_{i:03d}" for i in range(n)]


def make_wle_table(
    n_rows: int = 1000,
    *,
    n_sparse: int = 100,
    seed: int = 0,
    labeled: bool = True,
    separation: float = 10.0,
) -> pd.DataFrame:
    """
    WLE-shaped table: 7 metadata columns, 52 complete numeric features whose
    means shift linearly with the class, `n_sparse` features that are >= 98%
    missing (a few numbers, a few "#DIV/0!" markers), and the `classe` label
    with equal prevalence.
    """
    rng = np.random.default_rng(seed)
    labels = np.resize(np.array(LABELS), n_rows)
    rng.shuffle(labels)
    k = np.array([LABELS.index(x) for x in labels], dtype=float)

    data: dict[str, object] = {
        "X": np.arange(1, n_rows + 1),
        "user_name": rng.choice(USERS, size=n_rows),
        "raw_timestamp_part_1": 1322489729 + np.arange(n_rows),
        "raw_timestamp_part_2": rng.integers(0, 999999, size=n_rows),
        "cvtd_timestamp": ["28/11/2011 14:15"] * n_rows,
        "new_window": ["no"] * n_rows,
        "num_window": rng.integers(1, 864, size=n_rows),
    }

    for j, name in enumerate(complete_feature_names()):
        data[name] = k * separation + rng.normal(0.0, 1.0, size=n_rows) + j

    n_valid = max(1, n_rows // 100)
    for name in sparse_feature_names(n_sparse):
        col = np.full(n_rows, None, dtype=object)
        idx = rng.choice(n_rows, size=2 * n_valid, replace=False)
        col[idx[:n_valid]] = [f"{v:.4f}" for v in rng.normal(size=n_valid)]
        col[idx[n_valid:]] = "#DIV/0!"
        data[name] = col

    df = pd.DataFrame(data)
    if labeled:
        df["classe"] = labels
    else:
        df["problem_id"] = np.arange(1, n_rows + 1)
    return df


@pytest.fixture
def wle_train() -> pd.DataFrame:
    return make_wle_table(1000, seed=0)


@pytest.fixture
def wle_eval() -> pd.DataFrame:
    return make_wle_table(20, seed=1, labeled=False)


def small_models_cfg() -> dict:
    return {
        "project": {"seed": 7},
        "logging": {"level": "WARNING"},
        "parallel": {"backend": "loky", "n_jobs": 1},
        "models": {
            "random_forest": {"n_estimators": 25},
            "pca": {"variance": 0.90},
            "boosting": {"n_estimators": 10, "max_depth": 2},
        },
        "stacking": {"n_estimators": 25},
        "evaluation": {"cv_folds": 0},
    }


@pytest.fixture
def small_cfg() -> dict:
    return small_models_cfg()


@pytest.fixture
def csv_inputs(tmp_path: Path) -> dict[str, Path]:
    """Training/evaluation CSVs written the way the raw files are (unnamed row-number column)."""
    raw = tmp_path / "raw"
    raw.mkdir()
    train = make_wle_table(500, seed=3).drop(columns=["X"])
    evaluation = make_wle_table(20, seed=4, labeled=False).drop(columns=["X"])
    train_path = raw / "pml-training.csv"
    eval_path = raw / "pml-testing.csv"
    train.index = train.index + 1
    evaluation.index = evaluation.index + 1
    train.to_csv(train_path, index=True)
    evaluation.to_csv(eval_path, index=True)
    return {"training": train_path, "evaluation": eval_path}


@pytest.fixture
def config_file(tmp_path: Path, csv_inputs: dict[str, Path]) -> Path:
    cfg = small_models_cfg()
    cfg["data"] = {
        "training_csv": str(csv_inputs["training"]),
        "evaluation_csv": str(csv_inputs["evaluation"]),
        "label_column": "classe",
        "id_column": "problem_id",
    }
    cfg["output"] = {"dir": str(tmp_path / "outputs")}
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return path
