import logging

import pandas as pd
import pytest

from conftest import make_wle_table
from exercise_quality.data_processing.splits import split_train_validation


@pytest.mark.parametrize("n_rows", [100, 1000, 1237])
def test_partition_sizes_disjoint_and_exhaustive(n_rows):
    df = make_wle_table(n_rows, n_sparse=2)
    parts = split_train_validation(df, train=0.6, seed=12345, stratify_col="classe")

    train_ids = set(parts["train"]["X"])
    val_ids = set(parts["validation"]["X"])

    assert train_ids.isdisjoint(val_ids)
    assert train_ids | val_ids == set(df["X"])
    assert abs(len(parts["train"]) - 0.6 * n_rows) <= 1
    assert abs(len(parts["validation"]) - 0.4 * n_rows) <= 1


def test_same_seed_same_split(wle_train):
    a = split_train_validation(wle_train, seed=5, stratify_col="classe")
    b = split_train_validation(wle_train, seed=5, stratify_col="classe")
    c = split_train_validation(wle_train, seed=6, stratify_col="classe")

    assert a["train"]["X"].tolist() == b["train"]["X"].tolist()
    assert a["validation"]["X"].tolist() == b["validation"]["X"].tolist()
    assert a["train"]["X"].tolist() != c["train"]["X"].tolist()


def test_split_is_stratified(wle_train):
    parts = split_train_validation(wle_train, seed=1, stratify_col="classe")
    counts = parts["train"]["classe"].value_counts()
    # 200 rows per class in the source, 60% of each goes to train
    assert counts.min() == counts.max() == 120


def test_split_falls_back_without_stratification(caplog):
    df = pd.DataFrame({"v": range(10), "classe": ["A"] * 9 + ["B"]})
    with caplog.at_level(logging.WARNING):
        parts = split_train_validation(df, seed=0, stratify_col="classe")

    assert len(parts["train"]) + len(parts["validation"]) == 10
    assert "Stratification on 'classe' not possible" in caplog.text


def test_split_falls_back_when_validation_smaller_than_class_count(caplog):
    # 5 classes x 2 rows; a 90% train share leaves a single validation row
    df = pd.DataFrame({"v": range(10), "classe": list("ABCDE") * 2})
    with caplog.at_level(logging.WARNING):
        parts = split_train_validation(df, train=0.9, seed=0, stratify_col="classe")

    assert len(parts["validation"]) == 1
    assert len(parts["train"]) == 9
    assert set(parts["train"]["v"]) | set(parts["validation"]["v"]) == set(range(10))
    assert "Stratified split failed" in caplog.text


def test_split_resets_index(wle_train):
    parts = split_train_validation(wle_train, seed=1, stratify_col="classe")
    assert parts["train"].index.tolist() == list(range(len(parts["train"])))


@pytest.mark.parametrize("ratio", [0.0, 1.0, 1.5])
def test_bad_ratio(wle_train, ratio):
    with pytest.raises(ValueError):
        split_train_validation(wle_train, train=ratio)


def test_empty_input():
    with pytest.raises(ValueError):
        split_train_validation(pd.DataFrame())
