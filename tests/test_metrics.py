import numpy as np
import pytest
from sklearn.tree import DecisionTreeClassifier

from exercise_quality.modeling.metrics import accuracy, confusion_report, cross_validated_accuracy, score_models
from exercise_quality.modeling.trainer import FittedModel, ParallelConfig


def test_accuracy_is_fraction_equal():
    assert accuracy(["A", "B", "C", "D"], ["A", "B", "C", "E"]) == pytest.approx(0.75)


def test_accuracy_rejects_length_mismatch_and_empty():
    with pytest.raises(ValueError):
        accuracy(["A"], ["A", "B"])
    with pytest.raises(ValueError):
        accuracy([], [])


def test_confusion_report_counts_and_per_class_stats():
    y_true = ["A", "A", "A", "B", "B", "C"]
    y_pred = ["A", "A", "B", "B", "B", "A"]

    report = confusion_report(y_true, y_pred, labels=["A", "B", "C"])

    assert report.matrix.loc["A"].tolist() == [2, 1, 0]
    assert report.matrix.loc["B"].tolist() == [0, 2, 0]
    assert report.matrix.loc["C"].tolist() == [1, 0, 0]
    assert report.matrix.to_numpy().sum() == 6
    assert report.accuracy == pytest.approx(4 / 6)

    a = report.per_class.loc["A"]
    # TP=2 FN=1 FP=1 TN=2
    assert a["sensitivity"] == pytest.approx(2 / 3)
    assert a["specificity"] == pytest.approx(2 / 3)
    assert a["balanced_accuracy"] == pytest.approx(2 / 3)
    assert report.per_class.loc["C", "sensitivity"] == 0.0
    assert report.per_class["support"].tolist() == [3, 2, 1]


def test_confusion_report_absent_class_is_nan():
    report = confusion_report(["A", "B"], ["A", "B"], labels=["A", "B", "E"])
    assert np.isnan(report.per_class.loc["E", "sensitivity"])
    assert report.per_class.loc["E", "specificity"] == 1.0
    assert report.kappa == pytest.approx(1.0)


def test_summary_is_plain_python():
    report = confusion_report(["A", "B"], ["A", "A"])
    summary = report.summary()
    assert set(summary) == {"accuracy", "kappa", "balanced_accuracy"}
    assert isinstance(summary["balanced_accuracy"]["A"], float)


def test_score_models_uses_label_column():
    import pandas as pd

    class Echo:
        def predict(self, X):
            return np.where(X[:, 0] > 0, "A", "B")

    df = pd.DataFrame({"f": [1.0, -1.0, 1.0, -1.0], "classe": ["A", "B", "B", "B"]})
    scores = score_models({"echo": FittedModel("echo", Echo(), ("f",))}, df, label_col="classe")
    assert scores == {"echo": pytest.approx(0.75)}


def test_cross_validation_disabled_below_two_folds():
    assert cross_validated_accuracy(DecisionTreeClassifier(), np.zeros((4, 1)), np.array(["A"] * 4), folds=1) is None


def test_cross_validation_on_separable_data():
    rng = np.random.default_rng(0)
    y = np.repeat(np.array(["A", "B"]), 50)
    X = np.where(y == "A", 0.0, 10.0)[:, None] + rng.normal(size=(100, 1))

    cv = cross_validated_accuracy(
        DecisionTreeClassifier(random_state=0), X, y, folds=5, seed=1, parallel=ParallelConfig(n_jobs=1)
    )

    assert cv["folds"] == 5
    assert cv["accuracy_mean"] >= 0.95
    assert cv["expected_out_of_sample_error"] == pytest.approx(1.0 - cv["accuracy_mean"])
