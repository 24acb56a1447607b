"""
Tests for the model registry, training, ensembling, and evaluation.

Training runs on the fast grids with a small resampling plan so the whole
module finishes in seconds.
"""

import numpy as np
import pandas as pd
import pytest

from publicbible.config import ResamplingConfig
from publicbible.features.loader import labels, predictor_matrix
from publicbible.modeling.evaluation import (
    QuotationEnsemble,
    build_ensemble,
    compare_models,
    evaluate,
    greedy_weights,
    model_correlation,
    predict_table,
    resample_summary,
    select_members,
)
from publicbible.modeling.models import (
    MODEL_FAMILIES,
    PLSClassifier,
    get_pipeline_and_grid,
    positive_proba,
    resolve_name,
)
from publicbible.modeling.persistence import load_bundle, save_bundle
from publicbible.modeling.resampling import ResamplingPlan, stratified_split
from publicbible.modeling.trainer import ModelTrainer, TrainedModel


@pytest.fixture
def partitions(features):
    return stratified_split(features, train_fraction=0.7, seed=7260)


@pytest.fixture
def plan(partitions):
    training, _ = partitions
    config = ResamplingConfig(n_folds=3, n_repeats=1, n_bootstrap=4, seed=7260)
    return ResamplingPlan.build(labels(training), config)


def _scored(name: str, scores) -> TrainedModel:
    """A trained-model record with fixed resample scores and no estimator."""
    return TrainedModel(
        name=name,
        label=name,
        best_params={},
        resample_scores=np.asarray(scores, dtype=float),
        estimator=None,
    )


class _FixedClassifier:
    """Returns preset predictions, for checking the evaluation arithmetic."""

    classes_ = np.array(["noise", "quotation"])

    def __init__(self, predictions, quotation_proba):
        self._predictions = np.asarray(predictions)
        self._proba = np.asarray(quotation_proba, dtype=float)

    def predict(self, X):
        return self._predictions

    def predict_proba(self, X):
        return np.column_stack([1 - self._proba, self._proba])


class TestRegistry:

    def test_six_families(self):
        assert set(MODEL_FAMILIES) == {"rf", "pls", "svm_linear", "nnet", "knn", "tree"}

    def test_aliases(self):
        assert resolve_name("SVM") == "svm_linear"
        assert resolve_name("rpart") == "tree"
        with pytest.raises(ValueError):
            resolve_name("xgboost")

    def test_pipeline_scales_first(self):
        pipeline, grid = get_pipeline_and_grid("knn")
        assert [name for name, _ in pipeline.steps] == ["scale", "model"]
        assert all(key.startswith("model__") for key in grid)

    def test_fast_grid_smaller(self):
        for name in MODEL_FAMILIES:
            _, full = get_pipeline_and_grid(name)
            _, fast = get_pipeline_and_grid(name, fast=True)
            n_full = np.prod([len(v) for v in full.values()])
            n_fast = np.prod([len(v) for v in fast.values()])
            assert n_fast <= n_full


class TestPLSClassifier:

    def test_probabilities(self, features):
        X = predictor_matrix(features).to_numpy()
        y = labels(features).astype(str).to_numpy()
        clf = PLSClassifier(n_components=2).fit(X, y)
        proba = clf.predict_proba(X)
        assert proba.shape == (len(y), 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert set(clf.predict(X)) <= {"noise", "quotation"}

    def test_separates_classes(self, features):
        X = predictor_matrix(features).to_numpy()
        y = labels(features).astype(str).to_numpy()
        clf = PLSClassifier(n_components=2).fit(X, y)
        p = positive_proba(clf, X)
        assert p[y == "quotation"].mean() > p[y == "noise"].mean()


class TestTrainer:

    def test_train_one(self, partitions, plan):
        training, _ = partitions
        trainer = ModelTrainer(plan, fast=True, n_jobs=1)
        model = trainer.train("tree", predictor_matrix(training), labels(training))
        assert model.name == "tree"
        assert len(model.resample_scores) == plan.n_cv
        assert 0.5 < model.mean_score <= 1.0
        assert "model__ccp_alpha" in model.best_params
        summary = model.summary()
        assert "ccp_alpha" in summary["best_params"]

    def test_train_all_fast(self, partitions, plan):
        training, _ = partitions
        trainer = ModelTrainer(plan, fast=True, n_jobs=1)
        models = trainer.train_all(predictor_matrix(training), labels(training))
        assert list(models) == list(MODEL_FAMILIES)
        for model in models.values():
            assert len(model.resample_scores) == plan.n_cv
            assert list(model.classes_) == ["noise", "quotation"]

    def test_plan_size_checked(self, partitions, plan):
        _, testing = partitions
        trainer = ModelTrainer(plan, models=["knn"], fast=True)
        with pytest.raises(ValueError):
            trainer.train("knn", predictor_matrix(testing), labels(testing))


class TestComparison:

    def _models(self):
        return {
            "a": _scored("a", [0.90, 0.92, 0.91, 0.93]),
            "b": _scored("b", [0.80, 0.85, 0.82, 0.81]),
            "c": _scored("c", [0.95, 0.96, 0.94, 0.97]),
            "d": _scored("d", [0.70, 0.75, 0.72, 0.71]),
        }

    def test_resample_summary_ordering(self):
        summary = resample_summary(self._models())
        assert summary.index.tolist() == ["c", "a", "b", "d"]
        assert (summary["min"] <= summary["median"]).all()
        assert (summary["median"] <= summary["max"]).all()

    def test_compare_models(self):
        diffs = compare_models(self._models())
        assert len(diffs) == 6
        assert (diffs["p_adjusted"].dropna() <= 1.0).all()
        row = diffs[(diffs["model1"] == "a") & (diffs["model2"] == "b")].iloc[0]
        assert row["mean_diff"] == pytest.approx(0.095)

    def test_constant_difference(self):
        models = {"a": _scored("a", [0.9, 0.8, 0.7]), "b": _scored("b", [0.8, 0.7, 0.6])}
        diffs = compare_models(models)
        assert np.isnan(diffs.loc[0, "p_value"])

    def test_model_correlation(self):
        corr = model_correlation(self._models())
        assert corr.shape == (4, 4)

    def test_select_top_three(self):
        assert select_members(self._models(), n_members=3) == ["c", "a", "b"]

    def test_select_explicit(self):
        assert select_members(self._models(), names=["d", "a"]) == ["d", "a"]
        with pytest.raises(ValueError):
            select_members(self._models(), names=["zzz"])


class TestGreedyWeights:

    def test_perfect_member_takes_all(self):
        y = np.array(["quotation"] * 5 + ["noise"] * 5)
        rng = np.random.default_rng(0)
        predictions = pd.DataFrame({
            "good": np.linspace(1.0, 0.0, 10),
            "random": rng.random(10),
        })
        weights = greedy_weights(predictions, y, iterations=20)
        assert weights["good"] == pytest.approx(1.0)
        assert weights["random"] == pytest.approx(0.0)

    def test_weights_sum_to_one(self):
        rng = np.random.default_rng(1)
        y = np.array(["quotation", "noise"] * 20)
        truth = (y == "quotation").astype(float)
        predictions = pd.DataFrame({
            "a": truth * 0.6 + rng.random(40) * 0.4,
            "b": truth * 0.5 + rng.random(40) * 0.5,
            "c": rng.random(40),
        })
        weights = greedy_weights(predictions, y, iterations=30)
        assert sum(weights.values()) == pytest.approx(1.0)
        assert all(w >= 0 for w in weights.values())

    def test_missing_rows_ignored(self):
        y = np.array(["quotation", "quotation", "noise", "noise"])
        predictions = pd.DataFrame({"a": [0.9, np.nan, 0.1, 0.2]})
        assert greedy_weights(predictions, y, iterations=5) == {"a": 1.0}

    def test_zero_iterations_rejected(self):
        y = np.array(["quotation", "noise"])
        predictions = pd.DataFrame({"a": [0.9, 0.1]})
        with pytest.raises(ValueError):
            greedy_weights(predictions, y, iterations=0)

    def test_single_class_rejected(self):
        y = np.array(["noise"] * 4)
        predictions = pd.DataFrame({"a": [0.1, 0.2, 0.3, 0.4]})
        with pytest.raises(ValueError):
            greedy_weights(predictions, y)


class TestEnsemble:

    def test_build_and_evaluate(self, partitions, plan):
        training, testing = partitions
        trainer = ModelTrainer(plan, models=["pls", "knn", "tree"], fast=True, n_jobs=1)
        X = predictor_matrix(training)
        models = trainer.train_all(X, labels(training))

        members = select_members(models, n_members=2)
        ensemble = build_ensemble(models, members, X, labels(training), plan, iterations=10)
        assert isinstance(ensemble, QuotationEnsemble)
        assert ensemble.members == members
        assert sum(ensemble.weights.values()) == pytest.approx(1.0)
        assert 0.5 < ensemble.oob_roc_auc <= 1.0

        result = evaluate(ensemble, predictor_matrix(testing), labels(testing))
        assert result.confusion.to_numpy().sum() == len(testing)
        assert result.metrics["accuracy"] > 0.7


class TestEvaluate:

    def test_confusion_statistics(self):
        y = ["quotation"] * 3 + ["noise"] * 4
        pred = ["quotation", "quotation", "noise", "noise", "noise", "noise", "quotation"]
        clf = _FixedClassifier(pred, [0.9, 0.8, 0.4, 0.1, 0.2, 0.3, 0.6])
        result = evaluate(clf, np.zeros((7, 1)), y)

        assert result.confusion.loc["quotation", "quotation"] == 2
        assert result.confusion.loc["quotation", "noise"] == 1
        assert result.confusion.loc["noise", "quotation"] == 1
        assert result.confusion.loc["noise", "noise"] == 3

        m = result.metrics
        assert m["accuracy"] == pytest.approx(5 / 7)
        assert m["sensitivity"] == pytest.approx(2 / 3)
        assert m["specificity"] == pytest.approx(3 / 4)
        assert m["pos_pred_value"] == pytest.approx(2 / 3)
        assert m["neg_pred_value"] == pytest.approx(3 / 4)
        assert m["prevalence"] == pytest.approx(3 / 7)
        assert m["detection_rate"] == pytest.approx(2 / 7)
        assert m["balanced_accuracy"] == pytest.approx((2 / 3 + 3 / 4) / 2)
        # 0.4 quotation ranks below the 0.6 noise pair: 11 of 12 pairs ordered
        assert m["roc_auc"] == pytest.approx(11 / 12)

    def test_summary_serializable(self):
        import json
        clf = _FixedClassifier(["quotation", "noise"], [0.8, 0.3])
        result = evaluate(clf, np.zeros((2, 1)), ["quotation", "noise"])
        json.dumps(result.summary())

    def test_predict_table(self, features):
        n = len(features)
        proba = np.linspace(0, 1, n)
        pred = np.where(proba > 0.5, "quotation", "noise")
        table = predict_table(_FixedClassifier(pred, proba), features)

        assert list(table.columns) == [
            "reference", "page", "prediction", "prob_quotation", "prob_noise",
        ]
        assert list(table["prediction"].cat.categories) == ["quotation", "noise"]
        np.testing.assert_allclose(table["prob_quotation"] + table["prob_noise"], 1.0)


class TestPersistence:

    def test_bundle_round_trip(self, tmp_path):
        path = save_bundle(
            tmp_path / "payload.joblib",
            model={"kind": "stand-in"},
            verses=pd.DataFrame({"reference": ["John 11:35"], "text": ["Jesus wept."]}),
            dtm=np.eye(1),
            vocabulary=["jesus wept"],
            tokenizer=str.split,
        )
        payload = load_bundle(path)
        assert set(payload) == {"model", "verses", "dtm", "vocabulary", "tokenizer"}
        assert payload["vocabulary"] == ["jesus wept"]

    def test_incomplete_bundle_rejected(self, tmp_path):
        import joblib
        path = tmp_path / "payload.joblib"
        joblib.dump({"model": None}, path)
        with pytest.raises(ValueError):
            load_bundle(path)
