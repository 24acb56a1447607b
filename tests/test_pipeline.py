"""
Tests for the quotation classifier pipeline.

These run the phases end to end on the synthetic feature table with fast
grids and a small resampling plan, without plots unless a test is about
the plots.
"""

import json

import numpy as np
import pandas as pd
import pytest

from publicbible.analysis import Visualizer
from publicbible.config import PipelineConfig
from publicbible.features.diagnostics import correlation_matrix
from publicbible.modeling.persistence import load_bundle
from publicbible.pipeline import Pipeline, main


def _make_config(tmp_path, raw_features, verses_csv) -> PipelineConfig:
    labeled = tmp_path / "labeled.csv"
    raw_features.to_csv(labeled, index=False)
    unlabeled = tmp_path / "unlabeled.csv"
    raw_features.drop(columns="match").head(40).to_csv(unlabeled, index=False)

    config = PipelineConfig()
    config.data.labeled_path = str(labeled)
    config.data.unlabeled_path = str(unlabeled)
    config.data.verses_path = str(verses_csv)
    config.resampling.n_folds = 3
    config.resampling.n_repeats = 1
    config.resampling.n_bootstrap = 4
    config.training.models = ["pls", "knn", "tree", "rf"]
    config.training.fast = True
    config.training.n_jobs = 1
    config.ensemble.iterations = 10
    config.analysis.output_dir = str(tmp_path / "output")
    config.analysis.generate_plots = False
    return config


class TestPipeline:

    def test_full_run(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        results = Pipeline(config).run()

        for phase in config.phases:
            assert "error" not in results[phase], f"{phase}: {results[phase]}"

        assert results["features"]["n_pairs"] == len(raw_features)
        assert results["split"]["n_training"] + results["split"]["n_testing"] == len(raw_features)
        assert results["split"]["n_cv_splits"] == 3
        assert len(results["ensemble"]["members"]) == 3
        assert results["predict"]["n_pairs"] == 40

        out = tmp_path / "output"
        for name in [
            "features_summary.json",
            "correlation_matrix.csv",
            "correlation_tests.csv",
            "training_results.json",
            "resample_summary.csv",
            "model_comparison.json",
            "ensemble_results.json",
            "predictions.csv",
            "audit_report.json",
            "pipeline_summary.json",
        ]:
            assert (out / name).exists(), name

        with open(out / "pipeline_summary.json") as f:
            summary = json.load(f)
        assert summary["phases_run"] == config.phases

    def test_ensemble_drops_weakest(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config.phases = ["features", "split", "train", "evaluate", "ensemble"]
        results = Pipeline(config).run()
        scores = results["evaluate"]["mean_roc_auc"]
        members = results["ensemble"]["members"]
        dropped = [name for name in scores if name not in members]
        assert len(members) == 3
        assert len(dropped) == 1
        assert min(scores[m] for m in members) >= scores[dropped[0]]

    def test_bundle(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config.phases = ["features", "split", "train", "ensemble", "persist"]
        config.training.models = ["pls", "knn", "tree"]
        Pipeline(config).run()

        payload = load_bundle(tmp_path / "output" / config.analysis.bundle_name)
        assert len(payload["verses"]) == 6
        assert payload["dtm"].shape == (6, len(payload["vocabulary"]))
        assert payload["tokenizer"]("for god so loved the world") == [
            "for god so loved", "god so loved the", "so loved the world",
            "for god so loved the", "god so loved the world",
        ]

        features = pd.read_csv(tmp_path / "unlabeled.csv")
        X = features[["token_count", "tf", "tfidf", "proportion",
                      "position_sd", "position_range", "runs_pval"]].fillna(0)
        proba = payload["model"].predict_proba(X)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    def test_phase_order_enforced(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config.phases = ["train"]
        results = Pipeline(config).run()
        assert "error" in results["train"]

    def test_missing_verses_fails_persist(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config.data.verses_path = None
        config.phases = ["features", "split", "train", "ensemble", "persist"]
        config.training.models = ["pls", "knn", "tree"]
        results = Pipeline(config).run()
        assert "error" not in results["ensemble"]
        assert "error" in results["persist"]

    def test_unknown_phase_skipped(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config.phases = ["features", "nonsense"]
        results = Pipeline(config).run()
        assert "nonsense" not in results

    def test_main(self, tmp_path, raw_features, verses_csv):
        config = _make_config(tmp_path, raw_features, verses_csv)
        config_path = tmp_path / "config.yaml"
        config.to_yaml(config_path)
        code = main([
            "--config", str(config_path),
            "--phases", "features", "diagnostics", "audit",
            "--output", str(tmp_path / "cli"),
        ])
        assert code == 0
        assert (tmp_path / "cli" / "correlation_matrix.csv").exists()


class TestConfig:

    def test_yaml_round_trip(self, tmp_path):
        config = PipelineConfig()
        config.training.models = ["rf", "knn"]
        config.ensemble.members = ["rf", "knn"]
        config.audit.sample_size = 50
        config.phases = ["features", "audit"]
        path = tmp_path / "config.yaml"
        config.to_yaml(path)

        loaded = PipelineConfig.from_yaml(path)
        assert loaded.training.models == ["rf", "knn"]
        assert loaded.ensemble.members == ["rf", "knn"]
        assert loaded.audit.sample_size == 50
        assert loaded.phases == ["features", "audit"]
        assert loaded.split.train_fraction == 0.7

    def test_defaults(self):
        config = PipelineConfig()
        assert config.resampling.n_folds == 10
        assert config.resampling.n_repeats == 5
        assert config.ensemble.n_members == 3
        assert len(config.training.models) == 6


class TestVisualization:

    def test_plots_saved(self, tmp_path, features):
        viz = Visualizer(output_dir=tmp_path / "figures")
        paths = [
            viz.plot_correlation_heatmap(correlation_matrix(features)),
            viz.plot_model_comparison({
                "rf": np.array([0.95, 0.96, 0.97]),
                "knn": np.array([0.90, 0.91, 0.89]),
            }),
            viz.plot_confusion_matrix(pd.DataFrame(
                [[20, 3], [2, 40]],
                index=["quotation", "noise"],
                columns=["quotation", "noise"],
            )),
            viz.plot_ensemble_weights({"rf": 0.6, "knn": 0.3, "pls": 0.1}),
        ]
        for path in paths:
            assert path.exists()
            assert path.stat().st_size > 0

    def test_heatmap_with_constant_predictor(self, tmp_path, features):
        features["runs_pval"] = 0.5
        corr = correlation_matrix(features)
        assert corr["runs_pval"].isna().any()
        viz = Visualizer(output_dir=tmp_path / "figures")
        assert viz.plot_correlation_heatmap(corr).exists()

    def test_feature_scatter(self, tmp_path, features):
        viz = Visualizer(output_dir=tmp_path / "figures")
        assert viz.plot_feature_scatter(features).exists()
