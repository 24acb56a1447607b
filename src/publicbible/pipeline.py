"""
Main Pipeline
=============

Orchestrates the quotation classifier study.

Pipeline Phases:
    1. FEATURES    - Load the labeled feature table, impute, relabel
    2. DIAGNOSTICS - Predictor correlations, tests, and plots
    3. SPLIT       - Stratified train/test split and resampling indices
    4. TRAIN       - Tune six classifier families on the shared resamples
    5. EVALUATE    - Compare resampled performance across models
    6. ENSEMBLE    - Weighted ensemble of the best models, held-out metrics
    7. PREDICT     - Classify the unlabeled feature table
    8. PERSIST     - Save the ensemble with the verse corpus objects
    9. AUDIT       - Completeness check of the batch-converted OCR corpus

Phases run in order and share state on the pipeline instance; a phase
that needs an earlier one fails with a RuntimeError. Results are saved to
the output directory after each phase.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

import pandas as pd

from .config import PipelineConfig
from .audit.batches import audit_corpus
from .corpus.loader import NgramTokenizer, VerseCorpus
from .features.diagnostics import (
    correlation_matrix,
    correlation_tests,
    highly_correlated,
    point_biserial,
)
from .features.loader import (
    class_balance,
    clean_features,
    labels,
    load_labeled,
    load_unlabeled,
    predictor_matrix,
)
from .modeling.evaluation import (
    QuotationEnsemble,
    build_ensemble,
    compare_models,
    evaluate,
    model_correlation,
    predict_table,
    resample_summary,
    select_members,
)
from .modeling.persistence import save_bundle
from .modeling.resampling import ResamplingPlan, stratified_split
from .modeling.trainer import ModelTrainer, TrainedModel

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Orchestrates the complete quotation classifier study.

    Usage:
        config = PipelineConfig.from_yaml("configs/default.yaml")
        pipeline = Pipeline(config)
        results = pipeline.run()
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.output_dir = Path(config.analysis.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # Pipeline state: populated as phases complete
        self.labeled: Optional[pd.DataFrame] = None
        self.feature_columns: list[str] = []
        self.training: Optional[pd.DataFrame] = None
        self.testing: Optional[pd.DataFrame] = None
        self.plan: Optional[ResamplingPlan] = None
        self.models: dict[str, TrainedModel] = {}
        self.ensemble: Optional[QuotationEnsemble] = None

    def run(self) -> dict:
        """
        Run all configured pipeline phases.

        Returns:
            Dict of phase_name -> result summary.
        """
        results = {}
        phases = self.config.phases
        total_start = time.time()

        logger.info("Starting quotation classifier pipeline")
        logger.info(f"Phases to run: {phases}")
        logger.info(f"Output directory: {self.output_dir}")

        runners = {
            "features": self._run_features,
            "diagnostics": self._run_diagnostics,
            "split": self._run_split,
            "train": self._run_train,
            "evaluate": self._run_evaluate,
            "ensemble": self._run_ensemble,
            "predict": self._run_predict,
            "persist": self._run_persist,
            "audit": self._run_audit,
        }

        for phase in phases:
            runner = runners.get(phase)
            if runner is None:
                logger.warning(f"Unknown phase: {phase}, skipping")
                continue

            phase_start = time.time()
            logger.info(f"\n{'='*60}")
            logger.info(f"PHASE: {phase.upper()}")
            logger.info(f"{'='*60}")

            try:
                results[phase] = runner()
                elapsed = time.time() - phase_start
                logger.info(f"Phase {phase} completed in {elapsed:.1f}s")
            except Exception as e:
                logger.error(f"Phase {phase} failed: {e}", exc_info=True)
                results[phase] = {"error": str(e)}

        total_elapsed = time.time() - total_start
        logger.info(f"\n{'='*60}")
        logger.info(f"Pipeline completed in {total_elapsed:.1f}s")
        logger.info(f"{'='*60}")

        self._save_summary(results, total_elapsed)

        return results

    def _write_json(self, name: str, data: dict) -> None:
        with open(self.output_dir / name, "w") as f:
            json.dump(data, f, indent=2, default=str)

    def _visualizer(self):
        from .analysis.visualization import Visualizer
        return Visualizer(output_dir=self.output_dir / "figures")

    def _run_features(self) -> dict:
        """Phase 1: Load and clean the labeled feature table."""
        raw = load_labeled(self.config.data.labeled_path)
        n_imputed = {
            col: int(raw[col].isna().sum()) for col in ("position_sd", "position_range")
        }
        self.labeled = clean_features(raw)
        self.feature_columns = list(predictor_matrix(self.labeled).columns)

        summary = {
            "n_pairs": len(self.labeled),
            "class_balance": class_balance(self.labeled),
            "predictors": self.feature_columns,
            "imputed_zeros": n_imputed,
        }
        logger.info(
            f"Features: {summary['n_pairs']} pairs, balance {summary['class_balance']}"
        )
        self._write_json("features_summary.json", summary)
        return summary

    def _run_diagnostics(self) -> dict:
        """Phase 2: Correlation diagnostics."""
        if self.labeled is None:
            raise RuntimeError("Features must be loaded before diagnostics phase")

        corr = correlation_matrix(self.labeled)
        tests = correlation_tests(self.labeled)
        biserial = point_biserial(self.labeled)
        cutoff = self.config.analysis.correlation_cutoff
        redundant = highly_correlated(corr, cutoff=cutoff)

        corr.to_csv(self.output_dir / "correlation_matrix.csv")
        tests.to_csv(self.output_dir / "correlation_tests.csv", index=False)
        biserial.to_csv(self.output_dir / "label_correlation.csv", index=False)

        if self.config.analysis.generate_plots:
            viz = self._visualizer()
            viz.plot_correlation_heatmap(corr)
            viz.plot_feature_scatter(self.labeled, seed=self.config.split.seed)

        return {
            "n_predictors": len(corr),
            "highly_correlated": [
                {"features": [a, b], "r": r} for a, b, r in redundant
            ],
            "label_correlation": biserial.set_index("feature")["r"].to_dict(),
        }

    def _run_split(self) -> dict:
        """Phase 3: Train/test split and resampling indices."""
        if self.labeled is None:
            raise RuntimeError("Features must be loaded before split phase")

        cfg = self.config.split
        self.training, self.testing = stratified_split(
            self.labeled, train_fraction=cfg.train_fraction, seed=cfg.seed,
        )
        self.plan = ResamplingPlan.build(labels(self.training), self.config.resampling)

        return {
            "n_training": len(self.training),
            "n_testing": len(self.testing),
            "training_balance": class_balance(self.training),
            "testing_balance": class_balance(self.testing),
            "n_cv_splits": self.plan.n_cv,
            "n_bootstrap": self.plan.n_bootstrap,
        }

    def _run_train(self) -> dict:
        """Phase 4: Tune every model family."""
        if self.training is None or self.plan is None:
            raise RuntimeError("Split must run before train phase")

        cfg = self.config.training
        trainer = ModelTrainer(
            self.plan,
            models=cfg.models,
            metric=cfg.metric,
            n_jobs=cfg.n_jobs,
            fast=cfg.fast,
        )
        X = predictor_matrix(self.training, self.feature_columns)
        self.models = trainer.train_all(X, labels(self.training))

        summary = {name: m.summary() for name, m in self.models.items()}
        self._write_json("training_results.json", summary)
        return summary

    def _run_evaluate(self) -> dict:
        """Phase 5: Compare resampled performance across models."""
        if not self.models:
            raise RuntimeError("Models must be trained before evaluate phase")

        dist = resample_summary(self.models)
        diffs = compare_models(self.models)
        corr = model_correlation(self.models)

        dist.to_csv(self.output_dir / "resample_summary.csv")
        diffs.to_csv(self.output_dir / "model_differences.csv", index=False)
        corr.to_csv(self.output_dir / "model_correlation.csv")

        X_test = predictor_matrix(self.testing, self.feature_columns)
        y_test = labels(self.testing)
        held_out = {
            name: evaluate(model, X_test, y_test).metrics
            for name, model in self.models.items()
        }

        if self.config.analysis.generate_plots:
            self._visualizer().plot_model_comparison(
                {name: m.resample_scores for name, m in self.models.items()}
            )

        summary = {
            "ranking": dist.index.tolist(),
            "mean_roc_auc": dist["mean"].to_dict(),
            "held_out": held_out,
        }
        self._write_json("model_comparison.json", summary)
        return summary

    def _run_ensemble(self) -> dict:
        """Phase 6: Weighted ensemble and held-out evaluation."""
        if not self.models:
            raise RuntimeError("Models must be trained before ensemble phase")

        cfg = self.config.ensemble
        members = select_members(self.models, n_members=cfg.n_members, names=cfg.members)
        X_train = predictor_matrix(self.training, self.feature_columns)
        self.ensemble = build_ensemble(
            self.models,
            members,
            X_train,
            labels(self.training),
            self.plan,
            iterations=cfg.iterations,
            n_jobs=self.config.training.n_jobs,
        )

        X_test = predictor_matrix(self.testing, self.feature_columns)
        result = evaluate(self.ensemble, X_test, labels(self.testing))
        logger.info(
            f"Ensemble held-out accuracy {result.metrics['accuracy']:.4f}, "
            f"kappa {result.metrics['kappa']:.4f}"
        )

        if self.config.analysis.generate_plots:
            viz = self._visualizer()
            viz.plot_confusion_matrix(result.confusion)
            viz.plot_ensemble_weights(self.ensemble.weights)

        summary = {**self.ensemble.summary(), "held_out": result.summary()}
        self._write_json("ensemble_results.json", summary)
        return summary

    def _run_predict(self) -> dict:
        """Phase 7: Classify the unlabeled feature table."""
        if self.ensemble is None:
            raise RuntimeError("Ensemble must be built before predict phase")
        if not self.config.data.unlabeled_path:
            return {"status": "skipped", "reason": "no unlabeled table configured"}

        unlabeled = clean_features(load_unlabeled(self.config.data.unlabeled_path))
        predictions = predict_table(self.ensemble, unlabeled, self.feature_columns)
        predictions.to_csv(self.output_dir / "predictions.csv", index=False)

        counts = predictions["prediction"].value_counts()
        return {
            "n_pairs": len(predictions),
            "predicted": {str(k): int(v) for k, v in counts.items()},
        }

    def _run_persist(self) -> dict:
        """Phase 8: Save the ensemble with the verse corpus objects."""
        if self.ensemble is None:
            raise RuntimeError("Ensemble must be built before persist phase")
        if not self.config.data.verses_path:
            raise ValueError("A verses file is required to build the prediction payload")

        corpus = VerseCorpus.load(self.config.data.verses_path)
        tokenizer = NgramTokenizer(
            n_min=self.config.corpus.ngram_min,
            n_max=self.config.corpus.ngram_max,
        )
        dtm = corpus.document_term_matrix(tokenizer)

        path = save_bundle(
            self.output_dir / self.config.analysis.bundle_name,
            model=self.ensemble,
            verses=corpus.to_frame(),
            dtm=dtm.matrix,
            vocabulary=dtm.vocabulary,
            tokenizer=tokenizer,
        )
        return {
            "path": str(path),
            "n_verses": len(corpus),
            "vocabulary_size": len(dtm.vocabulary),
        }

    def _run_audit(self) -> dict:
        """Phase 9: Batch conversion completeness audit."""
        report = audit_corpus(self.config.audit)
        summary = report.summary()
        self._write_json("audit_report.json", summary)
        return summary

    def _save_summary(self, results: dict, total_elapsed: float) -> None:
        """Save pipeline run summary."""
        summary = {
            "total_elapsed_seconds": total_elapsed,
            "phases_run": list(results.keys()),
            "config": {
                "labeled_path": self.config.data.labeled_path,
                "train_fraction": self.config.split.train_fraction,
                "n_folds": self.config.resampling.n_folds,
                "n_repeats": self.config.resampling.n_repeats,
                "models": self.config.training.models,
            },
            "results": {},
        }

        # Serialize results (handle non-serializable types)
        for phase, result in results.items():
            try:
                json.dumps(result)
                summary["results"][phase] = result
            except (TypeError, ValueError):
                summary["results"][phase] = str(result)

        with open(self.output_dir / "pipeline_summary.json", "w") as f:
            json.dump(summary, f, indent=2, default=str)

        logger.info(f"Summary saved to {self.output_dir / 'pipeline_summary.json'}")


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for running the pipeline from command line."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Bible quotation classifier pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with default config
    python -m publicbible.pipeline

    # Run with custom config
    python -m publicbible.pipeline --config configs/custom.yaml

    # Only audit the converted corpus
    python -m publicbible.pipeline --phases audit

    # Quick run with small grids and few resamples
    python -m publicbible.pipeline --quick
        """,
    )
    parser.add_argument(
        "--config", "-c",
        default="configs/default.yaml",
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--phases", "-p",
        nargs="+",
        help="Specific phases to run (overrides config)",
    )
    parser.add_argument(
        "--quick", "-q",
        action="store_true",
        help="Quick run with fast grids and reduced resampling",
    )
    parser.add_argument(
        "--output", "-o",
        help="Output directory (overrides config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config_path = Path(args.config)
    if config_path.exists():
        config = PipelineConfig.from_yaml(config_path)
    else:
        logger.info(f"Config file {config_path} not found, using defaults")
        config = PipelineConfig()

    if args.phases:
        config.phases = args.phases

    if args.output:
        config.analysis.output_dir = args.output

    if args.quick:
        config.training.fast = True
        config.resampling.n_folds = 3
        config.resampling.n_repeats = 1
        config.resampling.n_bootstrap = 5
        config.ensemble.iterations = 20
        logger.info("Quick mode: fast grids and reduced resampling")

    pipeline = Pipeline(config)
    results = pipeline.run()

    print("\n" + "=" * 60)
    print("PIPELINE COMPLETE")
    print("=" * 60)
    failed = False
    for phase, result in results.items():
        if isinstance(result, dict) and "error" in result:
            print(f"  {phase}: FAILED - {result['error']}")
            failed = True
        else:
            print(f"  {phase}: OK")
    print(f"\nResults saved to: {config.analysis.output_dir}/")

    return 1 if failed else 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
