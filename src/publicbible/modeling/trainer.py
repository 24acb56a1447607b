"""
Model Trainer
=============

Tunes every configured classifier family under one resampling regime.

Each family goes through the same routine: an exhaustive grid search over
the shared repeated k-fold indices, scored by area under the ROC curve,
followed by a refit of the winning parameters on the full training
partition. Because the fold indices are shared, the per-fold scores of
the winning parameters line up across models and can be compared pairwise
by the evaluator.

Parallelism is delegated to scikit-learn through ``n_jobs``; convergence
warnings from the underlying estimators are left as they are.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import GridSearchCV
from sklearn.pipeline import Pipeline

from .models import MODEL_FAMILIES, get_pipeline_and_grid, resolve_name
from .resampling import ResamplingPlan

logger = logging.getLogger(__name__)


@dataclass
class TrainedModel:
    """A tuned and refit classifier with its resampled performance."""
    name: str
    label: str
    best_params: dict[str, Any]
    resample_scores: np.ndarray
    estimator: Pipeline
    elapsed_seconds: float = 0.0
    grid_results: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def mean_score(self) -> float:
        return float(np.mean(self.resample_scores))

    @property
    def std_score(self) -> float:
        return float(np.std(self.resample_scores))

    def predict(self, X):
        return self.estimator.predict(X)

    def predict_proba(self, X):
        return self.estimator.predict_proba(X)

    @property
    def classes_(self):
        return self.estimator.classes_

    def summary(self) -> dict:
        return {
            "label": self.label,
            "best_params": {k.replace("model__", ""): _jsonable(v)
                            for k, v in self.best_params.items()},
            "mean_roc_auc": self.mean_score,
            "std_roc_auc": self.std_score,
            "n_resamples": int(len(self.resample_scores)),
            "elapsed_seconds": self.elapsed_seconds,
        }


def _jsonable(value):
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, np.generic):
        return value.item()
    return value


class ModelTrainer:
    """
    Fits several classifier families on the same resampling indices.

    Usage:
        plan = ResamplingPlan.build(y_train, config.resampling)
        trainer = ModelTrainer(plan, n_jobs=4)
        models = trainer.train_all(X_train, y_train)
    """

    def __init__(
        self,
        plan: ResamplingPlan,
        models: Optional[list[str]] = None,
        metric: str = "roc_auc",
        n_jobs: Optional[int] = None,
        fast: bool = False,
        seed: Optional[int] = None,
    ):
        self.plan = plan
        self.model_names = [resolve_name(m) for m in (models or list(MODEL_FAMILIES))]
        self.metric = metric
        self.n_jobs = n_jobs
        self.fast = fast
        self.seed = seed if seed is not None else plan.seed

    def train(self, name: str, X, y) -> TrainedModel:
        """Tune one model family and refit it on all of ``X``."""
        name = resolve_name(name)
        X = np.asarray(X, dtype=float)
        y = np.asarray(y).astype(str)
        if len(y) != self.plan.n_rows:
            raise ValueError(
                f"Resampling plan was built for {self.plan.n_rows} rows, got {len(y)}"
            )

        pipeline, grid = get_pipeline_and_grid(name, seed=self.seed, fast=self.fast)
        n_candidates = int(np.prod([len(v) for v in grid.values()]))
        logger.info(
            f"Training {name}: {n_candidates} candidates x {self.plan.n_cv} resamples"
        )

        start = time.time()
        search = GridSearchCV(
            pipeline,
            grid,
            scoring=self.metric,
            cv=self.plan.cv_splits,
            n_jobs=self.n_jobs,
            refit=True,
        )
        search.fit(X, y)
        elapsed = time.time() - start

        best = search.best_index_
        scores = np.array([
            search.cv_results_[f"split{i}_test_score"][best]
            for i in range(self.plan.n_cv)
        ])

        model = TrainedModel(
            name=name,
            label=MODEL_FAMILIES[name].label,
            best_params=dict(search.best_params_),
            resample_scores=scores,
            estimator=search.best_estimator_,
            elapsed_seconds=elapsed,
            grid_results=pd.DataFrame(search.cv_results_),
        )
        logger.info(
            f"  {name}: ROC AUC {model.mean_score:.4f} ± {model.std_score:.4f} "
            f"with {search.best_params_} ({elapsed:.1f}s)"
        )
        return model

    def train_all(self, X, y) -> dict[str, TrainedModel]:
        """Train every configured family; returns name -> TrainedModel."""
        return {name: self.train(name, X, y) for name in self.model_names}
