"""
Resampling
==========

Train/test partitioning and the resampling indices shared by every model.

Two independent index sets are built from the training partition:

    Repeated k-fold CV
        Stratified folds (10 x 5 by default) used to tune each model's
        hyperparameters. Every model family sees exactly the same folds,
        so the per-fold scores are paired across models.

    Bootstrap resamples
        In-bag rows drawn with replacement, the out-of-bag rows serving as
        the holdout. Used to collect the out-of-bag predictions the
        ensemble weights are fit on.

Everything is driven by a fixed seed, so the split and both index sets are
exactly reproducible across runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import RepeatedStratifiedKFold, train_test_split

from ..config import ResamplingConfig
from ..features.loader import LABEL_COLUMN

logger = logging.getLogger(__name__)

Split = tuple[np.ndarray, np.ndarray]


def stratified_split(
    df: pd.DataFrame,
    train_fraction: float = 0.7,
    seed: Optional[int] = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Single stratified train/test split of a cleaned labeled table.

    The two partitions are disjoint and together cover every row; the
    original index labels are preserved so that can be checked.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    training, testing = train_test_split(
        df,
        train_size=train_fraction,
        random_state=seed,
        stratify=df[LABEL_COLUMN],
    )
    logger.info(
        f"Split {len(df)} pairs: {len(training)} training, {len(testing)} testing"
    )
    return training, testing


def repeated_cv_indices(
    y,
    n_folds: int = 10,
    n_repeats: int = 5,
    seed: Optional[int] = None,
) -> list[Split]:
    """Materialized (train, validation) index pairs for repeated stratified k-fold."""
    y = np.asarray(y)
    rskf = RepeatedStratifiedKFold(n_splits=n_folds, n_repeats=n_repeats, random_state=seed)
    return [(tr, va) for tr, va in rskf.split(np.zeros(len(y)), y)]


def bootstrap_indices(
    n: int,
    n_resamples: int = 25,
    seed: Optional[int] = None,
) -> list[Split]:
    """
    Bootstrap (in-bag, out-of-bag) index pairs.

    Each resample draws ``n`` rows with replacement; the out-of-bag set is
    every row that was not drawn.
    """
    rng = np.random.default_rng(seed)
    splits = []
    all_idx = np.arange(n)
    for i in range(n_resamples):
        in_bag = rng.integers(0, n, size=n)
        out_of_bag = np.setdiff1d(all_idx, in_bag)
        splits.append((in_bag, out_of_bag))

        if (i + 1) % 10 == 0:
            logger.debug(f"  Generated {i + 1}/{n_resamples} bootstrap resamples")
    return splits


@dataclass
class ResamplingPlan:
    """Index sets shared by every model trained on one training partition."""
    n_rows: int
    cv_splits: list[Split] = field(default_factory=list)
    bootstrap_splits: list[Split] = field(default_factory=list)
    seed: Optional[int] = None

    @property
    def n_cv(self) -> int:
        return len(self.cv_splits)

    @property
    def n_bootstrap(self) -> int:
        return len(self.bootstrap_splits)

    @classmethod
    def build(cls, y, config: ResamplingConfig) -> ResamplingPlan:
        y = np.asarray(y)
        plan = cls(
            n_rows=len(y),
            cv_splits=repeated_cv_indices(
                y, n_folds=config.n_folds, n_repeats=config.n_repeats, seed=config.seed,
            ),
            bootstrap_splits=bootstrap_indices(
                len(y), n_resamples=config.n_bootstrap, seed=config.seed,
            ),
            seed=config.seed,
        )
        logger.info(
            f"Resampling plan: {plan.n_cv} CV splits "
            f"({config.n_folds} folds x {config.n_repeats} repeats), "
            f"{plan.n_bootstrap} bootstrap resamples"
        )
        return plan
