"""
Correlation Diagnostics
=======================

Read-only checks on the predictor set, used to decide which features are
worth feeding to the classifiers. Several of the matcher's features are
near-duplicates by construction (``tf`` and ``tfidf`` both scale with
``token_count``; ``position_sd`` and ``position_range`` both measure
spread), so the pairwise correlations are inspected before modeling.
"""

from __future__ import annotations

import logging
from itertools import combinations

import numpy as np
import pandas as pd
from scipy import stats

from .loader import LABEL_COLUMN, POSITIVE_LABEL, predictor_matrix

logger = logging.getLogger(__name__)


def correlation_matrix(df: pd.DataFrame) -> pd.DataFrame:
    """Dense pairwise Pearson correlation over all numeric predictors."""
    return predictor_matrix(df).corr(method="pearson")


def correlation_tests(df: pd.DataFrame) -> pd.DataFrame:
    """
    Pearson r with a two-sided p-value for every predictor pair.

    Returns:
        Long frame with columns ``feature1, feature2, r, p_value``,
        one row per unordered pair.
    """
    X = predictor_matrix(df)
    rows = []
    for a, b in combinations(X.columns, 2):
        r, p = stats.pearsonr(X[a], X[b])
        rows.append({"feature1": a, "feature2": b, "r": float(r), "p_value": float(p)})
    return pd.DataFrame(rows, columns=["feature1", "feature2", "r", "p_value"])


def point_biserial(df: pd.DataFrame) -> pd.DataFrame:
    """Correlation of each predictor with the quotation/noise label."""
    X = predictor_matrix(df)
    y = (df[LABEL_COLUMN] == POSITIVE_LABEL).astype(int).to_numpy()
    rows = []
    for col in X.columns:
        r, p = stats.pointbiserialr(y, X[col].to_numpy())
        rows.append({"feature": col, "r": float(r), "p_value": float(p)})
    result = pd.DataFrame(rows, columns=["feature", "r", "p_value"])
    return result.sort_values("r", key=np.abs, ascending=False).reset_index(drop=True)


def highly_correlated(corr: pd.DataFrame, cutoff: float = 0.9) -> list[tuple[str, str, float]]:
    """Predictor pairs whose absolute correlation is at least ``cutoff``."""
    pairs = []
    for a, b in combinations(corr.columns, 2):
        r = corr.loc[a, b]
        if abs(r) >= cutoff:
            pairs.append((a, b, float(r)))
    pairs.sort(key=lambda x: -abs(x[2]))
    if pairs:
        logger.info(f"{len(pairs)} predictor pairs with |r| >= {cutoff}")
    return pairs
