"""
Evaluation and Ensembling
=========================

Compares the tuned models, keeps the strongest few, and combines them into
a weighted ensemble.

Model comparison
    The per-resample ROC AUC of every model is summarized (min, quartiles,
    mean, max) and compared pairwise with a paired t-test over the shared
    resamples, Bonferroni-adjusted for the number of pairs.

Ensemble
    The surviving members are refit on each bootstrap in-bag set and
    predict their out-of-bag rows; these predictions are averaged per row.
    Member weights are then chosen by greedy forward selection with
    replacement, each step adding whichever member most improves the ROC
    AUC of the weighted average. The final ensemble is a soft-voting
    classifier over the members with those weights, refit on the whole
    training partition.

Held-out evaluation
    Class predictions and "quotation" probabilities on the test partition,
    summarized as a confusion matrix with the usual derived statistics,
    "quotation" being the positive class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.base import clone
from sklearn.ensemble import VotingClassifier
from sklearn.metrics import cohen_kappa_score, confusion_matrix, roc_auc_score

from ..features.loader import ID_COLUMNS, LABEL_LEVELS, POSITIVE_LABEL, predictor_matrix
from .models import positive_proba
from .resampling import ResamplingPlan
from .trainer import TrainedModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model comparison
# ---------------------------------------------------------------------------

def resample_summary(models: dict[str, TrainedModel]) -> pd.DataFrame:
    """Distribution of resampled ROC AUC per model."""
    rows = {}
    for name, model in models.items():
        s = model.resample_scores
        rows[name] = {
            "min": float(np.nanmin(s)),
            "q1": float(np.nanpercentile(s, 25)),
            "median": float(np.nanmedian(s)),
            "mean": float(np.nanmean(s)),
            "q3": float(np.nanpercentile(s, 75)),
            "max": float(np.nanmax(s)),
            "n_missing": int(np.isnan(s).sum()),
        }
    return pd.DataFrame.from_dict(rows, orient="index").sort_values("mean", ascending=False)


def compare_models(models: dict[str, TrainedModel]) -> pd.DataFrame:
    """
    Pairwise differences in resampled ROC AUC.

    Resamples are shared, so each pair is tested with a paired t-test;
    p-values are Bonferroni-adjusted across all pairs.
    """
    pairs = list(combinations(models, 2))
    rows = []
    for a, b in pairs:
        sa, sb = models[a].resample_scores, models[b].resample_scores
        if len(sa) != len(sb):
            raise ValueError(f"Models {a} and {b} were scored on different resamples")
        diff = sa - sb
        if np.allclose(diff, diff[0]):
            t, p = np.nan, np.nan
        else:
            t, p = stats.ttest_rel(sa, sb)
        rows.append({
            "model1": a,
            "model2": b,
            "mean_diff": float(np.mean(diff)),
            "t_statistic": float(t),
            "p_value": float(p),
            "p_adjusted": float(min(1.0, p * len(pairs))) if not np.isnan(p) else np.nan,
        })
    return pd.DataFrame(
        rows,
        columns=["model1", "model2", "mean_diff", "t_statistic", "p_value", "p_adjusted"],
    )


def model_correlation(models: dict[str, TrainedModel]) -> pd.DataFrame:
    """Correlation of the resampled scores between models."""
    scores = pd.DataFrame({name: m.resample_scores for name, m in models.items()})
    return scores.corr()


def select_members(
    models: dict[str, TrainedModel],
    n_members: int = 3,
    names: Optional[list[str]] = None,
) -> list[str]:
    """
    Pick the ensemble members.

    An explicit ``names`` list wins; otherwise the ``n_members`` models with
    the highest mean resampled ROC AUC are kept.
    """
    if names:
        unknown = [n for n in names if n not in models]
        if unknown:
            raise ValueError(f"Ensemble members were not trained: {unknown}")
        return list(names)

    if n_members < 1:
        raise ValueError("An ensemble needs at least one member")

    ranked = sorted(models.values(), key=lambda m: -m.mean_score)
    kept = [m.name for m in ranked[:n_members]]
    dropped = [m.name for m in ranked[n_members:]]
    logger.info(f"Ensemble members: {kept}; discarded: {dropped}")
    return kept


# ---------------------------------------------------------------------------
# Ensemble construction
# ---------------------------------------------------------------------------

def out_of_bag_predictions(
    model: TrainedModel,
    X,
    y,
    plan: ResamplingPlan,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Refit ``model`` on every bootstrap in-bag set and predict out-of-bag.

    Returns:
        (oob_proba, resample_auc): the per-row mean out-of-bag probability
        of "quotation" (NaN for rows never out of bag), and the ROC AUC on
        each resample's out-of-bag rows.
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y).astype(str)
    sums = np.zeros(len(y))
    counts = np.zeros(len(y))
    aucs = []

    for i, (in_bag, oob) in enumerate(plan.bootstrap_splits):
        est = clone(model.estimator)
        est.fit(X[in_bag], y[in_bag])
        p = positive_proba(est, X[oob])
        sums[oob] += p
        counts[oob] += 1

        y_oob = y[oob] == POSITIVE_LABEL
        aucs.append(roc_auc_score(y_oob, p) if 0 < y_oob.sum() < len(y_oob) else np.nan)
        logger.debug(f"  {model.name}: bootstrap {i + 1}/{plan.n_bootstrap}")

    with np.errstate(invalid="ignore", divide="ignore"):
        proba = np.where(counts > 0, sums / counts, np.nan)
    return proba, np.array(aucs)


def greedy_weights(
    predictions: pd.DataFrame,
    y,
    iterations: int = 100,
) -> dict[str, float]:
    """
    Greedy forward selection (with replacement) of ensemble weights.

    Args:
        predictions: One column of "quotation" probabilities per member.
            Rows with any missing value are ignored.
        y: True labels aligned with ``predictions``.
        iterations: Number of selection steps.

    Returns:
        Member name -> non-negative weight, weights summing to one.
    """
    if iterations < 1:
        raise ValueError("Greedy weighting needs at least one iteration")

    y_pos = np.asarray(y).astype(str) == POSITIVE_LABEL
    mask = predictions.notna().all(axis=1).to_numpy()
    P = predictions.to_numpy()[mask]
    y_pos = y_pos[mask]
    if y_pos.sum() == 0 or y_pos.sum() == len(y_pos):
        raise ValueError("Both classes are needed among the scored rows to fit weights")

    n_models = P.shape[1]
    counts = np.zeros(n_models)
    running = np.zeros(P.shape[0])

    for step in range(iterations):
        best_auc, best_j = -np.inf, 0
        for j in range(n_models):
            auc = roc_auc_score(y_pos, (running + P[:, j]) / (step + 1))
            if auc > best_auc:
                best_auc, best_j = auc, j
        counts[best_j] += 1
        running += P[:, best_j]

    weights = counts / counts.sum()
    return {name: float(w) for name, w in zip(predictions.columns, weights)}


@dataclass
class QuotationEnsemble:
    """A weighted soft-voting ensemble over the surviving models."""
    members: list[str]
    weights: dict[str, float]
    estimator: VotingClassifier
    oob_roc_auc: float = float("nan")
    member_oob_roc_auc: dict[str, float] = field(default_factory=dict)

    def predict(self, X):
        return self.estimator.predict(np.asarray(X, dtype=float))

    def predict_proba(self, X):
        return self.estimator.predict_proba(np.asarray(X, dtype=float))

    @property
    def classes_(self):
        return self.estimator.classes_

    def summary(self) -> dict:
        return {
            "members": self.members,
            "weights": self.weights,
            "oob_roc_auc": self.oob_roc_auc,
            "member_oob_roc_auc": self.member_oob_roc_auc,
        }


def build_ensemble(
    models: dict[str, TrainedModel],
    members: list[str],
    X,
    y,
    plan: ResamplingPlan,
    iterations: int = 100,
    n_jobs: Optional[int] = None,
) -> QuotationEnsemble:
    """Fit greedy ROC-optimal weights on out-of-bag predictions, then refit."""
    X = np.asarray(X, dtype=float)
    y = np.asarray(y).astype(str)

    oob = {}
    member_auc = {}
    for name in members:
        logger.info(f"Collecting out-of-bag predictions for {name}")
        proba, aucs = out_of_bag_predictions(models[name], X, y, plan)
        oob[name] = proba
        member_auc[name] = float(np.nanmean(aucs))

    oob_frame = pd.DataFrame(oob)
    weights = greedy_weights(oob_frame, y, iterations=iterations)

    mask = oob_frame.notna().all(axis=1).to_numpy()
    blended = oob_frame.to_numpy()[mask] @ np.array([weights[m] for m in members])
    oob_auc = float(roc_auc_score(y[mask] == POSITIVE_LABEL, blended))

    voter = VotingClassifier(
        estimators=[(name, clone(models[name].estimator)) for name in members],
        voting="soft",
        weights=[weights[name] for name in members],
        n_jobs=n_jobs,
    )
    voter.fit(X, y)

    logger.info(f"Ensemble weights {weights}, out-of-bag ROC AUC {oob_auc:.4f}")
    return QuotationEnsemble(
        members=list(members),
        weights=weights,
        estimator=voter,
        oob_roc_auc=oob_auc,
        member_oob_roc_auc=member_auc,
    )


# ---------------------------------------------------------------------------
# Held-out evaluation and prediction
# ---------------------------------------------------------------------------

def _ratio(num: float, den: float) -> float:
    return float(num / den) if den else float("nan")


@dataclass
class EvaluationResult:
    """Confusion matrix and derived statistics on labeled data."""
    confusion: pd.DataFrame
    metrics: dict[str, float]
    predictions: np.ndarray
    probabilities: np.ndarray

    def summary(self) -> dict:
        return {
            "confusion_matrix": {
                str(actual): {str(k): int(v) for k, v in row.items()}
                for actual, row in self.confusion.iterrows()
            },
            "metrics": self.metrics,
        }


def evaluate(model, X, y) -> EvaluationResult:
    """
    Score a fitted classifier on labeled data.

    The confusion matrix rows are the true labels and the columns the
    predicted labels, both in ("quotation", "noise") order.
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y).astype(str)
    y_pred = np.asarray(model.predict(X)).astype(str)
    proba = positive_proba(model, X)

    levels = list(LABEL_LEVELS)
    cm = confusion_matrix(y, y_pred, labels=levels)
    tp, fn = cm[0, 0], cm[0, 1]
    fp, tn = cm[1, 0], cm[1, 1]
    n = cm.sum()

    sensitivity = _ratio(tp, tp + fn)
    specificity = _ratio(tn, tn + fp)
    y_pos = y == POSITIVE_LABEL
    metrics = {
        "accuracy": _ratio(tp + tn, n),
        "kappa": float(cohen_kappa_score(y, y_pred, labels=levels)),
        "sensitivity": sensitivity,
        "specificity": specificity,
        "pos_pred_value": _ratio(tp, tp + fp),
        "neg_pred_value": _ratio(tn, tn + fn),
        "prevalence": _ratio(tp + fn, n),
        "detection_rate": _ratio(tp, n),
        "balanced_accuracy": (sensitivity + specificity) / 2,
        "roc_auc": (
            float(roc_auc_score(y_pos, proba))
            if 0 < y_pos.sum() < len(y_pos) else float("nan")
        ),
    }

    confusion = pd.DataFrame(
        cm,
        index=pd.Index(levels, name="actual"),
        columns=pd.Index(levels, name="predicted"),
    )
    return EvaluationResult(
        confusion=confusion,
        metrics=metrics,
        predictions=y_pred,
        probabilities=proba,
    )


def predict_table(model, df: pd.DataFrame, columns: Optional[list[str]] = None) -> pd.DataFrame:
    """
    Classify every pair in a feature table.

    Returns the identifying columns with the predicted class and one
    probability column per class, e.g. ``prob_quotation``.
    """
    X = predictor_matrix(df, columns).to_numpy(dtype=float)
    proba = model.predict_proba(X)
    classes = [str(c) for c in model.classes_]

    out = df[[c for c in ID_COLUMNS if c in df.columns]].copy()
    out["prediction"] = pd.Categorical(
        np.asarray(model.predict(X)).astype(str),
        categories=list(LABEL_LEVELS),
    )
    for level in LABEL_LEVELS:
        out[f"prob_{level}"] = proba[:, classes.index(level)]
    return out
