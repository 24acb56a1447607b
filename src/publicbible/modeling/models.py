"""
Model Registry
==============

The six classifier families compared for the quotation/noise decision.
Every family is wrapped in the same two-step scikit-learn pipeline,
center/scale standardization followed by the estimator, and comes with a
full tuning grid plus a small "fast" grid for quick runs and tests.

    rf          random forest
    pls         partial least squares discriminant analysis
    svm_linear  support vector machine with a linear kernel
    nnet        single-hidden-layer neural network
    knn         k-nearest neighbors
    tree        CART decision tree (cost-complexity pruned)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
from scipy.special import softmax
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.cross_decomposition import PLSRegression
from sklearn.ensemble import RandomForestClassifier
from sklearn.neighbors import KNeighborsClassifier
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import LabelBinarizer, StandardScaler
from sklearn.svm import SVC
from sklearn.tree import DecisionTreeClassifier
from sklearn.utils.validation import check_is_fitted

from ..features.loader import POSITIVE_LABEL


class PLSClassifier(ClassifierMixin, BaseEstimator):
    """Partial least squares discriminant analysis.

    Regresses the one-hot class indicator matrix on the predictors and
    turns the fitted responses into class probabilities with a softmax.

    params:
      - n_components: number of PLS components
      - max_iter: NIPALS iteration limit
    """

    def __init__(self, n_components: int = 2, max_iter: int = 500):
        self.n_components = n_components
        self.max_iter = max_iter

    def fit(self, X, y):
        self._binarizer = LabelBinarizer()
        Y = self._binarizer.fit_transform(y)
        self.classes_ = self._binarizer.classes_
        # LabelBinarizer gives a single column for two classes
        if Y.shape[1] == 1:
            Y = np.hstack([1 - Y, Y])
        self.pls_ = PLSRegression(n_components=self.n_components, max_iter=self.max_iter)
        self.pls_.fit(X, Y)
        return self

    def predict_proba(self, X):
        check_is_fitted(self, "pls_")
        return softmax(self.pls_.predict(X), axis=1)

    def predict(self, X):
        proba = self.predict_proba(X)
        return self.classes_[np.argmax(proba, axis=1)]


@dataclass
class ModelFamily:
    """One classifier family: how to build it and what to tune."""
    name: str
    label: str
    factory: Callable[[Optional[int]], BaseEstimator]
    grid: dict[str, list[Any]]
    fast_grid: dict[str, list[Any]]


MODEL_FAMILIES: dict[str, ModelFamily] = {
    "rf": ModelFamily(
        name="rf",
        label="Random forest",
        factory=lambda seed: RandomForestClassifier(n_estimators=500, random_state=seed),
        grid={"max_features": [1, 2, 4, 7]},
        fast_grid={"max_features": [2], "n_estimators": [50]},
    ),
    "pls": ModelFamily(
        name="pls",
        label="Partial least squares",
        factory=lambda seed: PLSClassifier(),
        grid={"n_components": [1, 2, 3, 4, 5]},
        fast_grid={"n_components": [1, 2]},
    ),
    "svm_linear": ModelFamily(
        name="svm_linear",
        label="Linear SVM",
        factory=lambda seed: SVC(kernel="linear", probability=True, random_state=seed),
        grid={"C": [0.01, 0.1, 1.0, 10.0]},
        fast_grid={"C": [1.0]},
    ),
    "nnet": ModelFamily(
        name="nnet",
        label="Neural network",
        factory=lambda seed: MLPClassifier(max_iter=1000, random_state=seed),
        grid={
            "hidden_layer_sizes": [(1,), (3,), (5,)],
            "alpha": [0.0, 1e-4, 0.1],
        },
        fast_grid={"hidden_layer_sizes": [(3,)], "alpha": [1e-4], "max_iter": [300]},
    ),
    "knn": ModelFamily(
        name="knn",
        label="k-nearest neighbors",
        factory=lambda seed: KNeighborsClassifier(),
        grid={"n_neighbors": [5, 7, 9, 11, 13]},
        fast_grid={"n_neighbors": [5]},
    ),
    "tree": ModelFamily(
        name="tree",
        label="Decision tree",
        factory=lambda seed: DecisionTreeClassifier(random_state=seed),
        grid={"ccp_alpha": [0.0, 0.001, 0.01, 0.05]},
        fast_grid={"ccp_alpha": [0.0, 0.01]},
    ),
}

ALIASES = {
    "randomforest": "rf",
    "random_forest": "rf",
    "plsda": "pls",
    "svm": "svm_linear",
    "svmlinear": "svm_linear",
    "nn": "nnet",
    "mlp": "nnet",
    "rpart": "tree",
    "cart": "tree",
}


def resolve_name(model: str) -> str:
    key = model.lower()
    key = ALIASES.get(key, key)
    if key not in MODEL_FAMILIES:
        raise ValueError(f"Unknown model: {model}")
    return key


def build_pipeline(model: str, seed: Optional[int] = None) -> Pipeline:
    """Center/scale followed by the family's estimator."""
    family = MODEL_FAMILIES[resolve_name(model)]
    return Pipeline([
        ("scale", StandardScaler()),
        ("model", family.factory(seed)),
    ])


def get_pipeline_and_grid(
    model: str,
    seed: Optional[int] = None,
    fast: bool = False,
) -> tuple[Pipeline, dict[str, list[Any]]]:
    """
    Return (pipeline, param_grid), the grid keyed for the pipeline's
    ``model`` step so it can go straight into a grid search.
    """
    family = MODEL_FAMILIES[resolve_name(model)]
    grid = family.fast_grid if fast else family.grid
    return build_pipeline(model, seed), {f"model__{k}": v for k, v in grid.items()}


def positive_proba(estimator, X) -> np.ndarray:
    """Probability of the "quotation" class from any fitted classifier."""
    proba = estimator.predict_proba(X)
    classes = list(estimator.classes_)
    return proba[:, classes.index(POSITIVE_LABEL)]
