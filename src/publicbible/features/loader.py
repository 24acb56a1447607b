"""
Feature Table Loader
====================

Loads and cleans the precomputed feature tables for verse/page candidate
pairs. Each row pairs a Bible verse reference with a newspaper page
identifier and carries the numeric features the upstream matcher computed:

    token_count     - number of verse n-grams found on the page
    tf              - term frequency of the matching n-grams
    tfidf           - tf-idf weighted count of the matching n-grams
    proportion      - share of the verse's n-grams that matched
    position_sd     - standard deviation of match positions on the page
    position_range  - spread between first and last match position
    runs_pval       - p-value of a runs test on match positions

The labeled table additionally carries a boolean ``match`` column recording
whether a human judged the pair to be a real quotation.

When only one token matched, the positional spread is undefined and the
upstream matcher leaves ``position_sd`` and ``position_range`` empty; they
are filled with zero here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

ID_COLUMNS = ["reference", "page"]
LABEL_COLUMN = "match"
FEATURE_COLUMNS = [
    "token_count",
    "tf",
    "tfidf",
    "proportion",
    "position_sd",
    "position_range",
    "runs_pval",
]
POSITION_COLUMNS = ["position_sd", "position_range"]

# Factor level order matters: "quotation" is the positive class everywhere.
LABEL_LEVELS = ("quotation", "noise")
POSITIVE_LABEL = LABEL_LEVELS[0]

_READERS = {
    ".csv": pd.read_csv,
    ".feather": pd.read_feather,
    ".parquet": pd.read_parquet,
}


def read_table(path: str | Path) -> pd.DataFrame:
    """Read a columnar table, dispatching on the file suffix."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature table not found: {path}")

    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(
            f"Unsupported table format '{path.suffix}' "
            f"(expected one of {sorted(_READERS)})"
        )
    return reader(path)


def _require_columns(df: pd.DataFrame, columns: list[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{what} is missing required columns: {missing}")


def load_labeled(path: str | Path) -> pd.DataFrame:
    """Load the hand-labeled feature table."""
    df = read_table(path)
    _require_columns(df, ID_COLUMNS + [LABEL_COLUMN] + FEATURE_COLUMNS, "Labeled table")
    logger.info(f"Loaded {len(df)} labeled pairs from {path}")
    return df


def load_unlabeled(path: str | Path) -> pd.DataFrame:
    """Load a feature table without the ``match`` label."""
    df = read_table(path)
    _require_columns(df, ID_COLUMNS + FEATURE_COLUMNS, "Unlabeled table")
    logger.info(f"Loaded {len(df)} unlabeled pairs from {path}")
    return df


def clean_features(df: pd.DataFrame) -> pd.DataFrame:
    """
    Impute the positional features and relabel the match column.

    Returns a new frame; the input is left untouched.

    Raises:
        TypeError: if the ``match`` column is present but not boolean.
    """
    out = df.copy()

    for col in POSITION_COLUMNS:
        if col in out.columns:
            n_missing = int(out[col].isna().sum())
            if n_missing:
                logger.debug(f"Filling {n_missing} missing {col} values with 0")
            out[col] = out[col].fillna(0)

    if LABEL_COLUMN in out.columns:
        if not pd.api.types.is_bool_dtype(out[LABEL_COLUMN]):
            raise TypeError(
                f"Column '{LABEL_COLUMN}' must be boolean, "
                f"got {out[LABEL_COLUMN].dtype}"
            )
        relabeled = out[LABEL_COLUMN].map({True: LABEL_LEVELS[0], False: LABEL_LEVELS[1]})
        out[LABEL_COLUMN] = pd.Categorical(
            relabeled, categories=list(LABEL_LEVELS), ordered=True,
        )

    return out


def predictor_matrix(df: pd.DataFrame, columns: Optional[list[str]] = None) -> pd.DataFrame:
    """
    Numeric predictors only: identifying and label columns dropped.

    Pass ``columns`` to project onto a fixed predictor set in a fixed
    order, e.g. the columns a model was trained on.
    """
    if columns is not None:
        _require_columns(df, columns, "Feature table")
        return df[columns]
    dropped = [c for c in ID_COLUMNS + [LABEL_COLUMN] if c in df.columns]
    return df.drop(columns=dropped).select_dtypes("number")


def labels(df: pd.DataFrame) -> pd.Series:
    return df[LABEL_COLUMN]


def class_balance(df: pd.DataFrame) -> dict[str, int]:
    """Number of pairs per label level, in level order."""
    counts = df[LABEL_COLUMN].value_counts()
    return {level: int(counts.get(level, 0)) for level in LABEL_LEVELS}
