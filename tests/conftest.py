"""
Shared fixtures.

Tests run on a small synthetic feature table in which quotations have
many matching n-grams close together on the page and noise has few,
scattered ones, so every classifier can separate the two quickly.
"""

import numpy as np
import pandas as pd
import pytest

from publicbible.features.loader import clean_features


def make_feature_table(n: int = 160, seed: int = 0) -> pd.DataFrame:
    """Raw labeled feature table, as the upstream matcher writes it."""
    rng = np.random.default_rng(seed)
    match = rng.random(n) < 0.4

    token_count = np.where(match, rng.integers(3, 15, n), rng.integers(1, 4, n))
    tf = token_count * rng.uniform(0.8, 1.2, n)
    tfidf = tf * rng.uniform(1.5, 2.5, n)
    proportion = np.where(match, rng.uniform(0.4, 1.0, n), rng.uniform(0.0, 0.3, n))
    position_sd = np.where(match, rng.uniform(0, 30, n), rng.uniform(100, 500, n))
    position_range = position_sd * rng.uniform(2, 4, n)
    runs_pval = np.where(match, rng.uniform(0, 0.1, n), rng.uniform(0, 1, n))

    # A single matching token has no positional spread
    single = token_count == 1
    position_sd[single] = np.nan
    position_range[single] = np.nan

    return pd.DataFrame({
        "reference": [f"John 3:{i % 30 + 1}" for i in range(n)],
        "page": [f"sn{i:05d}/1880-01-0{i % 9 + 1}/ed-1/seq-{i % 8 + 1}" for i in range(n)],
        "token_count": token_count,
        "tf": tf,
        "tfidf": tfidf,
        "proportion": proportion,
        "position_sd": position_sd,
        "position_range": position_range,
        "runs_pval": runs_pval,
        "match": match,
    })


VERSES = [
    ("Genesis 1:1", "In the beginning God created the heaven and the earth."),
    ("Genesis 1:3", "And God said, Let there be light: and there was light."),
    ("Psalms 23:1", "The LORD is my shepherd; I shall not want."),
    ("John 3:16", "For God so loved the world, that he gave his only begotten Son."),
    ("John 11:35", "Jesus wept."),
    ("1 Corinthians 13:13", "And now abideth faith, hope, charity, these three; but the greatest of these is charity."),
]


@pytest.fixture
def raw_features() -> pd.DataFrame:
    return make_feature_table()


@pytest.fixture
def features(raw_features) -> pd.DataFrame:
    return clean_features(raw_features)


@pytest.fixture
def verse_rows() -> list[tuple[str, str]]:
    return list(VERSES)


@pytest.fixture
def verses_csv(tmp_path, verse_rows):
    path = tmp_path / "verses.csv"
    pd.DataFrame(verse_rows, columns=["reference", "text"]).to_csv(path, index=False)
    return path
