"""
Prediction payload: the trained ensemble plus the verse corpus objects a
separate scoring script needs to match and classify new newspaper pages.
"""

from __future__ import annotations

import logging
from pathlib import Path

import joblib

logger = logging.getLogger(__name__)

BUNDLE_KEYS = ("model", "verses", "dtm", "vocabulary", "tokenizer")


def save_bundle(path, model, verses, dtm, vocabulary, tokenizer) -> Path:
    """Write the payload uncompressed, so the scoring script loads it quickly."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "model": model,
        "verses": verses,
        "dtm": dtm,
        "vocabulary": vocabulary,
        "tokenizer": tokenizer,
    }
    joblib.dump(payload, path, compress=0)
    logger.info(f"Saved prediction payload to {path}")
    return path


def load_bundle(path) -> dict:
    payload = joblib.load(Path(path))
    missing = [k for k in BUNDLE_KEYS if k not in payload]
    if missing:
        raise ValueError(f"Prediction payload {path} is missing {missing}")
    return payload
