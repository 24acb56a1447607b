"""
Verse Corpus Loader
===================

Loads the Bible verses that newspaper pages are matched against, and builds
the n-gram tokenizer and document-term matrix that the downstream scoring
script reuses.

Two input formats are supported:

    CSV   one row per verse with ``reference`` and ``text`` columns, the
          reference written as "Book chapter:verse" (e.g. "John 3:16")
    JSON  {"books": [{"name": "John",
                      "verses": [{"chapter": 3, "verse": 16, "text": "..."}]}]}

Tokenization:
    Text is lowercased and split into alphabetic word tokens; the tokens are
    then joined into overlapping word n-grams. OCR noise rarely reproduces a
    run of four or five consecutive words by accident, so longer n-grams
    make a verse's vocabulary far more specific than single words would.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd
from nltk.tokenize import RegexpTokenizer
from nltk.util import ngrams
from scipy.sparse import csr_matrix
from sklearn.feature_extraction.text import CountVectorizer

logger = logging.getLogger(__name__)

REFERENCE_RE = re.compile(r"^(?P<book>.+?)\s+(?P<chapter>\d+):(?P<verse>\d+)$")


# ---------------------------------------------------------------------------
# Tokenization
# ---------------------------------------------------------------------------

class NgramTokenizer:
    """
    Word n-gram tokenizer.

    Callable on a string, returning every word n-gram for n in
    ``[n_min, n_max]``, the words of each n-gram joined by a space.
    Instances are picklable so the tokenizer can be persisted alongside
    the model that depends on it.
    """

    def __init__(self, n_min: int = 4, n_max: int = 5, pattern: str = r"[a-z]+"):
        if n_min < 1 or n_max < n_min:
            raise ValueError(f"Invalid n-gram range ({n_min}, {n_max})")
        self.n_min = n_min
        self.n_max = n_max
        self.pattern = pattern
        self._words = RegexpTokenizer(pattern)

    def words(self, text: str) -> list[str]:
        return self._words.tokenize(text.lower())

    def __call__(self, text: str) -> list[str]:
        words = self.words(text)
        grams: list[str] = []
        for n in range(self.n_min, self.n_max + 1):
            grams.extend(" ".join(g) for g in ngrams(words, n))
        return grams

    def __repr__(self) -> str:
        return f"NgramTokenizer(n_min={self.n_min}, n_max={self.n_max})"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Verse:
    """A single Bible verse."""
    book: str
    chapter: int
    verse: int
    text: str

    @property
    def reference(self) -> str:
        return f"{self.book} {self.chapter}:{self.verse}"

    @classmethod
    def from_reference(cls, reference: str, text: str) -> Verse:
        match = REFERENCE_RE.match(reference.strip())
        if match is None:
            raise ValueError(f"Unparseable verse reference: {reference!r}")
        return cls(
            book=match["book"],
            chapter=int(match["chapter"]),
            verse=int(match["verse"]),
            text=text,
        )


@dataclass
class DocumentTermMatrix:
    """Verse-by-n-gram count matrix with its vocabulary and vectorizer."""
    matrix: csr_matrix
    vocabulary: list[str]
    references: list[str]
    vectorizer: CountVectorizer

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape


class VerseCorpus:
    """The verses that candidate quotations are matched against."""

    def __init__(self, verses: list[Verse]):
        self.verses = verses
        self._by_reference = {v.reference: v for v in verses}
        if len(self._by_reference) != len(verses):
            logger.warning("Duplicate verse references in corpus")

    def __len__(self) -> int:
        return len(self.verses)

    def get(self, reference: str) -> Optional[Verse]:
        return self._by_reference.get(reference)

    @property
    def references(self) -> list[str]:
        return [v.reference for v in self.verses]

    @property
    def texts(self) -> list[str]:
        return [v.text for v in self.verses]

    @property
    def books(self) -> list[str]:
        seen: dict[str, None] = {}
        for v in self.verses:
            seen.setdefault(v.book, None)
        return list(seen)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"reference": self.references, "text": self.texts})

    def document_term_matrix(self, tokenizer: NgramTokenizer) -> DocumentTermMatrix:
        """Count every tokenizer n-gram in every verse."""
        vectorizer = CountVectorizer(analyzer=tokenizer)
        matrix = vectorizer.fit_transform(self.texts)
        vocabulary = vectorizer.get_feature_names_out().tolist()
        logger.info(
            f"Document-term matrix: {matrix.shape[0]} verses x "
            f"{matrix.shape[1]} n-grams ({matrix.nnz} non-zero)"
        )
        return DocumentTermMatrix(
            matrix=matrix.tocsr(),
            vocabulary=vocabulary,
            references=self.references,
            vectorizer=vectorizer,
        )

    def summary(self) -> dict:
        return {
            "verses": len(self.verses),
            "books": len(self.books),
        }

    @classmethod
    def from_csv(cls, path: str | Path) -> VerseCorpus:
        df = pd.read_csv(path)
        missing = {"reference", "text"} - set(df.columns)
        if missing:
            raise ValueError(f"Verse table is missing columns: {sorted(missing)}")
        verses = [
            Verse.from_reference(ref, text)
            for ref, text in zip(df["reference"], df["text"].fillna(""))
        ]
        return cls(verses)

    @classmethod
    def from_json(cls, path: str | Path) -> VerseCorpus:
        path = Path(path)
        with open(path) as f:
            data = json.load(f)

        verses = [
            Verse(
                book=book["name"],
                chapter=int(v["chapter"]),
                verse=int(v["verse"]),
                text=v["text"],
            )
            for book in data["books"]
            for v in book["verses"]
        ]
        return cls(verses)

    @classmethod
    def load(cls, path: str | Path) -> VerseCorpus:
        """Load from CSV or JSON depending on the file suffix."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Verse file not found: {path}")
        if path.suffix.lower() == ".json":
            corpus = cls.from_json(path)
        elif path.suffix.lower() == ".csv":
            corpus = cls.from_csv(path)
        else:
            raise ValueError(f"Unsupported verse file format: {path.suffix}")
        logger.info(f"Loaded {len(corpus)} verses from {path}")
        return corpus
