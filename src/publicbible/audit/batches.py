"""
Batch Conversion Audit
======================

Checks that the OCR newspaper corpus was converted completely.

Chronicling America distributes OCR text in batches, one compressed archive
per batch (``batch_<id>.tar.bz2``). Each batch was converted to a table of
pages by a separate cluster job, and every successful conversion was
appended to a log. The audit answers three questions:

    1. Which archived batches never made it into a converted table?
       (the set difference of archived and logged batch ids)
    2. How many conversion jobs were submitted compared to how many
       succeeded?
    3. How complete is the page metadata in the converted tables?
       (missing values per metadata column over a fixed row sample)

Failures are reported, not repaired: a batch that crashed its conversion
job has to be resubmitted by hand.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from ..config import AuditConfig
from ..features.loader import read_table

logger = logging.getLogger(__name__)

BATCH_ID_RE = re.compile(r"\b(?:batch_)?(?P<batch>[a-z]+_[a-z0-9]+_ver\d+)\b")
ARCHIVE_SUFFIX = ".tar.bz2"
TABLE_SUFFIXES = (".feather", ".csv", ".parquet")
METADATA_COLUMNS = ["pageid", "batch_id", "publication", "date", "edition", "page"]


def _batch_id(text: str) -> Optional[str]:
    match = BATCH_ID_RE.search(text)
    return match["batch"] if match else None


def archive_batches(directory: str | Path) -> list[str]:
    """Batch ids of the compressed OCR archives in ``directory``."""
    directory = Path(directory)
    batches = set()
    for path in directory.iterdir():
        if not path.name.endswith(ARCHIVE_SUFFIX):
            continue
        batch = _batch_id(path.name[: -len(ARCHIVE_SUFFIX)])
        if batch is None:
            logger.warning(f"Unrecognized archive name: {path.name}")
            continue
        batches.add(batch)
    return sorted(batches)


def converted_batches(log_path: str | Path) -> list[str]:
    """Batch ids recorded as successfully converted in the conversion log."""
    batches = set()
    with open(log_path) as f:
        for line in f:
            batch = _batch_id(line)
            if batch is not None:
                batches.add(batch)
    return sorted(batches)


def submitted_jobs(path: str | Path) -> list[str]:
    """Job identifiers, one per line; blanks and ``#`` comments skipped."""
    jobs = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                jobs.append(line)
    return jobs


def unconverted_batches(archived: list[str], converted: list[str]) -> list[str]:
    """Archived batches with no recorded conversion."""
    return sorted(set(archived) - set(converted))


def converted_tables(directory: str | Path) -> list[Path]:
    directory = Path(directory)
    return sorted(p for p in directory.iterdir() if p.suffix.lower() in TABLE_SUFFIXES)


def sample_metadata(
    directory: str | Path,
    sample_size: int = 100,
    seed: Optional[int] = None,
    max_files: int = 10,
) -> pd.DataFrame:
    """
    Fixed random sample of page metadata from the converted tables.

    Up to ``max_files`` converted tables are picked at random, their
    metadata columns pooled, and ``sample_size`` rows drawn. When the
    tables hold fewer rows than that, every row is returned.
    """
    tables = converted_tables(directory)
    if not tables:
        raise FileNotFoundError(f"No converted tables found in {directory}")

    rng = np.random.default_rng(seed)
    if len(tables) > max_files:
        picked = sorted(rng.choice(len(tables), size=max_files, replace=False))
        tables = [tables[i] for i in picked]

    frames = []
    for path in tables:
        df = read_table(path)
        missing = [c for c in METADATA_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"{path.name} is missing metadata columns: {missing}")
        frames.append(df[METADATA_COLUMNS])
    pages = pd.concat(frames, ignore_index=True)

    n = min(sample_size, len(pages))
    return pages.sample(n=n, random_state=seed) if n < len(pages) else pages


def count_missing(sample: pd.DataFrame) -> dict[str, int]:
    """Nulls and empty strings per metadata column."""
    missing = sample[METADATA_COLUMNS].isna()
    for col in METADATA_COLUMNS:
        if pd.api.types.is_object_dtype(sample[col]) or pd.api.types.is_string_dtype(sample[col]):
            missing[col] |= sample[col].astype(str).str.strip().eq("")
    counts = missing.sum()
    return {col: int(counts[col]) for col in METADATA_COLUMNS}


def missing_value_counts(
    directory: str | Path,
    sample_size: int = 100,
    seed: Optional[int] = None,
    max_files: int = 10,
) -> dict[str, int]:
    """
    Count missing metadata values over a fixed random sample of pages.

    Returns:
        Metadata column -> number of missing values in the sample.
    """
    sample = sample_metadata(directory, sample_size=sample_size, seed=seed, max_files=max_files)
    return count_missing(sample)


@dataclass
class AuditReport:
    """Completeness of the batch conversion."""
    n_archived: int = 0
    n_converted: int = 0
    unconverted: list[str] = field(default_factory=list)
    n_jobs_submitted: Optional[int] = None
    missing_values: dict[str, int] = field(default_factory=dict)
    sample_size: int = 0

    @property
    def n_failed_jobs(self) -> Optional[int]:
        if self.n_jobs_submitted is None:
            return None
        return max(0, self.n_jobs_submitted - self.n_converted)

    def summary(self) -> dict:
        return {
            "n_archived": self.n_archived,
            "n_converted": self.n_converted,
            "unconverted": self.unconverted,
            "n_jobs_submitted": self.n_jobs_submitted,
            "n_failed_jobs": self.n_failed_jobs,
            "missing_values": self.missing_values,
            "sample_size": self.sample_size,
        }


def audit_corpus(config: AuditConfig) -> AuditReport:
    """Run every check whose inputs are configured."""
    report = AuditReport()

    archived: list[str] = []
    converted: list[str] = []
    if config.archive_dir:
        archived = archive_batches(config.archive_dir)
        report.n_archived = len(archived)
    if config.conversion_log:
        converted = converted_batches(config.conversion_log)
        report.n_converted = len(converted)
    if config.archive_dir and config.conversion_log:
        report.unconverted = unconverted_batches(archived, converted)
        if report.unconverted:
            logger.warning(
                f"{len(report.unconverted)} archived batches were never converted: "
                f"{report.unconverted}"
            )

    if config.jobs_file:
        report.n_jobs_submitted = len(submitted_jobs(config.jobs_file))

    if config.converted_dir:
        sample = sample_metadata(
            config.converted_dir,
            sample_size=config.sample_size,
            seed=config.seed,
            max_files=config.max_files,
        )
        report.missing_values = count_missing(sample)
        report.sample_size = len(sample)

    logger.info(
        f"Audit: {report.n_archived} archived, {report.n_converted} converted, "
        f"{len(report.unconverted)} missing"
    )
    return report
