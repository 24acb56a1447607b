"""
Configuration
=============

Central configuration for the quotation classifier pipeline.
Loads from YAML config files with sensible defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class DataConfig:
    """Input feature tables."""
    labeled_path: str = "data/labeled-features.feather"
    unlabeled_path: Optional[str] = "data/all-features.feather"
    verses_path: Optional[str] = "data/verses.csv"


@dataclass
class SplitConfig:
    """Train/test partition of the labeled pairs."""
    train_fraction: float = 0.7
    seed: int = 7260


@dataclass
class ResamplingConfig:
    """Resampling indices shared by every model."""
    n_folds: int = 10
    n_repeats: int = 5
    n_bootstrap: int = 25
    seed: int = 7260


@dataclass
class TrainingConfig:
    """Model families to tune and how."""
    models: list[str] = field(default_factory=lambda: [
        "rf", "pls", "svm_linear", "nnet", "knn", "tree",
    ])
    metric: str = "roc_auc"
    n_jobs: int = 4
    fast: bool = False


@dataclass
class EnsembleConfig:
    """Which models survive into the ensemble."""
    n_members: int = 3
    members: Optional[list[str]] = None  # explicit list overrides n_members
    iterations: int = 100


@dataclass
class CorpusConfig:
    """Verse corpus tokenization for the output bundle."""
    ngram_min: int = 4
    ngram_max: int = 5


@dataclass
class AuditConfig:
    """Batch conversion completeness audit."""
    archive_dir: Optional[str] = None
    conversion_log: Optional[str] = None
    jobs_file: Optional[str] = None
    converted_dir: Optional[str] = None
    sample_size: int = 100
    max_files: int = 10
    seed: int = 42


@dataclass
class AnalysisConfig:
    """Analysis and output configuration."""
    output_dir: str = "output"
    generate_plots: bool = True
    correlation_cutoff: float = 0.9
    bundle_name: str = "prediction-payload.joblib"


@dataclass
class PipelineConfig:
    """Master configuration for the full pipeline."""
    data: DataConfig = field(default_factory=DataConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    resampling: ResamplingConfig = field(default_factory=ResamplingConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    ensemble: EnsembleConfig = field(default_factory=EnsembleConfig)
    corpus: CorpusConfig = field(default_factory=CorpusConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    # Pipeline control: which phases to run
    phases: list[str] = field(default_factory=lambda: [
        "features",
        "diagnostics",
        "split",
        "train",
        "evaluate",
        "ensemble",
        "predict",
        "persist",
        "audit",
    ])

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "data" in data:
            config.data = DataConfig(**data["data"])
        if "split" in data:
            config.split = SplitConfig(**data["split"])
        if "resampling" in data:
            config.resampling = ResamplingConfig(**data["resampling"])
        if "training" in data:
            config.training = TrainingConfig(**data["training"])
        if "ensemble" in data:
            config.ensemble = EnsembleConfig(**data["ensemble"])
        if "corpus" in data:
            config.corpus = CorpusConfig(**data["corpus"])
        if "audit" in data:
            config.audit = AuditConfig(**data["audit"])
        if "analysis" in data:
            config.analysis = AnalysisConfig(**data["analysis"])
        if "phases" in data:
            config.phases = data["phases"]

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        import dataclasses
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = dataclasses.asdict(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
