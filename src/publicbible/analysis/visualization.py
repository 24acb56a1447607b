"""
Visualization Module
====================

Diagnostic plots for the quotation classifier.

Plot Types
----------
    Correlation Heatmap
        Clustered heatmap of the pairwise Pearson correlations between
        predictors. Hierarchical clustering groups near-duplicate features
        (e.g. ``tf`` / ``tfidf``) into visible blocks.

    Feature Scatterplot Matrix
        Pairwise scatterplots of the predictors, colored by label, to show
        how well quotations separate from noise on each pair of features.

    Model Comparison
        Box plots of the resampled ROC AUC per model family.

    Confusion Matrix
        Annotated heatmap of held-out predictions against true labels.

    Ensemble Weights
        Bar chart of the weight each surviving model carries.

Configuration
-------------
    All plots are saved to a configurable output directory. File format,
    DPI, and figure dimensions are controlled via ``PlotConfig``. The
    default style is seaborn's ``whitegrid`` theme.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server/CLI use
import matplotlib.pyplot as plt
import seaborn as sns

from ..features.loader import LABEL_COLUMN, LABEL_LEVELS, predictor_matrix

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass
class PlotConfig:
    """Configuration for plot aesthetics and output.

    Attributes:
        figsize: Default figure size as (width, height) in inches.
        dpi: Resolution for saved figures.
        file_format: Output file format ('png', 'pdf', 'svg').
        style: Seaborn style preset.
        palette: Seaborn color palette name.
        font_scale: Scaling factor for all font sizes.
        context: Seaborn context preset controlling element sizes.
        title_fontsize: Font size for plot titles.
        label_fontsize: Font size for axis labels.
        scatter_sample: Maximum rows drawn in the scatterplot matrix.
    """
    figsize: tuple[float, float] = (10, 7)
    dpi: int = 200
    file_format: str = "png"
    style: str = "whitegrid"
    palette: str = "deep"
    font_scale: float = 1.1
    context: str = "paper"
    title_fontsize: int = 14
    label_fontsize: int = 12
    scatter_sample: int = 2000


# ---------------------------------------------------------------------------
# Main visualizer class
# ---------------------------------------------------------------------------

class Visualizer:
    """
    Creates, styles, and saves every diagnostic plot.

    Each ``plot_*`` method saves its figure to the output directory and
    returns the path of the saved file.

    Examples
    --------
    >>> viz = Visualizer(output_dir="./figures")
    >>> viz.plot_correlation_heatmap(corr)
    >>> viz.plot_model_comparison(models)
    """

    def __init__(
        self,
        output_dir: str | Path = "./figures",
        config: Optional[PlotConfig] = None,
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.config = config or PlotConfig()

        sns.set_theme(
            style=self.config.style,
            palette=self.config.palette,
            font_scale=self.config.font_scale,
            context=self.config.context,
        )

    def _save_figure(
        self,
        fig: plt.Figure,
        filename: str,
        tight_layout: bool = True,
    ) -> Path:
        """Save a figure to the output directory and close it."""
        if tight_layout:
            fig.tight_layout()

        filepath = self.output_dir / f"{filename}.{self.config.file_format}"
        fig.savefig(
            filepath,
            dpi=self.config.dpi,
            format=self.config.file_format,
            bbox_inches="tight",
            facecolor="white",
            edgecolor="none",
        )
        plt.close(fig)
        logger.info(f"Saved plot: {filepath}")
        return filepath

    # ------------------------------------------------------------------
    # Predictor diagnostics
    # ------------------------------------------------------------------

    def plot_correlation_heatmap(
        self,
        corr: pd.DataFrame,
        filename: str = "correlation_heatmap",
        title: str = "Predictor correlations",
    ) -> Path:
        """
        Clustered heatmap of a correlation matrix.

        Rows and columns are reordered by hierarchical clustering so that
        strongly correlated predictors sit next to each other. Correlations
        undefined for a constant predictor are drawn as 0.
        """
        n = len(corr)
        size = max(6, n * 0.9 + 2)
        grid = sns.clustermap(
            corr.fillna(0.0),
            annot=True,
            fmt=".2f",
            cmap="RdBu_r",
            vmin=-1,
            vmax=1,
            center=0,
            linewidths=0.5,
            linecolor="white",
            figsize=(size, size),
            cbar_kws={"label": "Pearson r"},
        )
        grid.figure.suptitle(title, fontsize=self.config.title_fontsize, y=1.02)
        return self._save_figure(grid.figure, filename, tight_layout=False)

    def plot_feature_scatter(
        self,
        df: pd.DataFrame,
        filename: str = "feature_scatter",
        seed: int = 0,
    ) -> Path:
        """Scatterplot matrix of the predictors, colored by label."""
        X = predictor_matrix(df)
        data = X.assign(**{LABEL_COLUMN: df[LABEL_COLUMN].astype(str).to_numpy()})
        if len(data) > self.config.scatter_sample:
            data = data.sample(n=self.config.scatter_sample, random_state=seed)

        grid = sns.pairplot(
            data,
            hue=LABEL_COLUMN,
            hue_order=list(LABEL_LEVELS),
            corner=True,
            diag_kind="hist",
            plot_kws={"alpha": 0.4, "s": 10, "edgecolor": "none"},
        )
        return self._save_figure(grid.figure, filename, tight_layout=False)

    # ------------------------------------------------------------------
    # Model diagnostics
    # ------------------------------------------------------------------

    def plot_model_comparison(
        self,
        scores: dict[str, np.ndarray],
        filename: str = "model_comparison",
        title: str = "Resampled ROC AUC by model",
    ) -> Path:
        """Box plots of the per-resample ROC AUC, best model on top."""
        long = pd.DataFrame([
            {"model": name, "roc_auc": float(s)}
            for name, values in scores.items()
            for s in values
        ])
        order = (
            long.groupby("model")["roc_auc"].mean()
            .sort_values(ascending=False).index.tolist()
        )

        fig, ax = plt.subplots(figsize=self.config.figsize)
        sns.boxplot(data=long, x="roc_auc", y="model", order=order, ax=ax)
        sns.stripplot(
            data=long, x="roc_auc", y="model", order=order,
            color="black", size=3, alpha=0.4, ax=ax,
        )
        ax.set_xlabel("ROC AUC", fontsize=self.config.label_fontsize)
        ax.set_ylabel("")
        ax.set_title(title, fontsize=self.config.title_fontsize)
        return self._save_figure(fig, filename)

    def plot_confusion_matrix(
        self,
        confusion: pd.DataFrame,
        filename: str = "confusion_matrix",
        title: str = "Held-out predictions",
    ) -> Path:
        fig, ax = plt.subplots(figsize=(6, 5))
        sns.heatmap(
            confusion,
            annot=True,
            fmt="d",
            cmap="Blues",
            square=True,
            cbar=False,
            ax=ax,
        )
        ax.set_xlabel("Predicted", fontsize=self.config.label_fontsize)
        ax.set_ylabel("Actual", fontsize=self.config.label_fontsize)
        ax.set_title(title, fontsize=self.config.title_fontsize)
        return self._save_figure(fig, filename)

    def plot_ensemble_weights(
        self,
        weights: dict[str, float],
        filename: str = "ensemble_weights",
    ) -> Path:
        names = list(weights)
        values = [weights[n] for n in names]

        fig, ax = plt.subplots(figsize=(7, 4))
        bars = ax.bar(names, values, color=sns.color_palette(self.config.palette)[0])
        for bar, w in zip(bars, values):
            ax.text(
                bar.get_x() + bar.get_width() / 2, w + 0.01, f"{w:.2f}",
                ha="center", va="bottom",
            )
        ax.set_ylim(0, 1.05)
        ax.set_ylabel("Weight", fontsize=self.config.label_fontsize)
        ax.set_title("Ensemble weights", fontsize=self.config.title_fontsize)
        return self._save_figure(fig, filename)
