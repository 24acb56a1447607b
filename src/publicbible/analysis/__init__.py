"""
Analysis Package
================

Plotting for the quotation classifier diagnostics.

    Visualizer
        Creates correlation heatmaps, feature scatterplot matrices, model
        comparison box plots, confusion matrices, and ensemble weight
        charts. All plots are saved to a configurable output directory.

Usage::

    from publicbible.analysis import Visualizer

    viz = Visualizer(output_dir="./figures")
    viz.plot_correlation_heatmap(correlation_matrix(features))
"""

from .visualization import PlotConfig, Visualizer

__all__ = [
    "PlotConfig",
    "Visualizer",
]
