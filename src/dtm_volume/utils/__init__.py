"""Utility modules."""

from .visualization import plot_height_grid, plot_diff_map, create_report_figure

__all__ = ["plot_height_grid", "plot_diff_map", "create_report_figure"]
