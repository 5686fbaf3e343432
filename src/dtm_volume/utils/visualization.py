"""
Visualization Utilities

Static report plots for height grids and cut/fill difference maps.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

import numpy as np

try:
    import matplotlib.pyplot as plt
    from matplotlib.colors import LinearSegmentedColormap, TwoSlopeNorm
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from ..core.grid import NO_DATA

if TYPE_CHECKING:
    from ..core.grid import GridData
    from ..core.volume import VolumeResult


def require_matplotlib():
    if not HAS_MATPLOTLIB:
        raise ImportError("matplotlib is required. Install with: pip install matplotlib")


# Difference colormap (red = cut, blue = fill)
CUT_FILL_COLORS = [
    (0.0, (0.8, 0.2, 0.2)),    # Deep red (cut)
    (0.4, (1.0, 0.8, 0.6)),    # Light red/orange
    (0.5, (0.95, 0.95, 0.95)), # White (no change)
    (0.6, (0.6, 0.8, 1.0)),    # Light blue
    (1.0, (0.2, 0.2, 0.8)),    # Deep blue (fill)
]


def get_cut_fill_cmap():
    """Get the cut/fill colormap."""
    require_matplotlib()
    return LinearSegmentedColormap.from_list("cut_fill", CUT_FILL_COLORS)


def _overlay_boundary(ax, boundary_local: Optional[Sequence[Tuple[float, float]]]):
    if not boundary_local:
        return
    xs = [p[0] for p in boundary_local] + [boundary_local[0][0]]
    ys = [p[1] for p in boundary_local] + [boundary_local[0][1]]
    ax.plot(xs, ys, 'k-', linewidth=1.5, label='Boundary')
    ax.legend(loc='upper right')


def plot_height_grid(
    grid: 'GridData',
    ax: Optional['plt.Axes'] = None,
    title: str = "Height Grid",
    cmap: str = "terrain",
    boundary_local: Optional[Sequence[Tuple[float, float]]] = None,
    figsize: Tuple[int, int] = (10, 8),
) -> 'plt.Figure':
    """
    Plot a height grid as a 2D heatmap in its own frame.

    Args:
        grid: GridData to plot
        ax: Optional matplotlib axes (creates new figure if None)
        title: Plot title
        cmap: Colormap name
        boundary_local: Optional boundary already in the grid frame
        figsize: Figure size if creating new figure

    Returns:
        matplotlib Figure
    """
    require_matplotlib()

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    data = np.ma.masked_equal(grid.elevations, NO_DATA)
    top = grid.min_y + grid.rows * grid.grid_size
    right = grid.min_x + grid.cols * grid.grid_size

    im = ax.imshow(
        data,
        extent=[grid.min_x, right, grid.min_y, top],
        origin='lower',
        cmap=cmap,
        aspect='equal',
    )
    plt.colorbar(im, ax=ax, label='Elevation')
    _overlay_boundary(ax, boundary_local)

    ax.set_xlabel('Local X')
    ax.set_ylabel('Local Y')
    ax.set_title(title)

    return fig


def plot_diff_map(
    result: 'VolumeResult',
    ax: Optional['plt.Axes'] = None,
    title: str = "Cut/Fill Difference",
    boundary_local: Optional[Sequence[Tuple[float, float]]] = None,
    figsize: Tuple[int, int] = (10, 8),
) -> 'plt.Figure':
    """
    Plot the signed height difference (fill positive, cut negative).

    Returns:
        matplotlib Figure
    """
    require_matplotlib()

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    diff = result.diff_map
    data = np.ma.masked_equal(diff.as_array(), 0.0)
    top = diff.min_y + diff.rows * diff.grid_size
    right = diff.min_x + diff.cols * diff.grid_size

    limit = float(np.max(np.abs(data))) if data.count() else 1.0
    limit = limit or 1.0

    im = ax.imshow(
        data,
        extent=[diff.min_x, right, diff.min_y, top],
        origin='lower',
        cmap=get_cut_fill_cmap(),
        norm=TwoSlopeNorm(vmin=-limit, vcenter=0.0, vmax=limit),
        aspect='equal',
    )
    plt.colorbar(im, ax=ax, label='Height change (fill +, cut -)')
    _overlay_boundary(ax, boundary_local)

    ax.set_xlabel('Local X')
    ax.set_ylabel('Local Y')
    ax.set_title(title)

    return fig


def create_report_figure(
    grid1: 'GridData',
    grid2: 'GridData',
    result: 'VolumeResult',
    boundary_local: Optional[Sequence[Tuple[float, float]]] = None,
) -> 'plt.Figure':
    """
    Create a report figure: both epochs, the difference map and the summary.

    Returns:
        matplotlib Figure with 4 subplots
    """
    require_matplotlib()

    fig = plt.figure(figsize=(16, 12))

    ax1 = fig.add_subplot(221)
    plot_height_grid(grid1, ax=ax1, title="Epoch 1", boundary_local=boundary_local)

    ax2 = fig.add_subplot(222)
    plot_height_grid(grid2, ax=ax2, title="Epoch 2", boundary_local=boundary_local)

    ax3 = fig.add_subplot(223)
    plot_diff_map(result, ax=ax3, boundary_local=boundary_local)

    ax4 = fig.add_subplot(224)
    ax4.axis('off')
    ax4.text(
        0.1, 0.95, result.summary(),
        transform=ax4.transAxes,
        verticalalignment='top',
        fontfamily='monospace',
        fontsize=10,
    )

    plt.tight_layout()
    return fig


def save_report(
    figure: 'plt.Figure',
    filepath: str,
    dpi: int = 150,
) -> None:
    """Save report figure to file."""
    figure.savefig(filepath, dpi=dpi, bbox_inches='tight')
