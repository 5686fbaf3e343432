"""
Volume Calculator Module

Calculates cut and fill volumes between two surveyed terrain epochs,
optionally restricted to a site boundary.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from .geometry import clip_polygon, points_in_polygon, polygon_area
from .grid import (
    NO_DATA,
    GridData,
    GridFrame,
    resolve_neighbors,
    sample_cells,
)
from .validation import (
    FrameMismatchError,
    NoOverlapError,
    NotRasterizedError,
    validate_boundary_overlap,
    validate_clip_polygon,
    validate_supersample,
)

logger = logging.getLogger(__name__)

DEFAULT_NOISE_THRESHOLD = 0.01
DEFAULT_SUPERSAMPLE = 10
AREA_EPSILON = 1e-10


class BoundaryWeighting(Enum):
    """How a boundary polygon weights the cells it crosses."""
    NONE = "none"                  # No boundary: every cell counts in full
    POINT_SAMPLE = "point"         # Cell centre inside or not (biased at edges)
    SUPERSAMPLE = "supersample"    # Fraction of an n x n sub-grid inside
    EXACT_CLIP = "exact"           # Exact clipped area (convex, CCW boundary)


@dataclass
class HeightDiffGrid:
    """Signed height difference (epoch 2 minus epoch 1) per overlap cell."""
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    rows: int
    cols: int
    data: np.ndarray
    grid_size: float = 1.0
    frame: GridFrame = field(default_factory=GridFrame.global_frame)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    def as_array(self) -> np.ndarray:
        """Differences as a (rows, cols) view."""
        return self.data.reshape(self.rows, self.cols)


@dataclass
class VolumeResult:
    """
    Cut/fill comparison of two epochs.

    Fill is material added (epoch 2 higher), cut is material removed
    (epoch 2 lower); both are positive magnitudes. All volumes are in
    cubic units (m³ if coordinates are in meters).
    """
    cut_volume: float
    fill_volume: float
    net_volume: float  # fill - cut
    area: float
    grid_size: float
    diff_map: HeightDiffGrid
    weighting: BoundaryWeighting = BoundaryWeighting.NONE
    cells_used: int = 0

    def summary(self) -> str:
        """Return human-readable summary."""
        lines = [
            "=" * 50,
            "VOLUME COMPARISON SUMMARY",
            "=" * 50,
            f"Grid Size:         {self.grid_size:.2f} units",
            f"Boundary Weights:  {self.weighting.value}",
            f"Cells Compared:    {self.cells_used:,}",
            f"Area:              {self.area:,.2f} sq units",
            f"",
            f"CUT (Removed):     {self.cut_volume:,.2f} cubic units",
            f"FILL (Added):      {self.fill_volume:,.2f} cubic units",
            f"",
            f"NET VOLUME:        {self.net_volume:,.2f} cubic units",
            f"  {'(Net fill)' if self.net_volume > 0 else '(Net cut)'}",
            "=" * 50,
        ]
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "cut_volume": self.cut_volume,
            "fill_volume": self.fill_volume,
            "net_volume": self.net_volume,
            "area": self.area,
            "grid_size": self.grid_size,
            "weighting": self.weighting.value,
            "cells_used": self.cells_used,
            "diff_map": {
                "min_x": self.diff_map.min_x,
                "min_y": self.diff_map.min_y,
                "max_x": self.diff_map.max_x,
                "max_y": self.diff_map.max_y,
                "rows": self.diff_map.rows,
                "cols": self.diff_map.cols,
                "rotation_angle": self.diff_map.frame.rotation_angle,
            },
        }


def crossed_cells(
    polygon: Sequence[Tuple[float, float]],
    min_x: float,
    min_y: float,
    rows: int,
    cols: int,
    grid_size: float,
) -> np.ndarray:
    """
    Mark every cell whose box touches a polygon edge.

    A segment meets a cell box when their bounding boxes overlap and the
    box corners do not all lie strictly on one side of the segment's line.

    Returns:
        (rows, cols) boolean array
    """
    crossed = np.zeros((rows, cols), dtype=bool)
    n = len(polygon)

    for i in range(n):
        ax, ay = polygon[i]
        bx, by = polygon[(i + 1) % n]

        c0 = max(math.floor((min(ax, bx) - min_x) / grid_size), 0)
        c1 = min(math.floor((max(ax, bx) - min_x) / grid_size), cols - 1)
        r0 = max(math.floor((min(ay, by) - min_y) / grid_size), 0)
        r1 = min(math.floor((max(ay, by) - min_y) / grid_size), rows - 1)
        if c1 < c0 or r1 < r0:
            continue

        # Side of the edge line at each lattice corner of the candidate block
        cx = min_x + np.arange(c0, c1 + 2) * grid_size
        cy = min_y + np.arange(r0, r1 + 2) * grid_size
        gx, gy = np.meshgrid(cx, cy)
        side = (bx - ax) * (gy - ay) - (by - ay) * (gx - ax)

        quad = np.stack([side[:-1, :-1], side[:-1, 1:], side[1:, :-1], side[1:, 1:]])
        crossed[r0:r1 + 1, c0:c1 + 1] |= (quad.min(axis=0) <= 0) & (quad.max(axis=0) >= 0)

    return crossed


def _require_grid(grid: Optional[GridData], label: str) -> GridData:
    if grid is None or grid.heights is None or grid.heights.size == 0:
        raise NotRasterizedError(
            f"{label} has not been gridded yet. Rasterize both epochs "
            "before comparing volumes."
        )
    return grid


class VolumeCalculator:
    """
    Grid-difference volume engine.

    Compares two grids in a shared frame cell by cell over their overlap.
    Pure computation: no I/O, and the input grids are never modified.
    """

    def __init__(
        self,
        grid1: Optional[GridData],
        grid2: Optional[GridData],
        boundary: Optional[Sequence] = None,
        weighting: Optional[BoundaryWeighting] = None,
        noise_threshold: float = DEFAULT_NOISE_THRESHOLD,
        supersample: int = DEFAULT_SUPERSAMPLE,
    ):
        """
        Args:
            grid1: Earlier epoch
            grid2: Later epoch
            boundary: Optional site polygon in global coordinates
                (BoundaryPoints or (x, y) pairs)
            weighting: Boundary weighting strategy; EXACT_CLIP when a
                boundary is given and nothing is chosen
            noise_threshold: Differences smaller than this count toward
                area but not toward cut or fill
            supersample: Sub-grid size n for SUPERSAMPLE weighting

        Raises:
            NotRasterizedError: If either grid is missing
            FrameMismatchError: If the grids use different frames
            ValidationError: If supersample is below 1
        """
        self.grid1 = _require_grid(grid1, "First epoch")
        self.grid2 = _require_grid(grid2, "Second epoch")

        if not self.grid1.frame.matches(self.grid2.frame):
            raise FrameMismatchError(
                "The two grids were rasterized in different coordinate frames "
                f"(rotation {self.grid1.rotation_angle:.6f} vs {self.grid2.rotation_angle:.6f} rad, "
                f"anchor ({self.grid1.anchor.x:.3f}, {self.grid1.anchor.y:.3f}) vs "
                f"({self.grid2.anchor.x:.3f}, {self.grid2.anchor.y:.3f})). "
                "Rasterize both with the same boundary, or resample one with "
                "GridData.resample_to(other.frame)."
            )

        if not math.isclose(self.grid1.grid_size, self.grid2.grid_size):
            warnings.warn(
                f"Grid sizes differ ({self.grid1.grid_size} vs {self.grid2.grid_size}); "
                "using the first epoch's grid size.",
                UserWarning,
                stacklevel=2
            )

        self.boundary = list(boundary) if boundary else None
        if self.boundary is None:
            self.weighting = BoundaryWeighting.NONE
        elif weighting is None or weighting == BoundaryWeighting.NONE:
            self.weighting = BoundaryWeighting.EXACT_CLIP
        else:
            self.weighting = weighting

        self.noise_threshold = noise_threshold
        self.supersample = validate_supersample(supersample)

    @property
    def frame(self) -> GridFrame:
        return self.grid1.frame

    def overlap(self) -> Tuple[float, float, float, float]:
        """
        Intersection of the two grid extents.

        Raises:
            NoOverlapError: If the extents do not intersect
        """
        g1, g2 = self.grid1, self.grid2
        min_x = max(g1.min_x, g2.min_x)
        min_y = max(g1.min_y, g2.min_y)
        max_x = min(g1.max_x, g2.max_x)
        max_y = min(g1.max_y, g2.max_y)

        if max_x <= min_x or max_y <= min_y:
            raise NoOverlapError(
                "The two epochs do not overlap.\n"
                f"  Epoch 1: X={g1.min_x:.1f} to {g1.max_x:.1f}, Y={g1.min_y:.1f} to {g1.max_y:.1f}\n"
                f"  Epoch 2: X={g2.min_x:.1f} to {g2.max_x:.1f}, Y={g2.min_y:.1f} to {g2.max_y:.1f}"
            )

        return (min_x, min_y, max_x, max_y)

    def calculate(self) -> VolumeResult:
        """
        Integrate cut, fill and net volume over the overlap.

        Returns:
            VolumeResult

        Raises:
            NoOverlapError: If grids, or grids and boundary, do not intersect
        """
        min_x, min_y, max_x, max_y = self.overlap()
        grid_size = self.grid1.grid_size
        cols = int(math.ceil((max_x - min_x) / grid_size))
        rows = int(math.ceil((max_y - min_y) / grid_size))

        logger.info(
            "Comparing %d x %d overlap cells (grid size %.3f, weighting %s)",
            cols, rows, grid_size, self.weighting.value,
        )

        local_boundary = None
        if self.boundary is not None:
            local_boundary = self.frame.polygon_to_local(self.boundary)
            validate_boundary_overlap(local_boundary, (min_x, min_y, max_x, max_y))
            if self.weighting == BoundaryWeighting.EXACT_CLIP:
                validate_clip_polygon(local_boundary)

        areas = self.cell_areas(min_x, min_y, rows, cols, grid_size, local_boundary)

        # Cell centres
        xs = min_x + (np.arange(cols) + 0.5) * grid_size
        ys = min_y + (np.arange(rows) + 0.5) * grid_size
        xx, yy = np.meshgrid(xs, ys)

        h1 = sample_cells(self.grid1, xx, yy, resolve_neighbors(self.grid1.elevations))
        h2 = sample_cells(self.grid2, xx, yy, resolve_neighbors(self.grid2.elevations))

        valid = (h1 != NO_DATA) & (h2 != NO_DATA) & (areas > AREA_EPSILON)
        diff = np.where(valid, h2 - h1, 0.0)
        significant = valid & (np.abs(diff) >= self.noise_threshold)

        fill_volume = float(np.sum(np.where(significant & (diff > 0), diff * areas, 0.0)))
        cut_volume = float(np.sum(np.where(significant & (diff < 0), -diff * areas, 0.0)))
        total_area = float(np.sum(areas[valid]))
        cells_used = int(np.count_nonzero(valid))

        logger.info(
            "Cut %.3f, fill %.3f over %.3f area (%d cells)",
            cut_volume, fill_volume, total_area, cells_used,
        )

        diff_map = HeightDiffGrid(
            min_x=min_x,
            min_y=min_y,
            max_x=max_x,
            max_y=max_y,
            rows=rows,
            cols=cols,
            data=diff.reshape(-1),
            grid_size=grid_size,
            frame=self.frame,
        )

        return VolumeResult(
            cut_volume=cut_volume,
            fill_volume=fill_volume,
            net_volume=fill_volume - cut_volume,
            area=total_area,
            grid_size=grid_size,
            diff_map=diff_map,
            weighting=self.weighting,
            cells_used=cells_used,
        )

    def cell_areas(
        self,
        min_x: float,
        min_y: float,
        rows: int,
        cols: int,
        grid_size: float,
        polygon: Optional[Sequence[Tuple[float, float]]],
    ) -> np.ndarray:
        """
        Effective area of every overlap cell inside ``polygon``.

        For the sub-cell strategies, a cell that no polygon edge touches lies
        wholly inside or outside the polygon, so its centre decides between
        the full and zero area. Only cells crossed by an edge are
        supersampled or clipped.

        Returns:
            (rows, cols) array of areas
        """
        cell_area = grid_size * grid_size

        if polygon is None or self.weighting == BoundaryWeighting.NONE:
            return np.full((rows, cols), cell_area)

        xs = min_x + (np.arange(cols) + 0.5) * grid_size
        ys = min_y + (np.arange(rows) + 0.5) * grid_size
        xx, yy = np.meshgrid(xs, ys)
        centre_in = points_in_polygon(xx, yy, polygon)

        if self.weighting == BoundaryWeighting.POINT_SAMPLE:
            return np.where(centre_in, cell_area, 0.0)

        edge = crossed_cells(polygon, min_x, min_y, rows, cols, grid_size)
        areas = np.where(centre_in & ~edge, cell_area, 0.0)
        edge_rows, edge_cols = np.nonzero(edge)
        if len(edge_rows) == 0:
            return areas

        x0 = min_x + edge_cols * grid_size
        y0 = min_y + edge_rows * grid_size

        if self.weighting == BoundaryWeighting.SUPERSAMPLE:
            areas[edge_rows, edge_cols] = cell_area * self._coverage(x0, y0, grid_size, polygon)
        else:
            areas[edge_rows, edge_cols] = [
                polygon_area(clip_polygon(
                    [(x, y), (x + grid_size, y), (x + grid_size, y + grid_size), (x, y + grid_size)],
                    polygon,
                ))
                for x, y in zip(x0.tolist(), y0.tolist())
            ]

        return areas

    def _coverage(
        self,
        x0: np.ndarray,
        y0: np.ndarray,
        grid_size: float,
        polygon: Sequence[Tuple[float, float]],
    ) -> np.ndarray:
        """Fraction of an n x n sub-grid of each cell that lies in the polygon."""
        n = self.supersample
        offsets = (np.arange(n) + 0.5) * (grid_size / n)
        ox, oy = np.meshgrid(offsets, offsets)
        sx = x0[:, None] + ox.reshape(1, -1)
        sy = y0[:, None] + oy.reshape(1, -1)
        inside = points_in_polygon(sx, sy, polygon)
        return inside.sum(axis=1) / float(n * n)


def compute_volume(
    grid1: Optional[GridData],
    grid2: Optional[GridData],
    boundary: Optional[Sequence] = None,
    weighting: Optional[BoundaryWeighting] = None,
    **kwargs,
) -> VolumeResult:
    """
    Compare two epochs and integrate cut/fill volumes.

    Args:
        grid1: Earlier epoch grid
        grid2: Later epoch grid, in the same frame as grid1
        boundary: Optional site polygon in global coordinates
        weighting: Boundary weighting strategy (EXACT_CLIP by default)
        **kwargs: noise_threshold, supersample

    Returns:
        VolumeResult
    """
    return VolumeCalculator(grid1, grid2, boundary, weighting, **kwargs).calculate()
