"""
Height Grid Module

Data model shared by the rasterizer and the volume engine: survey points,
coordinate frames and the regular height grid (DTM) itself.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.ndimage import convolve, maximum_filter, minimum_filter

from .geometry import rotate

# Sentinel for "no sample in this cell"
NO_DATA = -1_000_000.0

# Hard ceiling on rows * cols for any grid this package allocates
DEFAULT_MAX_CELLS = 10_000_000

# Neighbour offsets (drow, dcol), nearest first
_NEIGHBOR_OFFSETS = (
    (0, -1), (0, 1), (-1, 0), (1, 0),
    (-1, -1), (-1, 1), (1, -1), (1, 1),
)

_NEIGHBOR_KERNEL = np.array([
    [1.0, 1.0, 1.0],
    [1.0, 0.0, 1.0],
    [1.0, 1.0, 1.0],
])


@dataclass(frozen=True)
class Point3D:
    """Geographic offset vector (easting, northing, elevation)."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class BoundaryPoint:
    """
    One vertex of a site boundary polygon.

    Survey files list northing before easting; here x is always the
    easting and y the northing.
    """
    id: str
    x: float
    y: float

    @property
    def xy(self) -> Tuple[float, float]:
        return (self.x, self.y)


def boundary_xy(boundary: Sequence) -> list:
    """Coerce BoundaryPoints or (x, y) pairs into a list of (x, y) tuples."""
    points = []
    for p in boundary:
        if isinstance(p, BoundaryPoint):
            points.append(p.xy)
        else:
            points.append((float(p[0]), float(p[1])))
    return points


@dataclass(frozen=True)
class GridFrame:
    """
    Planar coordinate frame of a grid.

    Local coordinates are global coordinates translated to ``anchor`` and
    rotated by ``-rotation_angle``, so the local X axis points along
    ``rotation_angle`` in global space.
    """
    rotation_angle: float = 0.0
    anchor: Point3D = field(default_factory=Point3D)

    @classmethod
    def global_frame(cls) -> GridFrame:
        return cls(0.0, Point3D())

    @classmethod
    def from_boundary(cls, boundary: Sequence, origin: Point3D) -> GridFrame:
        """
        Frame whose X axis is parallel to the first boundary edge.

        Without a usable boundary (fewer than 2 vertices) the frame is
        unrotated and anchored at ``origin``.
        """
        points = boundary_xy(boundary) if boundary else []
        if len(points) < 2:
            return cls(0.0, origin)
        (x0, y0), (x1, y1) = points[0], points[1]
        return cls(math.atan2(y1 - y0, x1 - x0), Point3D(x0, y0, origin.z))

    @property
    def is_rotated(self) -> bool:
        return self.rotation_angle != 0.0

    def to_local(self, gx, gy) -> Tuple[np.ndarray, np.ndarray]:
        """Global (x, y) to local frame coordinates. Accepts scalars or arrays."""
        dx = np.subtract(gx, self.anchor.x)
        dy = np.subtract(gy, self.anchor.y)
        return rotate(dx, dy, -self.rotation_angle)

    def to_global(self, lx, ly) -> Tuple[np.ndarray, np.ndarray]:
        """Local frame (x, y) to global coordinates."""
        rx, ry = rotate(
            np.asarray(lx, dtype=np.float64),
            np.asarray(ly, dtype=np.float64),
            self.rotation_angle,
        )
        return self.anchor.x + rx, self.anchor.y + ry

    def polygon_to_local(self, polygon: Sequence) -> list:
        """Transform a global polygon into this frame."""
        points = boundary_xy(polygon)
        if not points:
            return []
        xs, ys = self.to_local(
            np.array([p[0] for p in points]), np.array([p[1] for p in points])
        )
        return list(zip(xs.tolist(), ys.tolist()))

    def matches(self, other: GridFrame, tolerance: float = 1e-6) -> bool:
        """True when both frames map global space to the same local space."""
        return (
            math.isclose(self.rotation_angle, other.rotation_angle, abs_tol=1e-12)
            and math.isclose(self.anchor.x, other.anchor.x, abs_tol=tolerance)
            and math.isclose(self.anchor.y, other.anchor.y, abs_tol=tolerance)
        )


@dataclass
class GridData:
    """
    Regular height field (one elevation per planar cell).

    Attributes:
        min_x, min_y, max_x, max_y: Extent in the grid's own frame
        rows, cols: Grid dimensions
        grid_size: Cell edge length, equal in X and Y
        heights: Flat row-major array of rows * cols elevations,
            NO_DATA where a cell has no sample
        frame: Coordinate frame the extent is expressed in

    The grid takes ownership of ``heights`` and marks it read-only.
    """
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    rows: int
    cols: int
    grid_size: float
    heights: np.ndarray
    frame: GridFrame = field(default_factory=GridFrame.global_frame)

    def __post_init__(self):
        from .validation import ValidationError

        heights = np.asarray(self.heights, dtype=np.float64).reshape(-1)
        if heights.size != self.rows * self.cols:
            raise ValidationError(
                f"heights has {heights.size} values, expected "
                f"{self.rows} x {self.cols} = {self.rows * self.cols}"
            )
        heights.setflags(write=False)
        self.heights = heights

    @property
    def rotation_angle(self) -> float:
        return self.frame.rotation_angle

    @property
    def anchor(self) -> Point3D:
        return self.frame.anchor

    @property
    def shape(self) -> Tuple[int, int]:
        """Grid dimensions (rows, cols)."""
        return (self.rows, self.cols)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Extent (min_x, min_y, max_x, max_y) in the grid frame."""
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @property
    def elevations(self) -> np.ndarray:
        """Heights as a (rows, cols) view."""
        return self.heights.reshape(self.rows, self.cols)

    @property
    def valid_mask(self) -> np.ndarray:
        return self.elevations != NO_DATA

    def cell_center(self, row: int, col: int) -> Tuple[float, float]:
        """Local coordinates of a cell centre."""
        return (
            self.min_x + (col + 0.5) * self.grid_size,
            self.min_y + (row + 0.5) * self.grid_size,
        )

    def coord_to_cell(self, x: float, y: float) -> Tuple[int, int]:
        """Local coordinates to (row, col); may fall outside the grid."""
        col = math.floor((x - self.min_x) / self.grid_size)
        row = math.floor((y - self.min_y) / self.grid_size)
        return (row, col)

    def get_height(self, x: float, y: float) -> float:
        """Height of the cell containing local (x, y), or NO_DATA."""
        row, col = self.coord_to_cell(x, y)
        if 0 <= row < self.rows and 0 <= col < self.cols:
            return float(self.heights[row * self.cols + col])
        return NO_DATA

    def statistics(self) -> dict:
        """Calculate basic statistics for the grid."""
        valid = self.heights[self.heights != NO_DATA]

        if len(valid) == 0:
            return {"error": "No valid elevation data"}

        return {
            "min_elevation": float(np.min(valid)),
            "max_elevation": float(np.max(valid)),
            "mean_elevation": float(np.mean(valid)),
            "elevation_range": float(np.max(valid) - np.min(valid)),
            "valid_cells": int(len(valid)),
            "total_cells": int(self.heights.size),
            "nodata_cells": int(self.heights.size - len(valid)),
        }

    @classmethod
    def from_array(
        cls,
        elevations: np.ndarray,
        min_x: float = 0.0,
        min_y: float = 0.0,
        grid_size: float = 1.0,
        frame: Optional[GridFrame] = None,
    ) -> GridData:
        """Wrap a (rows, cols) elevation array whose extent is exactly the cells."""
        elevations = np.array(elevations, dtype=np.float64)
        rows, cols = elevations.shape
        return cls(
            min_x=min_x,
            min_y=min_y,
            max_x=min_x + cols * grid_size,
            max_y=min_y + rows * grid_size,
            rows=rows,
            cols=cols,
            grid_size=grid_size,
            heights=elevations.reshape(-1),
            frame=frame or GridFrame.global_frame(),
        )

    def resample_to(
        self,
        frame: GridFrame,
        grid_size: Optional[float] = None,
        max_cells: int = DEFAULT_MAX_CELLS,
    ) -> GridData:
        """
        Re-express this grid in another frame by nearest-cell lookup.

        Each target cell centre is mapped to global space, then into this
        grid's frame, and takes the height of the cell it lands in.
        """
        from .validation import validate_grid_dimensions

        if frame.matches(self.frame) and (grid_size is None or grid_size == self.grid_size):
            return self

        grid_size = grid_size or self.grid_size

        corner_x = np.array([self.min_x, self.max_x, self.max_x, self.min_x])
        corner_y = np.array([self.min_y, self.min_y, self.max_y, self.max_y])
        gx, gy = self.frame.to_global(corner_x, corner_y)
        tx, ty = frame.to_local(gx, gy)
        min_x, max_x = float(tx.min()), float(tx.max())
        min_y, max_y = float(ty.min()), float(ty.max())

        cols = int(math.ceil((max_x - min_x) / grid_size))
        rows = int(math.ceil((max_y - min_y) / grid_size))
        validate_grid_dimensions(rows, cols, (min_x, min_y, max_x, max_y), grid_size, max_cells)

        xs = min_x + (np.arange(cols) + 0.5) * grid_size
        ys = min_y + (np.arange(rows) + 0.5) * grid_size
        xx, yy = np.meshgrid(xs, ys)
        sx, sy = self.frame.to_local(*frame.to_global(xx, yy))
        heights = sample_cells(self, sx, sy)

        return GridData(
            min_x=min_x,
            min_y=min_y,
            max_x=max_x,
            max_y=max_y,
            rows=rows,
            cols=cols,
            grid_size=grid_size,
            heights=heights.reshape(-1),
            frame=frame,
        )


def sample_cells(grid: GridData, xs: np.ndarray, ys: np.ndarray,
                 elevations: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Heights of the cells containing local points (xs, ys).

    Points outside the grid get NO_DATA. ``elevations`` overrides the grid's
    own (rows, cols) heights, e.g. with a neighbour-resolved copy.
    """
    if elevations is None:
        elevations = grid.elevations
    cols = np.floor((np.asarray(xs) - grid.min_x) / grid.grid_size).astype(np.int64)
    rows = np.floor((np.asarray(ys) - grid.min_y) / grid.grid_size).astype(np.int64)
    inside = (rows >= 0) & (rows < grid.rows) & (cols >= 0) & (cols < grid.cols)

    out = np.full(np.shape(rows), NO_DATA, dtype=np.float64)
    out[inside] = elevations[rows[inside], cols[inside]]
    return out


def fill_holes(
    elevations: np.ndarray,
    min_neighbors: int = 2,
    passes: int = 2,
) -> np.ndarray:
    """
    Fill small NO_DATA holes with the mean of their valid 8-neighbours.

    A cell is filled only if at least ``min_neighbors`` neighbours are valid.
    Each pass reads the previous pass's result, so a fill never feeds
    another fill within the same pass. Border cells are never filled.

    Returns:
        A new (rows, cols) array
    """
    filled = np.array(elevations, dtype=np.float64)
    rows, cols = filled.shape
    if rows < 3 or cols < 3:
        return filled

    interior = np.zeros(filled.shape, dtype=bool)
    interior[1:-1, 1:-1] = True

    for _ in range(passes):
        valid = filled != NO_DATA
        holes = ~valid & interior
        if not np.any(holes):
            break

        counts = convolve(valid.astype(np.float64), _NEIGHBOR_KERNEL, mode='constant', cval=0.0)
        totals = convolve(np.where(valid, filled, 0.0), _NEIGHBOR_KERNEL, mode='constant', cval=0.0)

        target = holes & (counts >= min_neighbors)
        if not np.any(target):
            break

        # Equal neighbours fill with that exact value, not a rounded mean
        footprint = _NEIGHBOR_KERNEL > 0
        highest = maximum_filter(np.where(valid, filled, -np.inf), footprint=footprint,
                                 mode='constant', cval=-np.inf)
        lowest = minimum_filter(np.where(valid, filled, np.inf), footprint=footprint,
                                mode='constant', cval=np.inf)
        means = np.where(highest == lowest, highest, totals / np.maximum(counts, 1.0))
        filled[target] = means[target]

    return filled


def resolve_neighbors(elevations: np.ndarray) -> np.ndarray:
    """
    Replace each NO_DATA cell with its nearest valid 8-neighbour.

    Orthogonal neighbours are tried before diagonal ones. Values come from
    the input only, never from another replacement. Cells with no valid
    neighbour stay NO_DATA.
    """
    rows, cols = elevations.shape
    padded = np.pad(elevations, 1, mode='constant', constant_values=NO_DATA)
    resolved = np.array(elevations, dtype=np.float64)

    for dr, dc in _NEIGHBOR_OFFSETS:
        missing = resolved == NO_DATA
        if not np.any(missing):
            break
        neighbor = padded[1 + dr:1 + dr + rows, 1 + dc:1 + dc + cols]
        take = missing & (neighbor != NO_DATA)
        resolved[take] = neighbor[take]

    return resolved
