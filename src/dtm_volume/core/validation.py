"""
Input Validation Module

Exception hierarchy and validation helpers for the dtm_volume package.
All validation functions provide clear, actionable error messages.
"""

from __future__ import annotations

import numbers
import os
import warnings
from pathlib import Path
from typing import Sequence, Tuple, Union


class ValidationError(ValueError):
    """Base exception for validation errors with user-friendly messages."""
    pass


class ResolutionError(ValidationError):
    """Invalid grid size value."""
    pass


class FilePermissionError(ValidationError):
    """Cannot write to specified path."""
    pass


class RasterError(Exception):
    """Base exception for failures while rasterizing vertex sources."""
    pass


class NoDataError(RasterError):
    """No valid vertex was found during the extent scan."""
    pass


class GridTooLargeError(RasterError):
    """Grid dimensions exceed the cell-count ceiling."""

    def __init__(self, message: str, rows: int, cols: int, max_cells: int):
        super().__init__(message)
        self.rows = rows
        self.cols = cols
        self.max_cells = max_cells


class VolumeError(Exception):
    """Base exception for failures of a volume comparison."""
    pass


class NotRasterizedError(VolumeError):
    """Volume requested before both epochs were gridded."""
    pass


class NoOverlapError(VolumeError):
    """Grids (or grids and boundary) share no spatial intersection."""
    pass


class FrameMismatchError(VolumeError):
    """Grids were rasterized in different coordinate frames."""
    pass


def validate_grid_size(grid_size: float, context: str = "grid size") -> float:
    """
    Validate grid size is a positive number.

    Args:
        grid_size: The cell edge length to validate
        context: Description of what this value is for (used in error messages)

    Returns:
        The validated grid size as a float

    Raises:
        ResolutionError: If grid size is None, not a number, or <= 0
    """
    if grid_size is None:
        raise ResolutionError(f"{context} cannot be None")

    if isinstance(grid_size, bool) or not isinstance(grid_size, (int, float)):
        raise ResolutionError(
            f"{context} must be a number, got {type(grid_size).__name__}"
        )

    if not grid_size > 0:
        raise ResolutionError(
            f"{context} must be positive, got {grid_size}. "
            "Typical values are 0.5-5.0 meters for earthwork surveys."
        )

    return float(grid_size)


def validate_supersample(n: int) -> int:
    """
    Validate the sub-grid size used for supersample weighting.

    Raises:
        ValidationError: If n is not an integer of at least 1
    """
    if isinstance(n, bool) or not isinstance(n, numbers.Integral):
        raise ValidationError(
            f"supersample must be an integer, got {type(n).__name__}"
        )

    if n < 1:
        raise ValidationError(
            f"supersample must be at least 1, got {n}. "
            "Typical values are 4-20 samples per cell edge."
        )

    return int(n)


def validate_grid_dimensions(
    rows: int,
    cols: int,
    bounds: Tuple[float, float, float, float],
    grid_size: float,
    max_cells: int,
) -> None:
    """
    Validate grid dimensions before the height array is allocated.

    Args:
        rows: Number of rows
        cols: Number of columns
        bounds: (min_x, min_y, max_x, max_y) of the data
        grid_size: Grid cell size
        max_cells: Hard ceiling on rows * cols

    Raises:
        ValidationError: If dimensions are not positive
        GridTooLargeError: If rows * cols exceeds max_cells
    """
    min_x, min_y, max_x, max_y = bounds

    if rows <= 0 or cols <= 0:
        raise ValidationError(
            f"Invalid grid dimensions ({rows} rows x {cols} cols). "
            f"Check that bounds ({min_x:.1f}, {min_y:.1f}) to ({max_x:.1f}, {max_y:.1f}) "
            f"are valid with grid size {grid_size}."
        )

    total_cells = rows * cols
    if total_cells > max_cells:
        raise GridTooLargeError(
            f"Grid is too large ({cols} x {rows} = {total_cells:,} cells, "
            f"limit {max_cells:,}). Increase the grid size (currently {grid_size}m).",
            rows=rows,
            cols=cols,
            max_cells=max_cells,
        )

    if total_cells > max_cells // 2:
        warnings.warn(
            f"Creating large grid ({rows}x{cols} = {total_cells:,} cells). "
            "Consider using a coarser grid size to reduce memory usage.",
            UserWarning,
            stacklevel=2
        )


def validate_output_path(filepath: Union[str, Path], context: str = "output file") -> Path:
    """
    Validate output path is writable before attempting to write.

    Args:
        filepath: The path to validate
        context: Description of what will be written (used in error messages)

    Returns:
        The validated path as a Path object

    Raises:
        FilePermissionError: If directory doesn't exist or isn't writable
    """
    path = Path(filepath)
    parent = path.parent

    # Handle empty parent (current directory)
    if str(parent) == '.':
        parent = Path.cwd()

    if not parent.exists():
        raise FilePermissionError(
            f"Cannot write {context}: directory '{parent}' does not exist. "
            "Create the directory first or specify a different path."
        )

    if not os.access(parent, os.W_OK):
        raise FilePermissionError(
            f"Cannot write {context}: no write permission for directory '{parent}'."
        )

    if path.exists() and not os.access(path, os.W_OK):
        raise FilePermissionError(
            f"Cannot overwrite {context}: file '{path}' exists but is not writable."
        )

    return path


def validate_boundary_overlap(
    polygon: Sequence[Tuple[float, float]],
    overlap_bounds: Tuple[float, float, float, float],
) -> None:
    """
    Validate that a boundary polygon intersects the overlap of two grids.

    Both the polygon and the bounds must be in the same (grid) frame.

    Raises:
        ValidationError: If the boundary has fewer than 3 vertices
        NoOverlapError: If the boundary does not intersect the overlap
    """
    from shapely.geometry import Polygon, box

    if len(polygon) < 3:
        raise ValidationError(
            f"Boundary needs at least 3 vertices, got {len(polygon)}."
        )

    shape = Polygon(polygon)
    if not shape.is_valid:
        shape = shape.buffer(0)

    if not shape.intersects(box(*overlap_bounds)):
        poly_bounds = shape.bounds
        raise NoOverlapError(
            "The boundary does not intersect the overlap of the two grids.\n"
            f"  Boundary bounds: X={poly_bounds[0]:.1f} to {poly_bounds[2]:.1f}, "
            f"Y={poly_bounds[1]:.1f} to {poly_bounds[3]:.1f}\n"
            f"  Overlap bounds:  X={overlap_bounds[0]:.1f} to {overlap_bounds[2]:.1f}, "
            f"Y={overlap_bounds[1]:.1f} to {overlap_bounds[3]:.1f}\n"
            "Ensure the boundary and the surveys use the same coordinate system."
        )


def validate_clip_polygon(polygon: Sequence[Tuple[float, float]]) -> None:
    """
    Warn when a boundary does not meet the exact-clip precondition.

    Exact clipping expects a convex polygon wound counter-clockwise.
    The polygon is never reoriented here.
    """
    from .geometry import is_convex, is_counter_clockwise

    if len(polygon) < 3:
        return

    if not is_counter_clockwise(polygon):
        warnings.warn(
            "Boundary is wound clockwise; exact clipping expects counter-clockwise "
            "vertices and will report zero area for most cells.",
            UserWarning,
            stacklevel=2
        )
    elif not is_convex(polygon):
        warnings.warn(
            "Boundary is not convex; exact clipping assumes a convex region "
            "and may misreport partial-cell areas.",
            UserWarning,
            stacklevel=2
        )
