"""
Grid Rasterizer Module

Converts one or more streamed vertex sources into a single regular height
grid (DTM) in two passes: an extent scan, then max-height binning, followed
by small-hole repair.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .grid import (
    DEFAULT_MAX_CELLS,
    NO_DATA,
    GridData,
    GridFrame,
    Point3D,
    fill_holes,
)
from .validation import NoDataError, validate_grid_dimensions, validate_grid_size
from ..io.vertex_stream import DEFAULT_CHUNK_SIZE, VertexSource

logger = logging.getLogger(__name__)

DEFAULT_FILL_PASSES = 2
DEFAULT_MIN_NEIGHBORS = 2


@dataclass
class RasterProgress:
    """
    Progress counters updated by the rasterizer and polled by the host.

    The rasterizer only assigns attributes; it never waits on a reader.
    """
    stage: str = "idle"
    message: str = ""
    sources_total: int = 0
    sources_done: int = 0
    vertices_scanned: int = 0
    vertices_binned: int = 0
    records_skipped: int = 0

    def update(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        logger.info("%s: %s", stage, message)

    @property
    def fraction(self) -> float:
        """Rough completion in [0, 1] over both passes."""
        if self.stage == "done":
            return 1.0
        if self.sources_total == 0:
            return 0.0
        passes_done = {"scan": 0, "bin": 1, "fill": 2}.get(self.stage, 0)
        within = self.sources_done / self.sources_total if passes_done < 2 else 0.0
        return min(1.0, (passes_done + within) / 2.0)


@dataclass
class GridExtent:
    """Axis-aligned extent of the vertices in the grid frame."""
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    vertex_count: int

    def expanded(self, margin: float) -> GridExtent:
        return GridExtent(
            self.min_x - margin,
            self.min_y - margin,
            self.max_x + margin,
            self.max_y + margin,
            self.vertex_count,
        )


class GridRasterizer:
    """
    Two-pass streaming rasterizer.

    Cell heights keep the highest vertex that falls in the cell. This is a
    fixed DTM policy: it traces the upper surface and suppresses clutter
    below it in oblique-imagery point clouds.
    """

    def __init__(
        self,
        grid_size: float = 1.0,
        origin: Optional[Point3D] = None,
        boundary: Optional[Sequence] = None,
        max_cells: int = DEFAULT_MAX_CELLS,
        fill_passes: int = DEFAULT_FILL_PASSES,
        min_neighbors: int = DEFAULT_MIN_NEIGHBORS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Args:
            grid_size: Cell edge length in coordinate units
            origin: Geographic offset added to every raw vertex
            boundary: Optional site polygon; its first edge sets the grid
                rotation and its first vertex the anchor
            max_cells: Hard ceiling on rows * cols
            fill_passes: Number of hole-filling passes (0 disables filling)
            min_neighbors: Valid neighbours required to fill a hole
            chunk_size: Vertices per streamed chunk

        Raises:
            ResolutionError: If grid_size is not positive
        """
        self.grid_size = validate_grid_size(grid_size, "Grid size")
        self.origin = origin or Point3D()
        self.frame = GridFrame.from_boundary(boundary, self.origin)
        self.max_cells = max_cells
        self.fill_passes = fill_passes
        self.min_neighbors = min_neighbors
        self.chunk_size = chunk_size

    def _local_xyz(self, xyz: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Raw vertex offsets to local (x, y) and absolute z."""
        gx = xyz[:, 0] + self.origin.x
        gy = xyz[:, 1] + self.origin.y
        lx, ly = self.frame.to_local(gx, gy)
        return lx, ly, xyz[:, 2] + self.origin.z

    def scan_extent(
        self,
        sources: List[VertexSource],
        progress: Optional[RasterProgress] = None,
    ) -> GridExtent:
        """
        First pass: local extent of every vertex in every source.

        Raises:
            NoDataError: If no vertex was found
        """
        min_x = min_y = math.inf
        max_x = max_y = -math.inf
        count = 0

        for i, source in enumerate(sources):
            if progress is not None:
                progress.sources_done = i
                progress.update("scan", f"Scanning extent: {i + 1} / {len(sources)} ({source.name})")
            for xyz in source.iter_chunks(self.chunk_size):
                lx, ly, _ = self._local_xyz(xyz)
                min_x = min(min_x, float(lx.min()))
                max_x = max(max_x, float(lx.max()))
                min_y = min(min_y, float(ly.min()))
                max_y = max(max_y, float(ly.max()))
                count += len(xyz)
                if progress is not None:
                    progress.vertices_scanned = count
            if source.records_skipped:
                logger.warning(
                    "Skipped %d malformed vertex records in %s",
                    source.records_skipped, source.name,
                )
                if progress is not None:
                    progress.records_skipped += source.records_skipped

        if count == 0:
            raise NoDataError(
                "No valid vertex data found in the selected sources. "
                "Expected text records of the form 'v <x> <y> <z>'."
            )

        return GridExtent(min_x, min_y, max_x, max_y, count)

    def populate(
        self,
        sources: List[VertexSource],
        extent: GridExtent,
        rows: int,
        cols: int,
        progress: Optional[RasterProgress] = None,
    ) -> np.ndarray:
        """
        Second pass: bin every vertex into the grid, keeping the max height.

        Returns:
            Flat row-major heights with NO_DATA for empty cells
        """
        heights = np.full(rows * cols, NO_DATA, dtype=np.float64)
        binned = 0

        for i, source in enumerate(sources):
            if progress is not None:
                progress.sources_done = i
                progress.update("bin", f"Gridding: {i + 1} / {len(sources)} ({source.name})")
            for xyz in source.iter_chunks(self.chunk_size):
                lx, ly, z = self._local_xyz(xyz)
                col = np.floor((lx - extent.min_x) / self.grid_size).astype(np.int64)
                row = np.floor((ly - extent.min_y) / self.grid_size).astype(np.int64)
                inside = (row >= 0) & (row < rows) & (col >= 0) & (col < cols)
                # maximum.at is unbuffered, so repeated cell indices all count
                np.maximum.at(heights, row[inside] * cols + col[inside], z[inside])
                binned += int(np.count_nonzero(inside))
                if progress is not None:
                    progress.vertices_binned = binned

        return heights

    def run(
        self,
        sources: Iterable,
        progress: Optional[RasterProgress] = None,
    ) -> GridData:
        """
        Rasterize ``sources`` into a GridData.

        Raises:
            NoDataError: If the sources hold no valid vertex
            GridTooLargeError: If the grid would exceed max_cells
        """
        sources = [VertexSource.coerce(s) for s in sources]
        if progress is not None:
            progress.sources_total = len(sources)

        extent = self.scan_extent(sources, progress).expanded(self.grid_size)
        cols = int(math.ceil((extent.max_x - extent.min_x) / self.grid_size))
        rows = int(math.ceil((extent.max_y - extent.min_y) / self.grid_size))

        # Checked before the height array exists
        validate_grid_dimensions(
            rows, cols,
            (extent.min_x, extent.min_y, extent.max_x, extent.max_y),
            self.grid_size,
            self.max_cells,
        )

        if progress is not None:
            progress.update("allocate", f"Initialising grid: {cols} x {rows}")

        heights = self.populate(sources, extent, rows, cols, progress)

        if self.fill_passes > 0:
            if progress is not None:
                progress.sources_done = len(sources)
                progress.update("fill", "Filling small holes")
            heights = fill_holes(
                heights.reshape(rows, cols),
                min_neighbors=self.min_neighbors,
                passes=self.fill_passes,
            ).reshape(-1)

        grid = GridData(
            min_x=extent.min_x,
            min_y=extent.min_y,
            max_x=extent.max_x,
            max_y=extent.max_y,
            rows=rows,
            cols=cols,
            grid_size=self.grid_size,
            heights=heights,
            frame=self.frame,
        )

        if progress is not None:
            progress.sources_done = len(sources)
            progress.update(
                "done",
                f"Grid {cols} x {rows} from {extent.vertex_count:,} vertices",
            )
        else:
            logger.info("Grid %d x %d from %d vertices", cols, rows, extent.vertex_count)

        return grid


def rasterize(
    sources: Iterable,
    origin: Optional[Point3D] = None,
    grid_size: float = 1.0,
    boundary: Optional[Sequence] = None,
    progress: Optional[RasterProgress] = None,
    **kwargs,
) -> GridData:
    """
    Convert vertex sources into one height grid.

    Args:
        sources: Paths, file objects or VertexSource instances
        origin: Geographic origin the vertex coordinates are offsets from
        grid_size: Cell edge length
        boundary: Optional ordered site polygon (BoundaryPoints or (x, y)),
            used only to choose the grid rotation and anchor
        progress: Optional RasterProgress to poll while this runs
        **kwargs: max_cells, fill_passes, min_neighbors, chunk_size

    Returns:
        GridData
    """
    rasterizer = GridRasterizer(
        grid_size=grid_size,
        origin=origin,
        boundary=boundary,
        **kwargs,
    )
    return rasterizer.run(sources, progress)
