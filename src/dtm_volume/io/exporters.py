"""
Export utilities for volume comparison results.

Provides CSV, JSON, GeoJSON, and optional GeoTIFF raster exports.
CSV and JSON go through the standard library writers, GeoJSON geometry
through shapely and rasters through rasterio.
"""

from __future__ import annotations

import csv
import json
import math
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

import numpy as np

from ..core.grid import NO_DATA, GridFrame, boundary_xy

if TYPE_CHECKING:
    from ..core.grid import GridData
    from ..core.volume import VolumeResult


def export_summary_json(
    result: 'VolumeResult',
    filepath: str,
    include_diff_map: bool = False,
    indent: int = 2,
) -> None:
    """
    Export volume summary to JSON.

    Args:
        result: VolumeResult from volume calculation
        filepath: Output JSON file path
        include_diff_map: Include the full difference grid (can be large)
        indent: JSON indentation level (default: 2)
    """
    data = result.to_dict()

    if include_diff_map:
        data['diff_map']['data'] = result.diff_map.data.tolist()

    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)


def export_diff_map_csv(
    result: 'VolumeResult',
    filepath: str,
    include_header: bool = True,
    skip_zero: bool = True,
) -> None:
    """
    Export per-cell height differences to CSV.

    Columns: row, col, x, y, easting, northing, diff

    ``x``/``y`` are cell centres in the grid frame, ``easting``/``northing``
    the same centres in global coordinates.

    Args:
        result: VolumeResult from volume calculation
        filepath: Output CSV file path
        include_header: Whether to include column header row (default: True)
        skip_zero: Leave out cells with no difference (default: True)
    """
    diff = result.diff_map
    grid = diff.as_array()
    frame = diff.frame

    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)

        if include_header:
            writer.writerow(['row', 'col', 'x', 'y', 'easting', 'northing', 'diff'])

        for row in range(diff.rows):
            y = diff.min_y + (row + 0.5) * diff.grid_size
            for col in range(diff.cols):
                value = grid[row, col]
                if skip_zero and value == 0.0:
                    continue
                x = diff.min_x + (col + 0.5) * diff.grid_size
                gx, gy = frame.to_global(x, y)
                writer.writerow([
                    row, col,
                    f"{x:.4f}", f"{y:.4f}",
                    f"{float(gx):.4f}", f"{float(gy):.4f}",
                    f"{value:.4f}",
                ])


def export_boundary_geojson(
    boundary: Sequence,
    filepath: str,
    properties: Optional[Dict[str, Any]] = None,
    crs: Optional[str] = None,
) -> None:
    """
    Export a site boundary to GeoJSON.

    Args:
        boundary: BoundaryPoints or (x, y) pairs in global coordinates
        filepath: Output GeoJSON file path
        properties: Optional properties dict to attach to feature
        crs: Optional CRS string (added as foreign member)
    """
    from shapely.geometry import Polygon, mapping

    polygon = Polygon(boundary_xy(boundary))

    geojson: Dict[str, Any] = {
        "type": "FeatureCollection",
        "features": [{
            "type": "Feature",
            "geometry": mapping(polygon),
            "properties": {"area": polygon.area, **(properties or {})},
        }]
    }

    # GeoJSON 2008 allowed a named crs member
    if crs:
        geojson["crs"] = {
            "type": "name",
            "properties": {"name": crs}
        }

    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(geojson, f, indent=2)


def frame_transform(frame: GridFrame, min_x: float, max_y: float, grid_size: float):
    """
    Affine transform from raster (col, row) to global coordinates.

    Raster row 0 is the top of the grid, so rows are flipped before
    writing. The rotation of the local frame is carried in the transform.
    """
    from rasterio.transform import Affine

    cos_a = math.cos(frame.rotation_angle)
    sin_a = math.sin(frame.rotation_angle)
    # Global position of the local top-left corner
    gx, gy = frame.to_global(min_x, max_y)
    return Affine(
        grid_size * cos_a, grid_size * sin_a, float(gx),
        grid_size * sin_a, -grid_size * cos_a, float(gy),
    )


def _write_geotiff(
    data: np.ndarray,
    filepath: str,
    transform,
    crs: Optional[str],
    nodata: Optional[float],
) -> None:
    try:
        import rasterio
    except ImportError:
        raise ImportError(
            "rasterio required for raster export. "
            "Install with: pip install rasterio"
        )

    # Flip vertically for GeoTIFF convention
    data = np.flipud(data)

    with rasterio.open(
        filepath,
        'w',
        driver='GTiff',
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)


def export_grid_geotiff(
    grid: 'GridData',
    filepath: str,
    crs: Optional[str] = None,
) -> None:
    """
    Export a height grid to GeoTIFF (requires rasterio).

    Rows are laid out from the grid's cell extent (rows * grid_size), so a
    grid whose stored max_y is not a whole number of cells above min_y is
    anchored at the top of its last full row.
    """
    top = grid.min_y + grid.rows * grid.grid_size
    transform = frame_transform(grid.frame, grid.min_x, top, grid.grid_size)
    _write_geotiff(grid.elevations.copy(), filepath, transform, crs, NO_DATA)


def export_diff_map_geotiff(
    result: 'VolumeResult',
    filepath: str,
    crs: Optional[str] = None,
) -> None:
    """
    Export the signed height difference map to GeoTIFF (requires rasterio).

    Positive values are fill, negative values cut, zero unchanged or
    outside the comparison.
    """
    diff = result.diff_map
    top = diff.min_y + diff.rows * diff.grid_size
    transform = frame_transform(diff.frame, diff.min_x, top, diff.grid_size)
    _write_geotiff(diff.as_array().copy(), filepath, transform, crs, None)
