"""
Command Line Interface for DTM Volume Comparison

Usage:
    dtm-volume info <sources>...
    dtm-volume grid <sources>... --output <grid.npz>
    dtm-volume volume <grid1.npz> <grid2.npz> [--boundary <csv>]
    dtm-volume analyze <epoch1_dir> <epoch2_dir> [--boundary <csv>]

Every option can also be set through a DTM_VOLUME_<COMMAND>_<OPTION>
environment variable.
"""

import hashlib
import json
import logging
import math
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click

from .core.grid import DEFAULT_MAX_CELLS, GridData, Point3D
from .core.rasterizer import (
    DEFAULT_FILL_PASSES,
    DEFAULT_MIN_NEIGHBORS,
    GridRasterizer,
    RasterProgress,
)
from .core.validation import RasterError, ValidationError, VolumeError
from .core.volume import (
    DEFAULT_NOISE_THRESHOLD,
    DEFAULT_SUPERSAMPLE,
    BoundaryWeighting,
    VolumeCalculator,
    VolumeResult,
)
from .io.boundary import read_boundary_csv
from .io.grid_store import NpzGridStore, load_grid, save_grid
from .io.metadata import find_metadata_file, read_origin
from .io.vertex_stream import VertexSource, find_vertex_files

WEIGHTING_CHOICES = [w.value for w in BoundaryWeighting if w != BoundaryWeighting.NONE]


@click.group(context_settings={"auto_envvar_prefix": "DTM_VOLUME"})
@click.version_option(version="0.1.0")
@click.option('--verbose', '-v', is_flag=True, help='Log progress to stderr')
def main(verbose: bool):
    """DTM Volume Comparison Tool

    Grid two surveyed terrain epochs and calculate the cut/fill
    volumes between them, optionally inside a site boundary.
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


def _parse_origin(origin: Optional[str]) -> Optional[Point3D]:
    if not origin:
        return None
    parts = origin.split(',')
    if len(parts) != 3:
        raise ValueError(
            f"Origin must have exactly 3 values (got {len(parts)}). Format: x,y,z"
        )
    return Point3D(*[float(p.strip()) for p in parts])


def _expand_sources(paths: Tuple[str, ...]) -> List[Path]:
    """Directories expand to the vertex files they contain."""
    files: List[Path] = []
    for path in map(Path, paths):
        if path.is_dir():
            files.extend(find_vertex_files(path))
        else:
            files.append(path)
    return files


def _grid_epoch(
    paths: Tuple[str, ...],
    origin: Optional[Point3D],
    metadata: Optional[str],
    grid_size: float,
    boundary,
    max_cells: int,
    fill_passes: int,
    min_neighbors: int,
) -> GridData:
    files = _expand_sources(paths)
    if not files:
        raise RasterError("No OBJ/LAS/LAZ files found in the given sources.")

    if origin is None:
        if metadata:
            origin = read_origin(metadata)
        else:
            folder = next((Path(p) for p in paths if Path(p).is_dir()), None)
            origin = read_origin(folder) if folder else Point3D()

    click.echo(f"  Sources: {len(files)} file(s)")
    click.echo(f"  Origin:  ({origin.x:.3f}, {origin.y:.3f}, {origin.z:.3f})")

    rasterizer = GridRasterizer(
        grid_size=grid_size,
        origin=origin,
        boundary=boundary,
        max_cells=max_cells,
        fill_passes=fill_passes,
        min_neighbors=min_neighbors,
    )
    grid = rasterizer.run(files, RasterProgress())
    click.echo(f"  Grid size: {grid.rows} x {grid.cols}")
    if grid.frame.is_rotated:
        click.echo(f"  Rotation:  {math.degrees(grid.rotation_angle):.3f} deg (aligned to boundary)")
    return grid


def _epoch_fingerprint(
    folder: str,
    grid_size: float,
    boundary,
    max_cells: int,
) -> str:
    """Digest of everything an epoch grid is built from."""
    root = Path(folder).resolve()
    files = find_vertex_files(root)
    metadata = find_metadata_file(root)
    if metadata is not None:
        files.append(metadata)

    stats = []
    for path in files:
        stat = path.stat()
        stats.append([str(path.relative_to(root)), stat.st_size, stat.st_mtime_ns])

    payload = {
        "folder": str(root),
        "files": stats,
        "grid_size": grid_size,
        "max_cells": max_cells,
        "boundary": [[p.id, p.x, p.y] for p in boundary] if boundary else None,
        "fill": [DEFAULT_FILL_PASSES, DEFAULT_MIN_NEIGHBORS],
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def _report_result(
    result: VolumeResult,
    grid1: GridData,
    grid2: GridData,
    boundary,
    output: Optional[str],
    export_csv: Optional[str],
    export_tif: Optional[str],
    report: Optional[str],
    plot: bool,
) -> None:
    click.echo("\n" + result.summary())

    if output:
        try:
            from .core.validation import validate_output_path
            from .io.exporters import export_summary_json
            export_summary_json(result, validate_output_path(output, "output JSON file"))
            click.echo(f"\nResults saved to: {output}")
        except (ValidationError, OSError) as e:
            _fail(f"Error saving output: {e}")

    if export_csv:
        try:
            from .core.validation import validate_output_path
            from .io.exporters import export_diff_map_csv
            export_diff_map_csv(result, validate_output_path(export_csv, "CSV output"))
            click.echo(f"Difference map exported to: {export_csv}")
        except (ValidationError, OSError) as e:
            _fail(f"Error exporting CSV: {e}")

    if export_tif:
        try:
            from .core.validation import validate_output_path
            from .io.exporters import export_diff_map_geotiff
            export_diff_map_geotiff(result, str(validate_output_path(export_tif, "GeoTIFF output")))
            click.echo(f"Difference raster exported to: {export_tif}")
        except ImportError:
            _fail("Error: rasterio required for GeoTIFF export")
        except (ValidationError, OSError) as e:
            _fail(f"Error exporting GeoTIFF: {e}")

    if plot or report:
        try:
            from .utils.visualization import create_report_figure, save_report
            import matplotlib.pyplot as plt

            boundary_local = grid1.frame.polygon_to_local(boundary) if boundary else None
            fig = create_report_figure(grid1, grid2, result, boundary_local=boundary_local)

            if report:
                save_report(fig, report)
                click.echo(f"Report saved to: {report}")

            if plot:
                plt.show()

        except ImportError:
            click.echo("Warning: matplotlib required for plotting", err=True)


@main.command()
@click.argument('sources', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--chunk-size', default=500_000, help='Vertices per streamed chunk')
def info(sources: Tuple[str, ...], chunk_size: int):
    """Display vertex counts and raw extents of vertex files."""
    files = _expand_sources(sources)
    if not files:
        _fail("Error: no OBJ/LAS/LAZ files found")

    click.echo("=" * 50)
    click.echo("VERTEX SOURCE INFO")
    click.echo("=" * 50)

    for path in files:
        source = VertexSource(path)
        count = 0
        mins = [math.inf] * 3
        maxs = [-math.inf] * 3
        try:
            for xyz in source.iter_chunks(chunk_size):
                count += len(xyz)
                for axis in range(3):
                    mins[axis] = min(mins[axis], float(xyz[:, axis].min()))
                    maxs[axis] = max(maxs[axis], float(xyz[:, axis].max()))
        except (OSError, ImportError) as e:
            click.echo(f"Error reading {path}: {e}", err=True)
            sys.exit(1)

        click.echo(f"File:      {path}")
        click.echo(f"Vertices:  {count:,}")
        if source.records_skipped:
            click.echo(f"Skipped:   {source.records_skipped:,} malformed records")
        if count:
            click.echo(f"  X:       {mins[0]:.3f} to {maxs[0]:.3f}")
            click.echo(f"  Y:       {mins[1]:.3f} to {maxs[1]:.3f}")
            click.echo(f"  Z:       {mins[2]:.3f} to {maxs[2]:.3f}")
        click.echo("-" * 50)


@main.command()
@click.argument('sources', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--output', '-o', required=True, type=click.Path(), help='Output grid file (.npz)')
@click.option('--grid-size', '-g', default=1.0, help='Grid cell size (default: 1.0)')
@click.option('--origin', type=str, help='Geographic origin as "x,y,z" (overrides metadata)')
@click.option('--metadata', type=click.Path(exists=True), help='Metadata.xml holding the origin')
@click.option('--boundary', '-b', type=click.Path(exists=True),
              help='Boundary CSV (id,northing,easting); aligns the grid to its first edge')
@click.option('--max-cells', default=DEFAULT_MAX_CELLS, help='Maximum number of grid cells')
@click.option('--fill-passes', default=DEFAULT_FILL_PASSES, help='Hole-filling passes (0 disables)')
@click.option('--min-neighbors', default=DEFAULT_MIN_NEIGHBORS,
              help='Valid neighbours needed to fill a hole')
def grid(
    sources: Tuple[str, ...],
    output: str,
    grid_size: float,
    origin: Optional[str],
    metadata: Optional[str],
    boundary: Optional[str],
    max_cells: int,
    fill_passes: int,
    min_neighbors: int,
):
    """Rasterize vertex files (or folders of them) into a height grid.

    Example:

        dtm-volume grid survey_2024/ -o epoch1.npz -g 2.0 -b boundary.csv
    """
    from .core.validation import validate_output_path

    try:
        output_path = validate_output_path(output, "grid output")
        origin_point = _parse_origin(origin)
        boundary_points = read_boundary_csv(boundary) if boundary else None
    except (ValidationError, ValueError, OSError) as e:
        _fail(f"Error: {e}")

    click.echo(f"Gridding (grid size: {grid_size})...")
    try:
        result = _grid_epoch(
            sources, origin_point, metadata, grid_size, boundary_points,
            max_cells, fill_passes, min_neighbors,
        )
    except (RasterError, ValidationError, OSError, ImportError) as e:
        _fail(f"Error generating grid: {e}")

    path = save_grid(result, output_path)
    click.echo(f"Saved to: {path}")


@main.command()
@click.argument('grid1', type=click.Path(exists=True))
@click.argument('grid2', type=click.Path(exists=True))
@click.option('--boundary', '-b', type=click.Path(exists=True), help='Boundary CSV (id,northing,easting)')
@click.option('--weighting', '-w', type=click.Choice(WEIGHTING_CHOICES), default='exact',
              help='Boundary cell weighting (default: exact)')
@click.option('--noise-threshold', default=DEFAULT_NOISE_THRESHOLD,
              help='Ignore height changes smaller than this')
@click.option('--supersample', default=DEFAULT_SUPERSAMPLE, type=click.IntRange(min=1),
              help='Sub-grid size for supersample weighting')
@click.option('--resample/--no-resample', default=False,
              help="Resample the second grid into the first grid's frame when they differ")
@click.option('--output', '-o', type=click.Path(), help='Output JSON file for results')
@click.option('--export-csv', type=click.Path(), help='Export the difference map to CSV')
@click.option('--export-tif', type=click.Path(), help='Export the difference map to GeoTIFF')
@click.option('--report', type=click.Path(), help='Save PNG/PDF report to file')
@click.option('--plot', is_flag=True, help='Show visualization plots')
def volume(
    grid1: str,
    grid2: str,
    boundary: Optional[str],
    weighting: str,
    noise_threshold: float,
    supersample: int,
    resample: bool,
    output: Optional[str],
    export_csv: Optional[str],
    export_tif: Optional[str],
    report: Optional[str],
    plot: bool,
):
    """Calculate cut/fill volumes between two saved grids.

    Example:

        dtm-volume volume epoch1.npz epoch2.npz -b boundary.csv -o result.json
    """
    try:
        first = load_grid(grid1)
        second = load_grid(grid2)
        boundary_points = read_boundary_csv(boundary) if boundary else None
    except (OSError, ValueError, KeyError) as e:
        _fail(f"Error loading input: {e}")

    if resample and not first.frame.matches(second.frame):
        click.echo("Resampling second grid into the first grid's frame...")
        second = second.resample_to(first.frame, first.grid_size)

    click.echo("Calculating volumes...")
    try:
        result = VolumeCalculator(
            first, second, boundary_points,
            weighting=BoundaryWeighting(weighting),
            noise_threshold=noise_threshold,
            supersample=supersample,
        ).calculate()
    except (VolumeError, ValidationError) as e:
        _fail(f"Error calculating volumes: {e}")

    _report_result(result, first, second, boundary_points, output, export_csv, export_tif, report, plot)


@main.command()
@click.argument('epoch1', type=click.Path(exists=True, file_okay=False))
@click.argument('epoch2', type=click.Path(exists=True, file_okay=False))
@click.option('--boundary', '-b', type=click.Path(exists=True), help='Boundary CSV (id,northing,easting)')
@click.option('--grid-size', '-g', default=3.0, help='Grid cell size (default: 3.0)')
@click.option('--weighting', '-w', type=click.Choice(WEIGHTING_CHOICES), default='exact',
              help='Boundary cell weighting (default: exact)')
@click.option('--noise-threshold', default=DEFAULT_NOISE_THRESHOLD,
              help='Ignore height changes smaller than this')
@click.option('--max-cells', default=DEFAULT_MAX_CELLS, help='Maximum number of grid cells')
@click.option('--cache', type=click.Path(file_okay=False), help='Directory for cached grids')
@click.option('--refresh', is_flag=True, help='Ignore cached grids and re-rasterize')
@click.option('--output', '-o', type=click.Path(), help='Output JSON file for results')
@click.option('--export-csv', type=click.Path(), help='Export the difference map to CSV')
@click.option('--export-tif', type=click.Path(), help='Export the difference map to GeoTIFF')
@click.option('--report', type=click.Path(), help='Save PNG/PDF report to file')
@click.option('--plot', is_flag=True, help='Show visualization plots')
def analyze(
    epoch1: str,
    epoch2: str,
    boundary: Optional[str],
    grid_size: float,
    weighting: str,
    noise_threshold: float,
    max_cells: int,
    cache: Optional[str],
    refresh: bool,
    output: Optional[str],
    export_csv: Optional[str],
    export_tif: Optional[str],
    report: Optional[str],
    plot: bool,
):
    """Grid two survey folders and compare them in one run.

    Each folder holds the OBJ tiles of one epoch and, optionally, a
    Metadata.xml with the geographic origin. With a boundary both grids
    are aligned to its first edge.

    Example:

        dtm-volume analyze survey_2023/ survey_2024/ -b boundary.csv --cache .grids
    """
    try:
        boundary_points = read_boundary_csv(boundary) if boundary else None
    except (OSError, ValueError) as e:
        _fail(f"Error reading boundary: {e}")

    if boundary_points is not None and len(boundary_points) < 3:
        _fail(f"Error: boundary needs at least 3 vertices, got {len(boundary_points)}")

    store = NpzGridStore(cache) if cache else None
    grids = []

    for index, folder in enumerate((epoch1, epoch2), start=1):
        key = f"grid{index}"
        cached = None
        if store is not None:
            fingerprint = _epoch_fingerprint(folder, grid_size, boundary_points, max_cells)
            if not refresh:
                cached = store.load(key, fingerprint)
        if cached is not None:
            click.echo(f"Epoch {index}: using cached grid ({cached.rows} x {cached.cols})")
            grids.append(cached)
            continue

        click.echo(f"Epoch {index}: gridding {folder} (grid size: {grid_size})...")
        try:
            epoch_grid = _grid_epoch(
                (folder,), None, None, grid_size, boundary_points,
                max_cells, DEFAULT_FILL_PASSES, DEFAULT_MIN_NEIGHBORS,
            )
        except (RasterError, ValidationError, OSError, ImportError) as e:
            _fail(f"Error generating grid for epoch {index}: {e}")

        if store is not None:
            store.save(key, epoch_grid, fingerprint)
        grids.append(epoch_grid)

    first, second = grids
    if not first.frame.matches(second.frame):
        click.echo("Epoch frames differ; resampling epoch 2 into epoch 1's frame...")
        second = second.resample_to(first.frame, first.grid_size)

    click.echo("Calculating volumes...")
    try:
        result = VolumeCalculator(
            first, second, boundary_points,
            weighting=BoundaryWeighting(weighting),
            noise_threshold=noise_threshold,
        ).calculate()
    except (VolumeError, ValidationError) as e:
        _fail(f"Error calculating volumes: {e}")

    _report_result(result, first, second, boundary_points, output, export_csv, export_tif, report, plot)


if __name__ == '__main__':
    main()
