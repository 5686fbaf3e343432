"""I/O modules for loading and saving data."""

from .vertex_stream import VertexSource, iter_lines, find_vertex_files
from .boundary import read_boundary_csv
from .metadata import read_origin
from .grid_store import GridStore, MemoryGridStore, NpzGridStore, save_grid, load_grid
from .exporters import (
    export_summary_json,
    export_diff_map_csv,
    export_boundary_geojson,
    export_grid_geotiff,
    export_diff_map_geotiff,
)

__all__ = [
    "VertexSource",
    "iter_lines",
    "find_vertex_files",
    "read_boundary_csv",
    "read_origin",
    "GridStore",
    "MemoryGridStore",
    "NpzGridStore",
    "save_grid",
    "load_grid",
    "export_summary_json",
    "export_diff_map_csv",
    "export_boundary_geojson",
    "export_grid_geotiff",
    "export_diff_map_geotiff",
]
