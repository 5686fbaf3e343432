"""Core data structures and algorithms."""

from .grid import GridData, GridFrame, Point3D, BoundaryPoint, NO_DATA
from .rasterizer import rasterize, GridRasterizer, RasterProgress
from .volume import compute_volume, VolumeCalculator, VolumeResult, BoundaryWeighting

__all__ = [
    "GridData",
    "GridFrame",
    "Point3D",
    "BoundaryPoint",
    "NO_DATA",
    "rasterize",
    "GridRasterizer",
    "RasterProgress",
    "compute_volume",
    "VolumeCalculator",
    "VolumeResult",
    "BoundaryWeighting",
]
