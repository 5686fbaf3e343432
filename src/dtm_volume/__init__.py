"""
DTM Volume Comparison Tool

A Python library for gridding surveyed terrain epochs and calculating
cut/fill volumes between them, optionally inside a site boundary.
"""

__version__ = "0.1.0"

from .core.grid import GridData, GridFrame, Point3D, BoundaryPoint, NO_DATA
from .core.rasterizer import rasterize, GridRasterizer, RasterProgress
from .core.volume import compute_volume, VolumeCalculator, VolumeResult, BoundaryWeighting

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
