"""
Grid Persistence

Stores computed grids so an epoch only has to be rasterized once. The
store is injected by the caller; the core never caches on its own.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

import numpy as np

from ..core.grid import GridData, GridFrame, Point3D

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class GridStore(Protocol):
    """
    Keyed repository of GridData.

    A grid may be saved with a fingerprint of the inputs it was built from.
    Loading with a fingerprint returns None unless the stored one matches.
    """

    def save(self, key: str, grid: GridData, fingerprint: Optional[str] = None) -> None:
        ...

    def load(self, key: str, fingerprint: Optional[str] = None) -> Optional[GridData]:
        ...

    def delete(self, key: str) -> None:
        ...

    def clear(self) -> None:
        ...

    def keys(self) -> List[str]:
        ...


def grid_metadata(grid: GridData) -> dict:
    """Everything but the heights, as JSON-safe values."""
    return {
        "version": FORMAT_VERSION,
        "min_x": grid.min_x,
        "min_y": grid.min_y,
        "max_x": grid.max_x,
        "max_y": grid.max_y,
        "rows": grid.rows,
        "cols": grid.cols,
        "grid_size": grid.grid_size,
        "rotation_angle": grid.rotation_angle,
        "anchor": [grid.anchor.x, grid.anchor.y, grid.anchor.z],
    }


def grid_from_metadata(meta: dict, heights: np.ndarray) -> GridData:
    anchor = meta.get("anchor", [0.0, 0.0, 0.0])
    return GridData(
        min_x=meta["min_x"],
        min_y=meta["min_y"],
        max_x=meta["max_x"],
        max_y=meta["max_y"],
        rows=int(meta["rows"]),
        cols=int(meta["cols"]),
        grid_size=meta["grid_size"],
        heights=heights,
        frame=GridFrame(meta.get("rotation_angle", 0.0), Point3D(*anchor)),
    )


def save_grid(
    grid: GridData,
    filepath: Union[str, Path],
    fingerprint: Optional[str] = None,
) -> Path:
    """Write a grid to a compressed .npz file."""
    filepath = Path(filepath)
    if filepath.suffix != '.npz':
        filepath = filepath.with_suffix('.npz')
    meta = grid_metadata(grid)
    if fingerprint is not None:
        meta["fingerprint"] = fingerprint
    np.savez_compressed(
        filepath,
        heights=grid.heights,
        metadata=np.array(json.dumps(meta)),
    )
    return filepath


def _read_npz(filepath: Union[str, Path]) -> Tuple[dict, np.ndarray]:
    with np.load(filepath, allow_pickle=False) as data:
        meta = json.loads(str(data["metadata"]))
        heights = np.array(data["heights"], dtype=np.float64)
    return meta, heights


def load_grid(filepath: Union[str, Path]) -> GridData:
    """Read a grid written by :func:`save_grid`."""
    return grid_from_metadata(*_read_npz(filepath))


class MemoryGridStore:
    """In-process store, handy for tests and single-session hosts."""

    def __init__(self):
        self._grids: Dict[str, Tuple[GridData, Optional[str]]] = {}

    def save(self, key: str, grid: GridData, fingerprint: Optional[str] = None) -> None:
        self._grids[key] = (grid, fingerprint)

    def load(self, key: str, fingerprint: Optional[str] = None) -> Optional[GridData]:
        entry = self._grids.get(key)
        if entry is None:
            return None
        grid, stored = entry
        if fingerprint is not None and stored != fingerprint:
            return None
        return grid

    def delete(self, key: str) -> None:
        self._grids.pop(key, None)

    def clear(self) -> None:
        self._grids.clear()

    def keys(self) -> List[str]:
        return sorted(self._grids)


class NpzGridStore:
    """One .npz file per key inside a cache directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = re.sub(r'[^A-Za-z0-9_.-]', '_', key)
        return self.directory / f"{safe}.npz"

    def save(self, key: str, grid: GridData, fingerprint: Optional[str] = None) -> None:
        path = save_grid(grid, self._path(key), fingerprint)
        logger.info("Cached grid '%s' at %s", key, path)

    def load(self, key: str, fingerprint: Optional[str] = None) -> Optional[GridData]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            meta, heights = _read_npz(path)
            if fingerprint is not None and meta.get("fingerprint") != fingerprint:
                logger.info("Cached grid '%s' was built from other inputs", key)
                return None
            return grid_from_metadata(meta, heights)
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Ignoring unreadable cached grid %s: %s", path, e)
            return None

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def clear(self) -> None:
        for path in self.directory.glob('*.npz'):
            path.unlink()

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.directory.glob('*.npz'))
