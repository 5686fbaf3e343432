"""
Boundary CSV Reader

Reads site boundary corner lists exported by survey software.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import List, Union

from ..core.grid import BoundaryPoint

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r'[,\t]+')


def parse_boundary_rows(text: str) -> List[BoundaryPoint]:
    """
    Parse ``id, northing, easting`` rows.

    Survey convention lists northing (X) before easting (Y); the returned
    points use x = easting and y = northing. Rows with fewer than three
    fields or non-numeric coordinates, such as a header, are skipped.
    """
    points = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = [p.strip() for p in _SEPARATORS.split(line)]
        if len(parts) < 3:
            continue
        try:
            northing = float(parts[1])
            easting = float(parts[2])
        except ValueError:
            logger.debug("Skipping boundary row %r", line)
            continue
        if not (math.isfinite(northing) and math.isfinite(easting)):
            continue
        points.append(BoundaryPoint(id=parts[0], x=easting, y=northing))
    return points


def read_boundary_csv(filepath: Union[str, Path]) -> List[BoundaryPoint]:
    """Load an ordered boundary polygon from a CSV file."""
    text = Path(filepath).read_text(encoding='utf-8-sig')
    points = parse_boundary_rows(text)
    logger.info("Read %d boundary vertices from %s", len(points), filepath)
    return points
