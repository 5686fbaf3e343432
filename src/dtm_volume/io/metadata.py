"""
Survey Metadata Reader

Extracts the geographic origin that vertex coordinates are offsets from.
Photogrammetry exports ship it in a ``Metadata.xml`` next to the tiles.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Union

from ..core.grid import Point3D

logger = logging.getLogger(__name__)

METADATA_FILENAME = 'metadata.xml'
ORIGIN_TAGS = ('SRSOrigin', 'Origin')


def find_metadata_file(directory: Union[str, Path]) -> Optional[Path]:
    """Case-insensitive lookup of metadata.xml directly inside ``directory``."""
    directory = Path(directory)
    if not directory.is_dir():
        return None
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.name.lower() == METADATA_FILENAME:
            return path
    return None


def parse_origin(xml_text: str) -> Optional[Point3D]:
    """
    Origin from metadata XML text.

    Reads the first ``SRSOrigin`` (or else ``Origin``) element and expects at
    least three comma- or whitespace-separated numbers.
    """
    root = ET.fromstring(xml_text)
    for tag in ORIGIN_TAGS:
        element = root if root.tag == tag else root.find(f'.//{tag}')
        if element is None:
            continue
        fields = [f for f in re.split(r'[,\s]+', element.text or '') if f]
        if len(fields) >= 3:
            return Point3D(float(fields[0]), float(fields[1]), float(fields[2]))
    return None


def read_origin(path: Union[str, Path]) -> Point3D:
    """
    Geographic origin for a survey folder or metadata file.

    Falls back to (0, 0, 0) when no metadata exists or it cannot be parsed.
    """
    path = Path(path)
    metadata = find_metadata_file(path) if path.is_dir() else path

    if metadata is None or not metadata.exists():
        logger.info("No metadata.xml found at %s; using origin (0, 0, 0)", path)
        return Point3D()

    try:
        origin = parse_origin(metadata.read_text(encoding='utf-8'))
    except (ET.ParseError, ValueError, UnicodeDecodeError) as e:
        logger.warning("Could not parse %s (%s); using origin (0, 0, 0)", metadata, e)
        return Point3D()

    if origin is None:
        logger.warning("No origin element in %s; using origin (0, 0, 0)", metadata)
        return Point3D()

    return origin
