"""
Vertex Streaming Module

Reads vertex records incrementally from survey exports so that memory is
bounded by the chunk size, not by the file size.

Supported sources:
    - OBJ-style text (``v <x> <y> <z> ...`` records, other lines ignored)
    - LAS/LAZ point clouds (requires laspy)
"""

from __future__ import annotations

import codecs
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np

try:
    import laspy
    HAS_LASPY = True
except ImportError:
    HAS_LASPY = False

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 1 << 20      # bytes per read
DEFAULT_CHUNK_SIZE = 500_000      # vertices per yielded array

TEXT_SUFFIXES = {'.obj', '.txt', '.xyz'}
LAS_SUFFIXES = {'.las', '.laz'}


def iter_lines(stream: IO, block_size: int = DEFAULT_BLOCK_SIZE) -> Iterator[str]:
    """
    Yield the lines of ``stream`` while reading it in fixed-size blocks.

    A line split across two blocks is held back until the next block
    completes it. Works with binary (UTF-8) and text streams. Empty lines
    are dropped.
    """
    decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
    partial = ''

    while True:
        block = stream.read(block_size)
        if not block:
            break
        text = decoder.decode(block) if isinstance(block, bytes) else block
        lines = (partial + text).splitlines(keepends=True)

        # The last piece may be an unfinished line
        partial = ''
        if lines and not lines[-1].endswith(('\n', '\r')):
            partial = lines.pop()

        for line in lines:
            line = line.rstrip('\r\n')
            if line:
                yield line

    partial += decoder.decode(b'', final=True)
    if partial:
        yield partial


def parse_vertex_line(line: str) -> Optional[Tuple[float, float, float]]:
    """
    Parse one ``v x y z ...`` record.

    Returns None for any other line, and for short or malformed records.
    """
    parts = line.split()
    if len(parts) < 4 or parts[0] != 'v':
        return None
    try:
        x, y, z = float(parts[1]), float(parts[2]), float(parts[3])
    except ValueError:
        return None
    if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
        return None
    return (x, y, z)


def parse_vertex_lines(lines: Iterable[str]) -> Tuple[np.ndarray, int]:
    """
    Parse many lines into an Nx3 array.

    Returns:
        (xyz, skipped) where ``skipped`` counts lines that looked like
        vertex records but could not be parsed
    """
    coords: List[Tuple[float, float, float]] = []
    skipped = 0
    for line in lines:
        vertex = parse_vertex_line(line)
        if vertex is not None:
            coords.append(vertex)
        elif line.startswith('v ') or line.startswith('v\t'):
            skipped += 1
    if not coords:
        return np.empty((0, 3), dtype=np.float64), skipped
    return np.array(coords, dtype=np.float64), skipped


@dataclass
class VertexSource:
    """
    One streamed vertex source.

    Attributes:
        source: File path, or a seekable binary/text file object
        name: Display name used in progress messages
        fmt: 'text' or 'las'; inferred from the path suffix when omitted
        block_size: Bytes per read for text sources
    """
    source: Union[str, Path, IO]
    name: str = ""
    fmt: Optional[str] = None
    block_size: int = DEFAULT_BLOCK_SIZE
    records_skipped: int = field(default=0, init=False)

    def __post_init__(self):
        if isinstance(self.source, (str, Path)):
            self.source = Path(self.source)
            if not self.name:
                self.name = self.source.name
            if self.fmt is None:
                suffix = self.source.suffix.lower()
                self.fmt = 'las' if suffix in LAS_SUFFIXES else 'text'
        else:
            if not self.name:
                self.name = getattr(self.source, 'name', '<stream>')
            if self.fmt is None:
                self.fmt = 'text'

        if self.fmt not in ('text', 'las'):
            raise ValueError(f"Unsupported vertex format: {self.fmt}")

    @classmethod
    def coerce(cls, source) -> VertexSource:
        if isinstance(source, VertexSource):
            return source
        return cls(source)

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[np.ndarray]:
        """
        Yield Nx3 float64 arrays of raw vertex coordinates.

        Every call restarts from the beginning of the source.
        """
        self.records_skipped = 0
        if self.fmt == 'las':
            yield from self._iter_las_chunks(chunk_size)
        else:
            yield from self._iter_text_chunks(chunk_size)

    def _iter_text_chunks(self, chunk_size: int) -> Iterator[np.ndarray]:
        if isinstance(self.source, Path):
            with open(self.source, 'rb') as stream:
                yield from self._parse_stream(stream, chunk_size)
        else:
            if self.source.seekable():
                self.source.seek(0)
            yield from self._parse_stream(self.source, chunk_size)

    def _parse_stream(self, stream: IO, chunk_size: int) -> Iterator[np.ndarray]:
        pending: List[str] = []
        for line in iter_lines(stream, self.block_size):
            if line[0] != 'v':
                continue
            pending.append(line)
            if len(pending) >= chunk_size:
                xyz, skipped = parse_vertex_lines(pending)
                self.records_skipped += skipped
                pending = []
                if len(xyz):
                    yield xyz
        if pending:
            xyz, skipped = parse_vertex_lines(pending)
            self.records_skipped += skipped
            if len(xyz):
                yield xyz

    def _iter_las_chunks(self, chunk_size: int) -> Iterator[np.ndarray]:
        """Read LAS/LAZ points in chunks using laspy."""
        if not HAS_LASPY:
            raise ImportError(
                "laspy is required to stream LAS/LAZ files. "
                "Install with: pip install laspy lazrs"
            )

        with laspy.open(self.source) as reader:
            for points in reader.chunk_iterator(chunk_size):
                xyz = np.column_stack([points.x, points.y, points.z]).astype(np.float64)
                finite = np.all(np.isfinite(xyz), axis=1)
                self.records_skipped += int(np.count_nonzero(~finite))
                if np.any(finite):
                    yield xyz[finite]


def find_vertex_files(directory: Union[str, Path]) -> List[Path]:
    """Sorted list of OBJ/LAS/LAZ files directly inside or below ``directory``."""
    directory = Path(directory)
    suffixes = {'.obj'} | LAS_SUFFIXES
    files = sorted(
        p for p in directory.rglob('*')
        if p.is_file() and p.suffix.lower() in suffixes
    )
    logger.debug("Found %d vertex files under %s", len(files), directory)
    return files
