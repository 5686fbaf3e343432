"""
Shared pytest fixtures and configuration for dtm_volume tests.
"""

import numpy as np
import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_laspy: requires laspy to be installed"
    )
    config.addinivalue_line(
        "markers", "requires_matplotlib: requires matplotlib to be installed"
    )
    config.addinivalue_line(
        "markers", "requires_rasterio: requires rasterio for GeoTIFF tests"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests based on missing dependencies."""
    try:
        import laspy
        laspy_available = True
    except ImportError:
        laspy_available = False

    try:
        import matplotlib
        matplotlib_available = True
    except ImportError:
        matplotlib_available = False

    try:
        import rasterio
        rasterio_available = True
    except ImportError:
        rasterio_available = False

    for item in items:
        if "requires_laspy" in item.keywords and not laspy_available:
            item.add_marker(pytest.mark.skip(reason="laspy not installed"))
        if "requires_matplotlib" in item.keywords and not matplotlib_available:
            item.add_marker(pytest.mark.skip(reason="matplotlib not installed"))
        if "requires_rasterio" in item.keywords and not rasterio_available:
            item.add_marker(pytest.mark.skip(reason="rasterio not installed"))


@pytest.fixture
def write_obj():
    """Write (x, y, z) vertices as an OBJ file, with a face record mixed in."""

    def _write(path, points, header="# test surface\n"):
        lines = [header]
        for x, y, z in points:
            lines.append(f"v {x} {y} {z}\n")
        lines.append("f 1 2 3\n")
        path.write_text("".join(lines), encoding="utf-8")
        return path

    return _write


def flat_surface(size=10.0, spacing=0.5, z=100.0):
    """Regular lattice of vertices at constant height."""
    coords = np.arange(0.0, size + spacing / 2, spacing)
    return [(float(x), float(y), z) for y in coords for x in coords]


@pytest.fixture
def epoch_dirs(tmp_path, write_obj):
    """Two survey folders one unit apart in height, sharing a metadata origin."""
    metadata = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<ModelMetadata version="1">\n'
        '  <SRS>EPSG:32633</SRS>\n'
        '  <SRSOrigin>500000,4000000,0</SRSOrigin>\n'
        '</ModelMetadata>\n'
    )
    dirs = []
    for name, z in (("epoch1", 100.0), ("epoch2", 101.0)):
        folder = tmp_path / name
        (folder / "Tile_+000_+000").mkdir(parents=True)
        (folder / "Metadata.xml").write_text(metadata, encoding="utf-8")
        write_obj(folder / "Tile_+000_+000" / "tile.obj", flat_surface(z=z))
        dirs.append(folder)
    return dirs


@pytest.fixture
def flat_grids():
    """Two 4 x 4 unit grids over [0, 4]^2, the second one unit higher."""
    from dtm_volume.core.grid import GridData

    base = np.full((4, 4), 10.0)
    return GridData.from_array(base), GridData.from_array(base + 1.0)


@pytest.fixture
def site_boundary():
    """Counter-clockwise rectangle covering the left 2.5 columns of flat_grids."""
    return [(-1.0, -1.0), (2.5, -1.0), (2.5, 5.0), (-1.0, 5.0)]


@pytest.fixture
def tmp_output_dir(tmp_path):
    """Temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
