"""
Basic Volume Comparison Example

This example demonstrates:
1. Writing two synthetic survey epochs as OBJ tiles
2. Gridding each epoch in a frame aligned to a site boundary
3. Calculating cut/fill volumes inside the boundary
4. Comparing the boundary weighting strategies
5. Visualizing results

Run from the project root:
    python examples/basic_analysis.py
"""

import math
import sys
import tempfile
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from dtm_volume import BoundaryPoint, BoundaryWeighting, Point3D, RasterProgress, rasterize
from dtm_volume.core.volume import VolumeCalculator

ORIGIN = Point3D(350000.0, 5600000.0, 0.0)


def terrain(x, y):
    """Gently rolling ground around 100m."""
    return 100.0 + 1.5 * np.sin(x / 15.0) + 1.0 * np.cos(y / 20.0)


def write_epoch(path: Path, spacing: float, stockpile: bool, seed: int) -> int:
    """Write one epoch as an OBJ tile of vertex offsets from ORIGIN."""
    rng = np.random.default_rng(seed)
    coords = np.arange(0.0, 120.0 + spacing, spacing)
    xx, yy = np.meshgrid(coords, coords)
    zz = terrain(xx, yy) + rng.normal(0.0, 0.02, xx.shape)

    if stockpile:
        # Conical pile added, pit excavated
        pile = np.clip(4.0 - np.hypot(xx - 40.0, yy - 60.0) / 3.0, 0.0, None)
        pit = np.where(np.hypot(xx - 85.0, yy - 55.0) < 10.0, -2.0, 0.0)
        zz = zz + pile + pit

    with open(path, "w", encoding="utf-8") as f:
        f.write("# synthetic survey\n")
        for x, y, z in zip(xx.ravel(), yy.ravel(), zz.ravel()):
            f.write(f"v {x:.3f} {y:.3f} {z:.3f}\n")
    return xx.size


def main():
    print("=" * 60)
    print("DTM VOLUME COMPARISON - EXAMPLE")
    print("=" * 60)

    workdir = Path(tempfile.mkdtemp(prefix="dtm_volume_"))

    # =========================================================================
    # Step 1: Generate two epochs
    # =========================================================================
    print("\n[1] Writing synthetic epochs...")

    before = workdir / "epoch1.obj"
    after = workdir / "epoch2.obj"
    print(f"   Epoch 1: {write_epoch(before, 0.5, stockpile=False, seed=1):,} vertices")
    print(f"   Epoch 2: {write_epoch(after, 0.5, stockpile=True, seed=2):,} vertices")

    # =========================================================================
    # Step 2: Site boundary, rotated 20 degrees from east
    # =========================================================================
    angle = math.radians(20.0)
    corners = [(0.0, 0.0), (90.0, 0.0), (90.0, 60.0), (0.0, 60.0)]
    boundary = []
    for i, (lx, ly) in enumerate(corners, start=1):
        gx = ORIGIN.x + 15.0 + lx * math.cos(angle) - ly * math.sin(angle)
        gy = ORIGIN.y + 15.0 + lx * math.sin(angle) + ly * math.cos(angle)
        boundary.append(BoundaryPoint(f"B{i}", gx, gy))

    # =========================================================================
    # Step 3: Grid both epochs in the boundary frame
    # =========================================================================
    print("\n[2] Gridding epochs (1.0m cells, aligned to boundary)...")

    grids = []
    for path in (before, after):
        progress = RasterProgress()
        grid = rasterize([path], origin=ORIGIN, grid_size=1.0, boundary=boundary, progress=progress)
        print(f"   {path.name}: {grid.rows} x {grid.cols} cells, {progress.message}")
        grids.append(grid)

    print(f"   Grid rotation: {math.degrees(grids[0].rotation_angle):.1f} degrees")

    # =========================================================================
    # Step 4: Volumes with each weighting strategy
    # =========================================================================
    print("\n[3] Calculating volumes...")

    results = {}
    for weighting in (BoundaryWeighting.EXACT_CLIP, BoundaryWeighting.SUPERSAMPLE,
                      BoundaryWeighting.POINT_SAMPLE):
        calculator = VolumeCalculator(grids[0], grids[1], boundary, weighting=weighting)
        results[weighting] = calculator.calculate()

    exact = results[BoundaryWeighting.EXACT_CLIP]
    print("\n" + exact.summary())

    print("\n   Weighting comparison (boundary area is 5,400 sq units):")
    for weighting, result in results.items():
        print(
            f"   {weighting.value:<12} area {result.area:>9,.2f}  "
            f"cut {result.cut_volume:>9,.2f}  fill {result.fill_volume:>9,.2f}"
        )

    # =========================================================================
    # Step 5: Visualization (if matplotlib available)
    # =========================================================================
    print("\n[4] Generating visualization...")

    try:
        from dtm_volume.utils.visualization import create_report_figure, save_report
        import matplotlib.pyplot as plt

        fig = create_report_figure(
            grids[0],
            grids[1],
            exact,
            boundary_local=grids[0].frame.polygon_to_local(boundary),
        )

        output_path = Path(__file__).parent / "volume_report.png"
        save_report(fig, str(output_path))
        print(f"   Report saved to: {output_path}")

        plt.show()

    except ImportError:
        print("   (matplotlib not available - skipping visualization)")

    print("\n" + "=" * 60)
    print("Analysis complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
