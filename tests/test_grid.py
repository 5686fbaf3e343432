"""
Tests for the height grid data model and hole repair.
"""

import math

import numpy as np
import pytest

from dtm_volume.core.grid import (
    NO_DATA,
    BoundaryPoint,
    GridData,
    GridFrame,
    Point3D,
    fill_holes,
    resolve_neighbors,
    sample_cells,
)
from dtm_volume.core.validation import ValidationError


class TestGridData:
    """Tests for GridData."""

    def test_from_array_extent(self):
        grid = GridData.from_array(np.zeros((3, 5)), min_x=10.0, min_y=20.0, grid_size=2.0)

        assert grid.shape == (3, 5)
        assert grid.bounds == (10.0, 20.0, 20.0, 26.0)
        assert grid.heights.shape == (15,)

    def test_heights_length_must_match(self):
        with pytest.raises(ValidationError, match="expected 2 x 2"):
            GridData(0, 0, 2, 2, 2, 2, 1.0, np.zeros(5))

    def test_grid_is_read_only(self):
        source = np.ones((2, 2))
        grid = GridData.from_array(source)

        with pytest.raises(ValueError):
            grid.heights[0] = 5.0
        # from_array copies its input
        source[0, 0] = 7.0
        assert grid.elevations[0, 0] == 1.0

    def test_row_major_layout(self):
        grid = GridData.from_array(np.arange(6.0).reshape(2, 3))

        assert grid.heights[1 * 3 + 2] == 5.0
        assert grid.elevations[1, 2] == 5.0

    def test_coord_to_cell_uses_floor(self):
        grid = GridData.from_array(np.zeros((4, 4)), min_x=-2.0, min_y=-2.0)

        assert grid.coord_to_cell(-1.5, -0.5) == (1, 0)
        assert grid.coord_to_cell(-2.5, 0.0) == (2, -1)
        assert grid.cell_center(1, 0) == (-1.5, -0.5)

    def test_get_height(self):
        grid = GridData.from_array(np.arange(4.0).reshape(2, 2))

        assert grid.get_height(1.5, 0.5) == 1.0
        assert grid.get_height(0.5, 1.5) == 2.0
        assert grid.get_height(5.0, 5.0) == NO_DATA

    def test_statistics(self):
        data = np.array([[1.0, 2.0], [3.0, NO_DATA]])
        stats = GridData.from_array(data).statistics()

        assert stats["min_elevation"] == 1.0
        assert stats["max_elevation"] == 3.0
        assert stats["valid_cells"] == 3
        assert stats["nodata_cells"] == 1

    def test_statistics_empty(self):
        stats = GridData.from_array(np.full((2, 2), NO_DATA)).statistics()
        assert "error" in stats

    def test_sample_cells_outside_is_nodata(self):
        grid = GridData.from_array(np.arange(4.0).reshape(2, 2))
        values = sample_cells(grid, np.array([0.5, 1.5, -0.5]), np.array([0.5, 1.5, 0.5]))

        assert values.tolist() == [0.0, 3.0, NO_DATA]


class TestGridFrame:
    """Tests for rotated local frames."""

    def test_global_frame_is_identity(self):
        frame = GridFrame.global_frame()
        x, y = frame.to_local(12.5, -3.0)

        assert not frame.is_rotated
        assert (float(x), float(y)) == (12.5, -3.0)

    def test_from_boundary_aligns_first_edge(self):
        boundary = [
            BoundaryPoint("A", 100.0, 100.0),
            BoundaryPoint("B", 110.0, 110.0),
            BoundaryPoint("C", 100.0, 120.0),
        ]
        frame = GridFrame.from_boundary(boundary, Point3D(0.0, 0.0, 5.0))

        assert frame.rotation_angle == pytest.approx(math.pi / 4)
        assert frame.anchor == Point3D(100.0, 100.0, 5.0)

        x, y = frame.to_local(110.0, 110.0)
        assert float(x) == pytest.approx(math.sqrt(200.0))
        assert float(y) == pytest.approx(0.0, abs=1e-9)

    def test_from_short_boundary_falls_back_to_origin(self):
        origin = Point3D(1.0, 2.0, 3.0)
        frame = GridFrame.from_boundary([(5.0, 5.0)], origin)

        assert frame.rotation_angle == 0.0
        assert frame.anchor == origin

    def test_round_trip(self):
        frame = GridFrame(0.7, Point3D(250.0, -40.0, 0.0))
        gx = np.array([0.0, 300.0, -12.5])
        gy = np.array([0.0, 10.0, 99.0])

        bx, by = frame.to_global(*frame.to_local(gx, gy))
        np.testing.assert_allclose(bx, gx, atol=1e-9)
        np.testing.assert_allclose(by, gy, atol=1e-9)

    def test_matches(self):
        a = GridFrame(0.5, Point3D(1.0, 2.0, 0.0))

        assert a.matches(GridFrame(0.5, Point3D(1.0, 2.0, 50.0)))
        assert not a.matches(GridFrame(0.6, Point3D(1.0, 2.0, 0.0)))
        assert not a.matches(GridFrame(0.5, Point3D(1.5, 2.0, 0.0)))


class TestResample:
    """Tests for explicit frame conversion."""

    def test_same_frame_returns_self(self):
        grid = GridData.from_array(np.ones((2, 2)))
        assert grid.resample_to(grid.frame) is grid

    def test_translated_frame(self):
        data = np.tile(np.arange(4.0), (4, 1))
        grid = GridData.from_array(data)
        target = GridFrame(0.0, Point3D(1.0, 0.0, 0.0))

        resampled = grid.resample_to(target)

        assert resampled.frame == target
        assert resampled.min_x == pytest.approx(-1.0)
        assert resampled.shape == (4, 4)
        np.testing.assert_array_equal(resampled.elevations, data)

    def test_quarter_turn(self):
        data = np.arange(4.0).reshape(2, 2)
        grid = GridData.from_array(data)
        target = GridFrame(math.pi / 2, Point3D())

        resampled = grid.resample_to(target)

        # Global +x is local -y in the rotated frame
        assert resampled.shape == (2, 2)
        assert resampled.get_height(0.5, -0.5) == 0.0
        assert resampled.get_height(0.5, -1.5) == 1.0
        assert resampled.get_height(1.5, -0.5) == 2.0


class TestFillHoles:
    """Tests for small-hole repair."""

    def test_center_hole_filled(self):
        data = np.ones((3, 3))
        data[1, 1] = NO_DATA

        filled = fill_holes(data)

        assert filled[1, 1] == 1.0
        # Input untouched
        assert data[1, 1] == NO_DATA

    @pytest.mark.parametrize("value", [0.1, 1.7, 100000.1, -3.3])
    def test_equal_neighbors_filled_exactly(self, value):
        """A hole ringed by one value takes that value with no rounding."""
        data = np.full((3, 3), value)
        data[1, 1] = NO_DATA

        assert fill_holes(data)[1, 1] == value

    def test_equal_partial_neighbors_filled_exactly(self):
        data = np.full((4, 4), NO_DATA)
        data[0, :] = 0.1
        data[1, 0] = 0.1

        assert fill_holes(data, passes=1)[1, 1] == 0.1

    def test_mean_of_neighbors(self):
        data = np.array([
            [1.0, 1.0, 1.0],
            [5.0, NO_DATA, 5.0],
            [1.0, 1.0, 1.0],
        ])
        assert fill_holes(data)[1, 1] == pytest.approx(16.0 / 8.0)

    def test_border_cells_never_filled(self):
        data = np.ones((3, 3))
        data[0, 1] = NO_DATA

        assert fill_holes(data)[0, 1] == NO_DATA

    def test_min_neighbors(self):
        data = np.full((3, 3), NO_DATA)
        data[0, 0] = 4.0

        assert fill_holes(data, min_neighbors=2)[1, 1] == NO_DATA
        assert fill_holes(data, min_neighbors=1)[1, 1] == 4.0

    def test_fills_do_not_feed_same_pass(self):
        data = np.full((5, 5), 2.0)
        data[1:4, 1:4] = NO_DATA

        one_pass = fill_holes(data, passes=1)
        two_passes = fill_holes(data, passes=2)

        assert one_pass[2, 2] == NO_DATA
        assert one_pass[1, 1] == 2.0
        assert one_pass[1, 2] == 2.0
        assert two_passes[2, 2] == 2.0

    def test_zero_passes(self):
        data = np.ones((3, 3))
        data[1, 1] = NO_DATA
        assert fill_holes(data, passes=0)[1, 1] == NO_DATA


class TestResolveNeighbors:
    """Tests for the lookup fallback used by the volume engine."""

    def test_orthogonal_before_diagonal(self):
        data = np.array([
            [NO_DATA, 5.0],
            [3.0, NO_DATA],
        ])
        resolved = resolve_neighbors(data)

        assert resolved[0, 0] == 5.0
        assert resolved[1, 1] == 3.0

    def test_diagonal_fallback(self):
        data = np.full((3, 3), NO_DATA)
        data[0, 0] = 9.0

        resolved = resolve_neighbors(data)

        assert resolved[1, 1] == 9.0
        assert resolved[2, 2] == NO_DATA

    def test_replacements_do_not_chain(self):
        data = np.array([[7.0, NO_DATA, NO_DATA, NO_DATA]])
        resolved = resolve_neighbors(data)

        assert resolved.tolist() == [[7.0, 7.0, NO_DATA, NO_DATA]]
