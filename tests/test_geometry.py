"""
Tests for planar geometry primitives.
"""

import math

import numpy as np
import pytest

from dtm_volume.core.geometry import (
    clip_polygon,
    get_intersection,
    is_convex,
    is_counter_clockwise,
    is_point_in_polygon,
    points_in_polygon,
    polygon_area,
    rotate,
    signed_area,
)

UNIT_SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]


class TestArea:
    """Shoelace area and winding."""

    def test_unit_square(self):
        assert polygon_area(UNIT_SQUARE) == 1.0

    def test_right_triangle(self):
        assert polygon_area([(0, 0), (4, 0), (0, 3)]) == 6.0

    def test_winding_sign(self):
        assert signed_area(UNIT_SQUARE) == 1.0
        assert signed_area(UNIT_SQUARE[::-1]) == -1.0
        assert polygon_area(UNIT_SQUARE[::-1]) == 1.0

    def test_degenerate(self):
        assert polygon_area([]) == 0.0
        assert polygon_area([(0, 0), (1, 1)]) == 0.0

    def test_orientation_and_convexity(self):
        assert is_counter_clockwise(UNIT_SQUARE)
        assert not is_counter_clockwise(UNIT_SQUARE[::-1])
        assert is_convex(UNIT_SQUARE)
        assert not is_convex([(0, 0), (4, 0), (4, 4), (2, 1), (0, 4)])


class TestPointInPolygon:
    """Ray-casting membership."""

    def test_inside_and_outside(self):
        assert is_point_in_polygon(0.5, 0.5, UNIT_SQUARE)
        assert not is_point_in_polygon(1.5, 0.5, UNIT_SQUARE)
        assert not is_point_in_polygon(-0.5, 0.5, UNIT_SQUARE)

    def test_concave_notch(self):
        notched = [(0, 0), (4, 0), (4, 4), (2, 1), (0, 4)]
        assert is_point_in_polygon(1.0, 0.5, notched)
        assert not is_point_in_polygon(2.0, 3.0, notched)

    def test_edge_result_is_deterministic(self):
        first = is_point_in_polygon(1.0, 0.5, UNIT_SQUARE)
        for _ in range(5):
            assert is_point_in_polygon(1.0, 0.5, UNIT_SQUARE) == first

    def test_vectorised_matches_scalar(self):
        rng = np.random.default_rng(7)
        xs = rng.uniform(-1, 2, 200)
        ys = rng.uniform(-1, 2, 200)
        polygon = [(0, 0), (1.5, 0.2), (1.0, 1.4), (-0.2, 0.8)]
        expected = [is_point_in_polygon(x, y, polygon) for x, y in zip(xs, ys)]
        assert points_in_polygon(xs, ys, polygon).tolist() == expected


class TestClipping:
    """Sutherland-Hodgman clipping against a convex CCW polygon."""

    def test_cell_fully_inside(self):
        clip = [(-1, -1), (3, -1), (3, 3), (-1, 3)]
        assert polygon_area(clip_polygon(UNIT_SQUARE, clip)) == pytest.approx(1.0)

    def test_cell_half_covered(self):
        clip = [(-1, -1), (0.5, -1), (0.5, 3), (-1, 3)]
        assert polygon_area(clip_polygon(UNIT_SQUARE, clip)) == pytest.approx(0.5)

    def test_cell_cut_diagonally(self):
        clip = [(0, 0), (1, 0), (0, 1)]
        assert polygon_area(clip_polygon(UNIT_SQUARE, clip)) == pytest.approx(0.5)

    def test_disjoint_returns_empty(self):
        clip = [(5, 5), (6, 5), (6, 6), (5, 6)]
        assert clip_polygon(UNIT_SQUARE, clip) == []

    def test_clockwise_clip_is_not_reoriented(self):
        clip = [(-1, -1), (3, -1), (3, 3), (-1, 3)][::-1]
        assert clip_polygon(UNIT_SQUARE, clip) == []

    def test_edge_nearly_on_cell_side(self):
        # Clip edge within rounding error of the cell's right side
        clip = [(-1.0, -1.0), (1.0 + 1e-15, -1.0), (1.0 - 1e-15, 3.0), (-1.0, 3.0)]
        clipped = clip_polygon(UNIT_SQUARE, clip)

        assert polygon_area(clipped) == pytest.approx(1.0)
        for x, y in clipped:
            assert -1e-9 <= x <= 1.0 + 1e-9
            assert -1e-9 <= y <= 1.0 + 1e-9

    def test_intersection_of_lines(self):
        x, y = get_intersection(((0, 0), (2, 2)), ((0, 2), (2, 0)))
        assert (x, y) == pytest.approx((1.0, 1.0))


def test_rotate_quarter_turn():
    x, y = rotate(1.0, 0.0, math.pi / 2)
    assert (x, y) == pytest.approx((0.0, 1.0))

    x, y = rotate(2.0, 1.0, math.pi, cx=1.0, cy=1.0)
    assert (x, y) == pytest.approx((0.0, 1.0))
