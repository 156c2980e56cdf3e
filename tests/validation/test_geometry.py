from __future__ import annotations

import numpy as np
import pytest

from coverpattern.flattening import offset_outline
from coverpattern.validation.geometry import (
    bounding_boxes_overlap,
    polygon_area,
    polygon_self_intersections,
    polygons_overlap,
    signed_polygon_area,
)

SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


def test_signed_area_follows_orientation() -> None:
    assert signed_polygon_area(SQUARE) == pytest.approx(1.0)
    assert signed_polygon_area(SQUARE[::-1]) == pytest.approx(-1.0)
    assert polygon_area(SQUARE[::-1]) == pytest.approx(1.0)
    assert signed_polygon_area(SQUARE[:2]) == 0.0


def test_self_intersections_skip_adjacent_edges() -> None:
    assert polygon_self_intersections(SQUARE) == []
    bowtie = np.array([[0.0, 0.0], [1.0, 1.0], [1.0, 0.0], [0.0, 1.0]])
    assert polygon_self_intersections(bowtie) == [(0, 2)]


def test_self_intersections_report_a_vertex_touching_another_edge() -> None:
    notched = np.array([[0.0, 0.0], [4.0, 0.0], [4.0, 2.0], [2.0, 0.0], [0.0, 2.0]])

    assert polygon_self_intersections(notched) == [(0, 2), (0, 3)]


def test_bounding_boxes_must_share_interior() -> None:
    unit = (np.array([0.0, 0.0]), np.array([1.0, 1.0]))

    assert bounding_boxes_overlap(unit, (np.array([0.5, 0.5]), np.array([2.0, 2.0])))
    assert not bounding_boxes_overlap(unit, (np.array([1.0, 0.0]), np.array([2.0, 1.0])))


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        ((0.5, 0.0), True),
        ((1.0, 0.0), False),
        ((2.0, 2.0), False),
        ((0.0, 0.0), True),
    ],
)
def test_polygon_overlap(offset: tuple[float, float], expected: bool) -> None:
    assert polygons_overlap(SQUARE, SQUARE + np.array(offset)) is expected


def test_polygon_overlap_ignores_slivers_below_min_area() -> None:
    shifted = SQUARE + np.array([1.0 - 1e-6, 0.0])

    assert polygons_overlap(SQUARE, shifted)
    assert not polygons_overlap(SQUARE, shifted, min_area=1e-3)


def test_polygon_overlap_tolerates_self_intersecting_outlines() -> None:
    bowtie = np.array([[0.0, 0.0], [1.0, 1.0], [1.0, 0.0], [0.0, 1.0]])

    assert polygons_overlap(bowtie, SQUARE + np.array([5.0, 5.0])) is False


def test_offset_outline_grows_square_evenly() -> None:
    grown = offset_outline(SQUARE, 0.25)

    np.testing.assert_allclose(grown.min(axis=0), [-0.25, -0.25])
    np.testing.assert_allclose(grown.max(axis=0), [1.25, 1.25])
    np.testing.assert_allclose(offset_outline(SQUARE[::-1], 0.25)[::-1], grown)


def test_offset_outline_caps_sharp_corners() -> None:
    spike = np.array([[0.0, 0.0], [10.0, 0.5], [0.0, 1.0]])

    grown = offset_outline(spike, 0.1, miter_limit=4.0)

    tip_shift = np.linalg.norm(grown[1] - spike[1])
    assert tip_shift == pytest.approx(0.4)
