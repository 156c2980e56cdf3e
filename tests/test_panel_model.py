from __future__ import annotations

import numpy as np
import pytest

from coverpattern.panel_model import Color, EdgeType, FlattenedPanel, Panel, PanelEdge
from tests.helpers import rectangle_panel


def test_colour_channels_are_clamped() -> None:
    colour = Color(1.5, -0.2, 0.5, alpha=2.0)

    assert (colour.red, colour.green, colour.blue, colour.alpha) == (1.0, 0.0, 0.5, 1.0)


def test_named_colours() -> None:
    assert Color.named("Orange") == Color(1.0, 0.5, 0.0)
    with pytest.raises(KeyError):
        Color.named("chartreuse")


def test_palette_spreads_hues() -> None:
    palette = Color.palette(6)

    assert len(set(palette)) == 6
    assert palette[0] == Color.from_hsv(0.0, 0.7, 0.9)
    assert Color.palette(0) == ()


def test_panel_validity_requires_consistent_indices() -> None:
    assert Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=(0, 1, 2)).is_valid
    assert not Panel(vertex_indices=frozenset({0, 1}), triangle_indices=(0, 1, 2)).is_valid
    assert not Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=(0, 1)).is_valid
    assert not Panel(vertex_indices=frozenset(), triangle_indices=()).is_valid


def test_outline_follows_cut_loop_not_point_order() -> None:
    points = [(0.0, 0.0), (10.0, 10.0), (10.0, 0.0), (0.0, 10.0)]
    edges = tuple(
        PanelEdge(start, end, EdgeType.CUT) for start, end in ((0, 2), (2, 1), (1, 3), (3, 0))
    )
    panel = FlattenedPanel(points_2d=points, edges=edges)

    assert panel.outline_indices() == (0, 2, 1, 3)
    assert panel.area == pytest.approx(100.0)


def test_outline_without_cut_edges_uses_point_order() -> None:
    panel = FlattenedPanel(points_2d=[(0.0, 0.0), (4.0, 0.0), (0.0, 3.0)], edges=())

    assert panel.outline_indices() == (0, 1, 2)
    assert panel.area == pytest.approx(6.0)
    assert panel.is_valid


def test_translation_keeps_identity() -> None:
    panel = rectangle_panel(100.0, 50.0, seam_mm=5.0)

    moved = panel.translated(10.0, -5.0)

    assert moved.id == panel.id
    assert moved.created_at == panel.created_at
    np.testing.assert_allclose(moved.point_array(), panel.point_array() + [10.0, -5.0])
    lower, upper = moved.footprint()
    np.testing.assert_allclose(lower, [5.0, -10.0])
    np.testing.assert_allclose(upper, [115.0, 50.0])


def test_invalid_flattened_panels() -> None:
    assert not FlattenedPanel(points_2d=[(0.0, 0.0), (1.0, 0.0)], edges=()).is_valid
    square = rectangle_panel(10.0, 10.0)
    assert not FlattenedPanel(
        points_2d=square.points_2d, edges=(PanelEdge(0, 7),)
    ).is_valid
    assert FlattenedPanel(points_2d=[], edges=()).bounding_box() is None
