"""Unit tests for k-means panel segmentation."""

from __future__ import annotations

import numpy as np
import pytest

from coverpattern.cancellation import CancellationToken
from coverpattern.errors import MeshError, OperationCancelledError, SegmentationError
from coverpattern.meshing import Mesh, ProcessingOptions, analyze_boundaries, face_components
from coverpattern.segmentation import (
    PanelSegmenter,
    SegmentationOptions,
    SegmentationResolution,
)
from tests.helpers import cube_mesh, cube_with_island, equilateral_triangle_mesh, grid_mesh


@pytest.fixture()
def segmenter() -> PanelSegmenter:
    return PanelSegmenter()


def _triangles(panels) -> list[tuple[int, int, int]]:
    return sorted(tuple(int(v) for v in face) for panel in panels for face in panel.face_array())


def _mesh_triangles(mesh: Mesh) -> list[tuple[int, int, int]]:
    return sorted(tuple(int(v) for v in face) for face in mesh.face_array())


def test_cube_splits_into_one_panel_per_face(segmenter: PanelSegmenter) -> None:
    mesh = cube_mesh()
    normals = mesh.face_normals()

    panels = segmenter.segment_mesh(mesh, 6)

    assert len(panels) == 6
    assert _triangles(panels) == _mesh_triangles(mesh)
    lookup = {tuple(int(v) for v in face): index for index, face in enumerate(mesh.face_array())}
    for panel in panels:
        assert panel.triangle_count == 2
        members = [lookup[tuple(int(v) for v in face)] for face in panel.face_array()]
        np.testing.assert_allclose(normals[members[0]], normals[members[1]])


def test_panels_partition_every_triangle_exactly_once(segmenter: PanelSegmenter) -> None:
    mesh = grid_mesh(cells=6, spacing=0.1)

    panels = segmenter.segment_mesh(mesh, 4)

    assert 1 <= len(panels) <= 4
    assert _triangles(panels) == _mesh_triangles(mesh)
    for panel in panels:
        assert panel.is_valid
        assert panel.vertex_indices == frozenset(panel.triangle_indices)


def test_segmentation_is_deterministic(segmenter: PanelSegmenter) -> None:
    mesh = grid_mesh(cells=6, spacing=0.1)

    first = segmenter.segment_mesh(mesh, 5)
    second = segmenter.segment_mesh(mesh, 5)

    assert [p.triangle_indices for p in first] == [p.triangle_indices for p in second]
    assert [p.color for p in first] == [p.color for p in second]


def test_panels_receive_distinct_colours(segmenter: PanelSegmenter) -> None:
    panels = segmenter.segment_mesh(cube_mesh(), 6)

    assert len({panel.color for panel in panels}) == len(panels)
    assert len({panel.id for panel in panels}) == len(panels)


def test_default_target_comes_from_options() -> None:
    options = SegmentationOptions(target_panel_count=3)
    panels = PanelSegmenter(options).segment_mesh(grid_mesh(cells=4))

    assert len(panels) == 3


@pytest.mark.parametrize("count", [2, 21, 0])
def test_target_outside_bounds_is_rejected(segmenter: PanelSegmenter, count: int) -> None:
    with pytest.raises(SegmentationError) as excinfo:
        segmenter.segment_mesh(cube_mesh(), count)

    assert excinfo.value.panel_count == count
    assert excinfo.value.code == "SEG003"


def test_invalid_mesh_is_rejected_before_bounds(segmenter: PanelSegmenter) -> None:
    broken = Mesh(vertices=[(0.0, 0.0, 0.0)], triangle_indices=[0, 0, 4])

    with pytest.raises(MeshError):
        segmenter.segment_mesh(broken, 50)


def test_single_triangle_yields_single_panel(segmenter: PanelSegmenter) -> None:
    panels = segmenter.segment_mesh(equilateral_triangle_mesh(), 3)

    assert len(panels) == 1
    assert panels[0].triangle_indices == (0, 1, 2)


@pytest.mark.parametrize(
    ("resolution", "expected"),
    [
        (SegmentationResolution.LOW, 5),
        (SegmentationResolution.MEDIUM, 8),
        (SegmentationResolution.HIGH, 15),
    ],
)
def test_preview_resolution_sets_panel_count(resolution: SegmentationResolution, expected: int) -> None:
    assert resolution.panel_count == expected
    mesh = grid_mesh(cells=6, spacing=0.1)

    panels = PanelSegmenter().preview_segmentation(mesh, resolution)

    assert 1 <= len(panels) <= expected
    assert _triangles(panels) == _mesh_triangles(mesh)


def test_preview_accepts_resolution_names(segmenter: PanelSegmenter) -> None:
    panels = segmenter.preview_segmentation(cube_mesh(), "low")

    assert 1 <= len(panels) <= 5


def test_cancelled_token_stops_segmentation(segmenter: PanelSegmenter) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        segmenter.segment_mesh(cube_mesh(), 6, cancel=token)


def test_iteration_cap_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    options = SegmentationOptions(max_iterations=1, convergence_threshold=0.0)
    mesh = grid_mesh(cells=6, spacing=0.1)

    with caplog.at_level("WARNING", logger="coverpattern.segmentation"):
        panels = PanelSegmenter(options).segment_mesh(mesh, 4)

    assert panels
    assert any("without converging" in record.message for record in caplog.records)


def _assert_single_region(mesh: Mesh, panels) -> None:
    for panel in panels:
        region = Mesh.from_arrays(mesh.vertex_array(), panel.face_array())
        assert len(face_components(region)) == 1
        assert analyze_boundaries(region).non_manifold_vertices == ()


@pytest.mark.parametrize("target", [3, 4, 5, 6])
def test_repaired_cube_panels_are_edge_connected(segmenter: PanelSegmenter, target: int) -> None:
    mesh = cube_with_island().scaled(0.5).processed(ProcessingOptions.recommended()).mesh

    panels = segmenter.segment_mesh(mesh, target)

    assert _triangles(panels) == _mesh_triangles(mesh)
    _assert_single_region(mesh, panels)


@pytest.mark.parametrize("target", [3, 7, 12])
def test_grid_panels_are_edge_connected(segmenter: PanelSegmenter, target: int) -> None:
    mesh = grid_mesh(cells=6, spacing=0.1)

    panels = segmenter.segment_mesh(mesh, target)

    _assert_single_region(mesh, panels)


def test_cluster_spanning_two_islands_is_split() -> None:
    grid = grid_mesh(cells=2)
    vertices = np.vstack([grid.vertex_array(), grid.vertex_array() + np.array([10.0, 0.0, 0.0])])
    faces = np.vstack([grid.face_array(), grid.face_array() + grid.vertex_count])
    mesh = Mesh.from_arrays(vertices, faces)

    panels = PanelSegmenter(SegmentationOptions(spatial_weight=0.0)).segment_mesh(mesh, 3)

    assert [panel.triangle_count for panel in panels] == [8, 8]
    _assert_single_region(mesh, panels)


def test_options_round_trip_through_mapping() -> None:
    options = SegmentationOptions(spatial_weight=2.5, target_panel_count=12)

    assert SegmentationOptions.from_mapping(options.to_mapping()) == options
