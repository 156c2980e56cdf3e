"""Tests for the LSCM flattening backend."""

from __future__ import annotations

import numpy as np
import pytest

from coverpattern.cancellation import CancellationToken
from coverpattern.errors import (
    DegenerateGeometryError,
    FlatteningError,
    MeshError,
    OperationCancelledError,
    PanelError,
)
from coverpattern.flattening import FlatteningOptions, LSCMFlattener
from coverpattern.meshing import Mesh
from coverpattern.panel_model import EdgeType, Panel
from coverpattern.validation.geometry import signed_polygon_area
from tests.helpers import (
    CUBE_FACES,
    bowtie_mesh,
    cube_mesh,
    cylinder_strip,
    equilateral_triangle_mesh,
    grid_mesh,
    sphere_cap,
)


def _whole_panel(mesh: Mesh) -> Panel:
    return Panel(
        vertex_indices=frozenset(int(v) for v in mesh.triangle_indices),
        triangle_indices=mesh.triangle_indices,
    )


def _face_panel(*triangles: int) -> Panel:
    indices = [v for triangle in triangles for v in CUBE_FACES[triangle]]
    return Panel(vertex_indices=frozenset(indices), triangle_indices=indices)


def _pairwise(points: np.ndarray) -> np.ndarray:
    return np.linalg.norm(points[:, None, :] - points[None, :, :], axis=2)


@pytest.fixture()
def flattener() -> LSCMFlattener:
    return LSCMFlattener()


def test_equilateral_triangle_keeps_its_edge_lengths(flattener: LSCMFlattener) -> None:
    mesh = equilateral_triangle_mesh(0.1)

    flat = flattener.flatten_panel(_whole_panel(mesh), mesh)

    assert flat.is_valid
    assert len(flat.points_2d) == 3
    assert len(flat.edges_of_type(EdgeType.CUT)) == 3
    distances = _pairwise(flat.point_array())
    np.testing.assert_allclose(distances[np.triu_indices(3, 1)], [100.0, 100.0, 100.0], atol=1e-6)
    assert flat.area == pytest.approx(100.0**2 * np.sqrt(3.0) / 4.0, rel=1e-6)
    assert flat.scale_units_per_meter == 1000.0


def test_triangle_seam_outline_sits_one_allowance_outside(flattener: LSCMFlattener) -> None:
    mesh = equilateral_triangle_mesh(0.1)

    flat = flattener.flatten_panel(_whole_panel(mesh), mesh)

    seam = np.asarray(flat.seam_outline)
    assert seam.shape == (3, 2)
    sides = np.linalg.norm(np.roll(seam, -1, axis=0) - seam, axis=1)
    np.testing.assert_allclose(sides, 100.0 + 20.0 * np.sqrt(3.0), atol=1e-6)
    seam_edges = flat.edges_of_type(EdgeType.SEAM)
    assert len(seam_edges) == 3
    assert all(edge.seam_width_mm == 10.0 for edge in seam_edges)


def test_planar_grid_is_mapped_isometrically(flattener: LSCMFlattener) -> None:
    mesh = grid_mesh(cells=3, spacing=0.1)

    flat = flattener.flatten_panel(_whole_panel(mesh), mesh)

    expected = _pairwise(mesh.vertex_array()) * 1000.0
    np.testing.assert_allclose(_pairwise(flat.point_array()), expected, atol=1e-5)
    assert flat.area == pytest.approx(300.0 * 300.0, rel=1e-6)


def test_developable_strip_preserves_area(flattener: LSCMFlattener) -> None:
    mesh = cube_mesh(0.1)
    panel = _face_panel(0, 1, 4, 5)

    flat = flattener.flatten_panel(panel, mesh)

    assert len(flat.points_2d) == 6
    assert len(flat.outline_indices()) == 6
    assert flat.area == pytest.approx(20000.0, rel=1e-5)


def test_outline_is_counter_clockwise_and_cut_edges_record_3d_length(
    flattener: LSCMFlattener,
) -> None:
    mesh = cube_mesh(0.1)

    flat = flattener.flatten_panel(_face_panel(2, 3), mesh)

    assert signed_polygon_area(flat.outline()) > 0.0
    points = flat.point_array()
    cut_edges = flat.edges_of_type(EdgeType.CUT)
    assert len(cut_edges) == 4
    for edge in cut_edges:
        assert edge.original_3d_length == pytest.approx(100.0)
        flat_length = np.linalg.norm(points[edge.start_index] - points[edge.end_index])
        assert flat_length == pytest.approx(edge.original_3d_length, abs=1e-6)


def test_flattened_panel_carries_source_identity(flattener: LSCMFlattener) -> None:
    mesh = cube_mesh(0.1)
    panel = _face_panel(6, 7)

    flat = flattener.flatten_panel(panel, mesh)

    assert flat.original_panel_id == panel.id
    assert flat.color == panel.color
    assert flat.id != panel.id


def test_zero_seam_allowance_omits_seam_geometry() -> None:
    mesh = cube_mesh(0.1)
    flat = LSCMFlattener(FlatteningOptions(seam_allowance_mm=0.0)).flatten_panel(
        _face_panel(0, 1), mesh
    )

    assert flat.seam_outline == ()
    assert not flat.edges_of_type(EdgeType.SEAM)


def test_flatten_panels_preserves_order_and_handles_empty_input(flattener: LSCMFlattener) -> None:
    mesh = cube_mesh(0.1)
    panels = [_face_panel(2 * face, 2 * face + 1) for face in range(6)]

    flattened = flattener.flatten_panels(panels, mesh)

    assert [flat.original_panel_id for flat in flattened] == [panel.id for panel in panels]
    assert flattener.flatten_panels([], mesh) == []


def test_parallel_flattening_matches_sequential() -> None:
    mesh = cube_mesh(0.1)
    panels = [_face_panel(2 * face, 2 * face + 1) for face in range(6)]

    sequential = LSCMFlattener().flatten_panels(panels, mesh)
    parallel = LSCMFlattener(FlatteningOptions(max_workers=3)).flatten_panels(panels, mesh)

    for left, right in zip(sequential, parallel):
        assert left.original_panel_id == right.original_panel_id
        np.testing.assert_allclose(left.point_array(), right.point_array())


@pytest.mark.parametrize(
    "panel",
    [
        Panel(vertex_indices=frozenset({0, 1, 99}), triangle_indices=(0, 1, 99)),
        Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=(0, 1)),
        Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=()),
    ],
)
def test_malformed_panels_raise_panel_error(flattener: LSCMFlattener, panel: Panel) -> None:
    with pytest.raises(PanelError):
        flattener.flatten_panel(panel, cube_mesh())


def test_invalid_mesh_raises_mesh_error(flattener: LSCMFlattener) -> None:
    broken = Mesh(vertices=[(0.0, 0.0, 0.0)], triangle_indices=[0, 1, 2])
    panel = Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=(0, 1, 2))

    with pytest.raises(MeshError):
        flattener.flatten_panels([panel], broken)


def test_collinear_panel_is_degenerate(flattener: LSCMFlattener) -> None:
    mesh = Mesh.from_arrays([(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (2.0, 0.0, 0.0)], [(0, 1, 2)])

    with pytest.raises(DegenerateGeometryError, match="collinear") as excinfo:
        flattener.flatten_panel(_whole_panel(mesh), mesh)

    assert excinfo.value.code == "FLAT003"


def test_closed_panel_has_no_boundary_to_cut(flattener: LSCMFlattener) -> None:
    mesh = cube_mesh(0.1)

    with pytest.raises(DegenerateGeometryError, match="closed"):
        flattener.flatten_panel(_whole_panel(mesh), mesh)


def test_zero_area_triangle_is_degenerate(flattener: LSCMFlattener) -> None:
    mesh = Mesh.from_arrays(
        [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.5, 0.0, 0.0)],
        [(0, 1, 2), (0, 3, 1)],
    )

    with pytest.raises(DegenerateGeometryError, match="zero-area"):
        flattener.flatten_panel(_whole_panel(mesh), mesh)


def test_cancelled_token_stops_flattening(flattener: LSCMFlattener) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        flattener.flatten_panels([_face_panel(0, 1)], cube_mesh(0.1), cancel=token)


def test_unrolled_cylinder_keeps_edge_lengths_and_area(flattener: LSCMFlattener) -> None:
    mesh = cylinder_strip(radius=0.1, sweep=np.pi / 2.0, height=0.1, segments=8)

    flat = flattener.flatten_panel(_whole_panel(mesh), mesh)

    points = flat.point_array()
    for edge in flat.edges_of_type(EdgeType.CUT):
        flat_length = np.linalg.norm(points[edge.start_index] - points[edge.end_index])
        assert flat_length == pytest.approx(edge.original_3d_length, rel=1e-6)
    assert flat.area == pytest.approx(mesh.surface_area() * 1e6, rel=1e-6)


def test_doubly_curved_cap_keeps_its_surface_area(flattener: LSCMFlattener) -> None:
    mesh = sphere_cap(radius=0.3)

    flat = flattener.flatten_panel(_whole_panel(mesh), mesh)

    assert flat.area == pytest.approx(mesh.surface_area() * 1e6, rel=1e-6)


@pytest.mark.parametrize("bad", [np.nan, np.inf, -np.inf])
def test_non_finite_coordinates_raise_flattening_error(flattener: LSCMFlattener, bad: float) -> None:
    mesh = Mesh(vertices=[(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.5, bad, 0.0)], triangle_indices=[0, 1, 2])
    panel = Panel(vertex_indices=frozenset({0, 1, 2}), triangle_indices=(0, 1, 2))

    with pytest.raises(DegenerateGeometryError, match="non-finite") as excinfo:
        flattener.flatten_panels([panel], mesh)

    assert isinstance(excinfo.value, FlatteningError)


def test_linear_algebra_failure_becomes_flattening_error(
    flattener: LSCMFlattener, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_svd(*args, **kwargs):
        raise np.linalg.LinAlgError("SVD did not converge")

    monkeypatch.setattr(np.linalg, "svd", broken_svd)
    mesh = equilateral_triangle_mesh(0.1)

    with pytest.raises(FlatteningError, match="SVD did not converge"):
        flattener.flatten_panel(_whole_panel(mesh), mesh)


def test_pinched_boundary_names_the_non_manifold_vertex(flattener: LSCMFlattener) -> None:
    mesh = bowtie_mesh()

    with pytest.raises(DegenerateGeometryError, match=r"non-manifold vertices \[0\]"):
        flattener.flatten_panel(_whole_panel(mesh), mesh)


def test_iteration_cap_logs_warning_and_still_returns(caplog: pytest.LogCaptureFixture) -> None:
    mesh = cube_mesh(0.1)
    options = FlatteningOptions(max_iterations=1, reject_self_intersections=False)

    with caplog.at_level("WARNING", logger="coverpattern.flattening.lscm_backend"):
        flat = LSCMFlattener(options).flatten_panel(_face_panel(0, 1, 4, 5), mesh)

    assert any("without reaching tolerance" in record.message for record in caplog.records)
    assert len(flat.outline_indices()) == 6
    assert flat.area > 0.0


def test_options_round_trip_through_mapping() -> None:
    options = FlatteningOptions(seam_allowance_mm=15.0, max_workers=4)

    assert FlatteningOptions.from_mapping(options.to_mapping()) == options
