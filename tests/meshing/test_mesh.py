from __future__ import annotations

import numpy as np
import pytest
import trimesh

from coverpattern.errors import MeshError
from coverpattern.meshing import Edge, Mesh
from tests.helpers import cube_mesh, grid_mesh


def test_cube_counts_and_bounds() -> None:
    mesh = cube_mesh(2.0)

    assert mesh.vertex_count == 8
    assert mesh.triangle_count == 12
    assert mesh.is_valid
    lower, upper = mesh.bounding_box()
    np.testing.assert_allclose(lower, [0.0, 0.0, 0.0])
    np.testing.assert_allclose(upper, [2.0, 2.0, 2.0])
    assert mesh.surface_area() == pytest.approx(24.0)


@pytest.mark.parametrize(
    ("vertices", "indices", "fragment"),
    [
        ([], [], "no vertices"),
        ([(0.0, 0.0, 0.0)], [], "no triangles"),
        ([(0.0, 0.0, 0.0)] * 3, [0, 1], "multiple of 3"),
        ([(0.0, 0.0, 0.0)] * 3, [0, 1, 3], "outside"),
    ],
)
def test_invalid_meshes_are_reported(vertices, indices, fragment) -> None:
    mesh = Mesh(vertices=vertices, triangle_indices=indices)

    assert not mesh.is_valid
    assert fragment in mesh.invalid_reason()
    with pytest.raises(MeshError):
        mesh.validate()


def test_empty_mesh_has_no_bounding_box() -> None:
    assert Mesh(vertices=[], triangle_indices=[]).bounding_box() is None


def test_scaled_returns_new_mesh_with_fresh_identifier() -> None:
    mesh = cube_mesh()
    scaled = mesh.scaled(0.5)

    assert scaled.id != mesh.id
    assert scaled.triangle_indices == mesh.triangle_indices
    np.testing.assert_allclose(scaled.vertex_array(), mesh.vertex_array() * 0.5)
    assert mesh.vertex_array().max() == pytest.approx(1.0)


def test_cube_face_normals_point_outward() -> None:
    mesh = cube_mesh()
    normals = mesh.face_normals()
    centroids = mesh.vertex_array()[mesh.face_array()].mean(axis=1)

    np.testing.assert_allclose(np.linalg.norm(normals, axis=1), 1.0)
    outward = np.einsum("ij,ij->i", normals, centroids - 0.5)
    assert np.all(outward > 0.0)


def test_trimesh_interop_preserves_topology() -> None:
    mesh = cube_mesh()
    converted = mesh.to_trimesh()

    assert isinstance(converted, trimesh.Trimesh)
    assert converted.is_watertight
    assert converted.is_winding_consistent
    np.testing.assert_array_equal(converted.faces, mesh.face_array())

    restored = Mesh.from_trimesh(converted)
    assert restored.vertices == mesh.vertices
    assert restored.triangle_indices == mesh.triangle_indices


def test_grid_triangle_areas_sum_to_plane_area() -> None:
    mesh = grid_mesh(cells=3, spacing=0.5)

    assert mesh.triangle_count == 18
    assert mesh.surface_area() == pytest.approx(2.25)


def test_edge_is_canonical() -> None:
    assert Edge.of(5, 2) == Edge(2, 5)
    assert Edge.of(2, 5) == Edge.of(5, 2)
    assert Edge.of(2, 5).other(2) == 5
    with pytest.raises(ValueError):
        Edge.of(2, 5).other(7)
