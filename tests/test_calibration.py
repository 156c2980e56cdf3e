from __future__ import annotations

import numpy as np
import pytest

from coverpattern.calibration import Calibration, CalibrationMetadata
from tests.helpers import cube_mesh


@pytest.fixture()
def calibration() -> Calibration:
    return (
        Calibration()
        .with_first_point((0.0, 0.0, 0.0))
        .with_second_point((3.0, 4.0, 0.0))
        .with_real_world_distance(0.5)
    )


def test_complete_calibration_scales_to_real_distance(calibration: Calibration) -> None:
    assert calibration.is_complete
    assert calibration.mesh_distance == pytest.approx(5.0)
    assert calibration.scale_factor == pytest.approx(0.1)


def test_applying_calibration_scales_vertices(calibration: Calibration) -> None:
    mesh = cube_mesh()

    scaled = calibration.apply_to_mesh(mesh)

    np.testing.assert_allclose(scaled.vertex_array(), mesh.vertex_array() * 0.1)
    assert scaled.triangle_indices == mesh.triangle_indices
    assert scaled.id != mesh.id


@pytest.mark.parametrize(
    "partial",
    [
        Calibration(),
        Calibration(first_point=(0.0, 0.0, 0.0), second_point=(1.0, 0.0, 0.0)),
        Calibration(first_point=(0.0, 0.0, 0.0), real_world_distance=1.0),
    ],
)
def test_incomplete_calibration_is_identity(partial: Calibration) -> None:
    mesh = cube_mesh()

    assert not partial.is_complete
    assert partial.scale_factor == 1.0
    assert partial.apply_to_mesh(mesh) is mesh


def test_points_too_close_together_are_ignored() -> None:
    calibration = Calibration(
        first_point=(0.0, 0.0, 0.0),
        second_point=(0.0005, 0.0, 0.0),
        real_world_distance=1.0,
    )

    assert calibration.is_complete
    assert calibration.scale_factor == 1.0


def test_negative_distance_is_clamped(calibration: Calibration) -> None:
    updated = calibration.with_real_world_distance(-2.0)

    assert updated.real_world_distance == 0.0
    assert not updated.is_complete


def test_reset_clears_points_but_keeps_identity(calibration: Calibration) -> None:
    cleared = calibration.reset()

    assert cleared.id == calibration.id
    assert cleared.first_point is None
    assert cleared.second_point is None
    assert cleared.real_world_distance == 0.0


def test_metadata_confidence_is_clamped() -> None:
    metadata = CalibrationMetadata(description="tape", confidence=1.7)

    assert metadata.confidence == 1.0
    assert Calibration().with_metadata(metadata).metadata.description == "tape"


def test_mapping_omits_unset_points() -> None:
    payload = Calibration(real_world_distance=2.0).to_mapping()

    assert "firstPoint" not in payload
    assert payload["metadata"]["units"] == "meters"
