"""Tests for boundary extraction."""
import numpy as np
import pytest
import trimesh
from scipy.spatial.transform import Rotation

from room_snapshot.boundary import MeshBounds, OrientedBox, extract_boundary, local_to_world
from room_snapshot.contracts import BoundarySource, Pose
from room_snapshot.frames import build_basis


def _extract(label, pose, **kwargs):
    basis = build_basis(label, pose)
    return basis, extract_boundary(basis, label, pose, **kwargs)


def _plane_distances(basis, pose, points):
    return (np.asarray(points) - np.asarray(pose.position)) @ np.asarray(basis.normal)


def _assert_ccw(basis, points):
    pts = np.asarray(points)
    n = np.asarray(basis.normal)
    for i in range(4):
        a, b, c = pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]
        assert np.cross(b - a, c - b) @ n > 0


class TestBoxBoundary:

    def test_table_box_uses_width_and_depth(self):
        pose = Pose((0.5, 0.75, 0.2))
        basis, boundary = _extract(
            "TABLE", pose, box=OrientedBox((0.0, 0.0, 0.0), (0.6, 0.02, 0.4))
        )
        assert boundary.source is BoundarySource.BOX
        assert boundary.size == pytest.approx((1.2, 0.8))
        assert len(boundary.points) == 4
        _assert_ccw(basis, boundary.points)

    def test_wall_box_uses_width_and_height(self):
        pose = Pose((0.0, 1.2, -1.5))
        _, boundary = _extract(
            "WALL_FACE", pose, box=OrientedBox((0.0, 0.0, 0.0), (2.0, 1.2, 0.05))
        )
        assert boundary.size == pytest.approx((4.0, 2.4))
        ys = [p[1] for p in boundary.points]
        assert min(ys) == pytest.approx(0.0)
        assert max(ys) == pytest.approx(2.4)

    def test_negative_half_extents_use_magnitude(self):
        _, boundary = _extract(
            "TABLE", Pose(), box=OrientedBox((0.0, 0.0, 0.0), (-0.5, 0.1, -0.25))
        )
        assert boundary.size == pytest.approx((1.0, 0.5))

    def test_off_plane_box_centre_stays_coplanar(self):
        pose = Pose((1.0, 0.8, 0.0), tuple(Rotation.from_euler("xy", [12, 40], degrees=True).as_quat()))
        basis, boundary = _extract(
            "TABLE", pose, box=OrientedBox((0.1, 0.3, -0.2), (0.5, 0.2, 0.3))
        )
        assert np.max(np.abs(_plane_distances(basis, pose, boundary.points))) < 1e-9

    def test_box_offset_within_plane_moves_rectangle(self):
        pose = Pose((0.0, 0.75, 0.0))
        _, boundary = _extract(
            "TABLE", pose, box=OrientedBox((0.4, 0.0, 0.0), (0.5, 0.02, 0.5))
        )
        xs = [p[0] for p in boundary.points]
        assert min(xs) == pytest.approx(-0.1)
        assert max(xs) == pytest.approx(0.9)


class TestMeshBoundary:

    def test_mesh_bounds_rectangle(self):
        pose = Pose((0.5, 0.75, 0.2))
        basis, boundary = _extract(
            "TABLE", pose,
            mesh_bounds=MeshBounds((-0.6, -0.02, -0.4), (0.6, 0.0, 0.4)),
        )
        assert boundary.source is BoundarySource.MESH
        assert boundary.size == pytest.approx((1.2, 0.8))
        assert np.max(np.abs(_plane_distances(basis, pose, boundary.points))) < 1e-9
        _assert_ccw(basis, boundary.points)

    def test_box_takes_precedence_over_mesh(self):
        _, boundary = _extract(
            "TABLE", Pose(),
            box=OrientedBox((0.0, 0.0, 0.0), (0.1, 0.1, 0.1)),
            mesh_bounds=MeshBounds((-1.0, -1.0, -1.0), (1.0, 1.0, 1.0)),
        )
        assert boundary.source is BoundarySource.BOX

    def test_from_trimesh(self):
        mesh = trimesh.creation.box(extents=[1.0, 0.2, 0.5])
        bounds = MeshBounds.from_mesh(mesh)
        assert bounds.min_corner == pytest.approx((-0.5, -0.1, -0.25))
        assert bounds.max_corner == pytest.approx((0.5, 0.1, 0.25))
        assert bounds.corners().shape == (8, 3)


class TestFallbackBoundary:

    def test_fallback_square(self):
        pose = Pose((1.5, 1.0, 1.0))
        basis, boundary = _extract("LAMP", pose)
        assert boundary.source is BoundarySource.FALLBACK
        assert boundary.size == pytest.approx((0.4, 0.4))
        centre = np.mean(np.asarray(boundary.points), axis=0)
        assert np.allclose(centre, pose.position)
        _assert_ccw(basis, boundary.points)

    def test_fallback_half_extent_configurable(self):
        _, boundary = _extract("LAMP", Pose(), fallback_half_extent=0.5)
        assert boundary.size == pytest.approx((1.0, 1.0))


@pytest.mark.parametrize("label", ["FLOOR", "WALL_FACE", "DOOR_FRAME", "CEILING", "COUCH", "OTHER"])
def test_boundary_coplanar_for_random_poses(label):
    for quat in Rotation.random(25, 3).as_quat():
        pose = Pose((0.2, 1.1, -0.7), tuple(quat))
        for kwargs in (
            {"box": OrientedBox((0.05, -0.1, 0.2), (0.4, 0.3, 0.2))},
            {"mesh_bounds": MeshBounds((-0.3, -0.2, -0.1), (0.5, 0.1, 0.4))},
            {},
        ):
            basis, boundary = _extract(label, pose, **kwargs)
            assert np.max(np.abs(_plane_distances(basis, pose, boundary.points))) < 1e-4


def test_local_to_world_applies_rotation_and_translation():
    pose = Pose((1.0, 0.0, 0.0), tuple(Rotation.from_euler("y", 90, degrees=True).as_quat()))
    assert np.allclose(local_to_world(pose, (0.0, 0.0, 1.0)), (2.0, 0.0, 0.0))
