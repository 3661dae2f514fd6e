"""
Plane frames and rigid transforms for room anchors.

Every anchor gets an orthonormal (normal, tangent, bitangent) frame derived
only from its label and world pose. The derivation is pure and deterministic:
registration re-derives it independently for the recorded and the live
anchor and relies on both sides following the exact same convention.

World frame is Y-up; quaternions are scalar-last (x, y, z, w).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from room_snapshot.contracts import (
    IDENTITY_QUAT,
    AnchorKind,
    Basis,
    Pose,
    Quat,
    Vec3,
    anchor_kind,
    to_quat,
    to_vec3,
)

WORLD_RIGHT = np.array([1.0, 0.0, 0.0])
WORLD_UP = np.array([0.0, 1.0, 0.0])
WORLD_FORWARD = np.array([0.0, 0.0, 1.0])

_SEED_EPS = 1e-6   # squared length below which a seed axis is unusable
_FLAT_EPS = 1e-8   # squared length of a flattened wall normal
_PARALLEL_DOT = 0.9


# ─── Pose axes ───────────────────────────────────────────────────────────────

def rotation_matrix(quat: Sequence[float]) -> np.ndarray:
    """3x3 matrix of a quaternion; a zero quaternion yields the zero matrix."""
    q = np.asarray(quat, dtype=float)
    if not np.all(np.isfinite(q)) or float(q @ q) < 1e-12:
        return np.zeros((3, 3), dtype=float)
    return Rotation.from_quat(q).as_matrix()


def pose_axes(pose: Pose) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """World (right, up, forward) axes of a pose."""
    m = rotation_matrix(pose.rotation)
    return m[:, 0].copy(), m[:, 1].copy(), m[:, 2].copy()


# ─── Basis builder ───────────────────────────────────────────────────────────

def build_basis(label: str, pose: Pose) -> Basis:
    """Derive the plane frame of an anchor from its label and pose.

    Walls and door/window frames get a horizontal normal taken from the
    pose's forward axis; everything else gets a normal snapped exactly to
    world up (or down, for ceilings and upside-down poses). The tangent is
    the pose's right axis orthogonalized against the normal, and the
    bitangent completes a right-handed frame.
    """
    kind = anchor_kind(label)
    right, up, forward = pose_axes(pose)

    if kind.is_vertical:
        seed_n = forward
    elif kind is AnchorKind.CEILING:
        seed_n = -up
    else:
        seed_n = up
    if _sq(seed_n) < _SEED_EPS:
        seed_n = WORLD_UP.copy()
    seed_t = right if _sq(right) > _SEED_EPS else WORLD_RIGHT.copy()

    if kind.is_vertical:
        n = seed_n.copy()
        n[1] = 0.0
        if _sq(n) < _FLAT_EPS:
            n = WORLD_FORWARD.copy()
        n = n / np.linalg.norm(n)
    else:
        n = WORLD_UP.copy() if float(seed_n @ WORLD_UP) >= 0.0 else -WORLD_UP

    t = _orthogonalize(seed_t, n)
    b = np.cross(n, t)
    b = b / np.linalg.norm(b)
    return Basis(normal=to_vec3(n), tangent=to_vec3(t), bitangent=to_vec3(b))


def orthonormalize_basis(basis: Basis) -> Basis:
    """Repair a stored basis (non-unit, skewed, NaN or zero axes)."""
    n = _finite(basis.normal)
    if _sq(n) < _SEED_EPS:
        n = WORLD_UP.copy()
    n = n / np.linalg.norm(n)
    t = _finite(basis.tangent)
    if _sq(t) < _SEED_EPS:
        t = WORLD_RIGHT.copy()
    t = _orthogonalize(t, n)
    b = np.cross(n, t)
    b = b / np.linalg.norm(b)
    return Basis(normal=to_vec3(n), tangent=to_vec3(t), bitangent=to_vec3(b))


def basis_rotation(basis: Basis) -> Quat:
    """Quaternion whose local X, Y, Z axes are tangent, bitangent, normal."""
    return to_quat(Rotation.from_matrix(basis.as_matrix()).as_quat())


def basis_pose(label: str, pose: Pose) -> Pose:
    """Pose at the anchor position oriented by the derived plane frame."""
    return Pose(position=pose.position, rotation=basis_rotation(build_basis(label, pose)))


def _orthogonalize(vec: np.ndarray, normal: np.ndarray) -> np.ndarray:
    u = vec - float(vec @ normal) * normal
    if _sq(u) < _SEED_EPS:
        fallback = (
            WORLD_RIGHT
            if abs(float(normal @ WORLD_RIGHT)) < _PARALLEL_DOT
            else WORLD_FORWARD
        )
        u = fallback - float(fallback @ normal) * normal
    return u / np.linalg.norm(u)


def _finite(values: Sequence[float]) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if not np.all(np.isfinite(arr)):
        return np.zeros(3, dtype=float)
    return arr.copy()


def _sq(vec: np.ndarray) -> float:
    return float(vec @ vec)


# ─── Rigid transforms ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RigidTransform:
    """Rotation followed by translation: x -> R x + t."""

    rotation: Quat = IDENTITY_QUAT
    translation: Vec3 = (0.0, 0.0, 0.0)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()

    @classmethod
    def from_pose(cls, pose: Pose) -> "RigidTransform":
        return cls(rotation=to_quat(pose.rotation), translation=to_vec3(pose.position))

    @classmethod
    def from_rotation_matrix(
        cls, matrix: np.ndarray, translation: Sequence[float]
    ) -> "RigidTransform":
        quat = Rotation.from_matrix(np.asarray(matrix, dtype=float)).as_quat()
        return cls(rotation=to_quat(quat), translation=to_vec3(translation))

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(np.asarray(self.rotation, dtype=float)).as_matrix()

    def as_matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation_matrix()
        m[:3, 3] = np.asarray(self.translation, dtype=float)
        return m

    def as_pose(self) -> Pose:
        return Pose(position=self.translation, rotation=self.rotation)

    def apply(self, points: Sequence) -> np.ndarray:
        """Transform a point (3,) or points (N, 3)."""
        pts = np.asarray(points, dtype=float)
        return pts @ self.rotation_matrix().T + np.asarray(self.translation, dtype=float)

    def apply_inverse(self, points: Sequence) -> np.ndarray:
        pts = np.asarray(points, dtype=float)
        return (pts - np.asarray(self.translation, dtype=float)) @ self.rotation_matrix()

    def rotate(self, vectors: Sequence) -> np.ndarray:
        return np.asarray(vectors, dtype=float) @ self.rotation_matrix().T

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """self o other: apply `other` first, then `self`."""
        r_self = self.rotation_matrix()
        rot = r_self @ other.rotation_matrix()
        trans = r_self @ np.asarray(other.translation, dtype=float) + np.asarray(
            self.translation, dtype=float
        )
        return RigidTransform.from_rotation_matrix(rot, trans)

    def inverse(self) -> "RigidTransform":
        r_inv = self.rotation_matrix().T
        trans = -(r_inv @ np.asarray(self.translation, dtype=float))
        return RigidTransform.from_rotation_matrix(r_inv, trans)


def rigid_alignment(
    snapshot_pose: Pose, live_pose: Pose
) -> RigidTransform:
    """Transform mapping the snapshot frame onto the live frame.

    rotation = R_live * R_snapshot^-1
    translation = p_live - rotation * p_snapshot
    """
    return RigidTransform.from_pose(live_pose).compose(
        RigidTransform.from_pose(snapshot_pose).inverse()
    )
