"""
Boundary extraction for room anchors.

Turns an anchor's approximate bounding volume into a rectangle lying in the
anchor plane. Sources, in order of preference: an oriented box collider, the
local axis-aligned bounds of the anchor's mesh, or a small fallback square.
Every corner is emitted as `position + u * tangent + v * bitangent`, so the
rectangle is exactly coplanar with the anchor's basis by construction.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import trimesh

from room_snapshot.contracts import (
    Basis,
    Boundary,
    BoundarySource,
    Pose,
    Vec3,
    anchor_kind,
    to_vec3,
)
from room_snapshot.frames import rotation_matrix


@dataclass(frozen=True)
class OrientedBox:
    """Box collider in the anchor's local space."""

    center: Vec3
    half_extents: Vec3

    @property
    def size(self) -> np.ndarray:
        return 2.0 * np.abs(np.asarray(self.half_extents, dtype=float))


@dataclass(frozen=True)
class MeshBounds:
    """Axis-aligned bounds of an anchor mesh in the anchor's local space."""

    min_corner: Vec3
    max_corner: Vec3

    @classmethod
    def from_mesh(cls, mesh: trimesh.Trimesh) -> Optional["MeshBounds"]:
        bounds = mesh.bounds
        if bounds is None:
            return None
        return cls(min_corner=to_vec3(bounds[0]), max_corner=to_vec3(bounds[1]))

    def corners(self) -> np.ndarray:
        """The 8 corners of the bounds, (8, 3)."""
        lo = np.asarray(self.min_corner, dtype=float)
        hi = np.asarray(self.max_corner, dtype=float)
        return np.array(
            [
                [lo[0], lo[1], lo[2]],
                [hi[0], lo[1], lo[2]],
                [hi[0], lo[1], hi[2]],
                [lo[0], lo[1], hi[2]],
                [lo[0], hi[1], lo[2]],
                [hi[0], hi[1], lo[2]],
                [hi[0], hi[1], hi[2]],
                [lo[0], hi[1], hi[2]],
            ]
        )


def local_to_world(pose: Pose, points: Sequence) -> np.ndarray:
    """Transform local-space point(s) of an anchor into world space."""
    pts = np.asarray(points, dtype=float)
    m = rotation_matrix(pose.rotation)
    return pts @ m.T + pose.position_array()


def extract_boundary(
    basis: Basis,
    label: str,
    pose: Pose,
    box: Optional[OrientedBox] = None,
    mesh_bounds: Optional[MeshBounds] = None,
    fallback_half_extent: float = 0.2,
) -> Boundary:
    """Compute the world-space rectangle of an anchor.

    Args:
        basis: Plane frame from `frames.build_basis`.
        label: Anchor label; walls and frames use box width x height,
            everything else width x depth.
        pose: Anchor world pose.
        box: Optional box collider (local centre + half extents).
        mesh_bounds: Optional local mesh bounds, used when there is no box.
        fallback_half_extent: Half side of the square used when neither is
            available.

    Returns:
        Boundary with 4 corners ordered counter-clockwise in the
        (tangent, bitangent) plane, the (u, v) size and its provenance.
    """
    t = np.asarray(basis.tangent, dtype=float)
    b = np.asarray(basis.bitangent, dtype=float)
    origin = pose.position_array()

    if box is not None:
        center_world = local_to_world(pose, box.center)
        size = box.size
        if anchor_kind(label).is_vertical:
            size_u, size_v = float(size[0]), float(size[1])
        else:
            size_u, size_v = float(size[0]), float(size[2])
        offset = center_world - origin
        cu, cv = float(offset @ t), float(offset @ b)
        half_u, half_v = 0.5 * size_u, 0.5 * size_v
        points = _rectangle(origin, t, b, cu - half_u, cu + half_u, cv - half_v, cv + half_v)
        return Boundary(points=points, size=(size_u, size_v), source=BoundarySource.BOX)

    if mesh_bounds is not None:
        corners_world = local_to_world(pose, mesh_bounds.corners())
        rel = corners_world - origin
        us = rel @ t
        vs = rel @ b
        u_min, u_max = float(us.min()), float(us.max())
        v_min, v_max = float(vs.min()), float(vs.max())
        points = _rectangle(origin, t, b, u_min, u_max, v_min, v_max)
        return Boundary(
            points=points,
            size=(u_max - u_min, v_max - v_min),
            source=BoundarySource.MESH,
        )

    s = float(fallback_half_extent)
    points = _rectangle(origin, t, b, -s, s, -s, s)
    return Boundary(points=points, size=(2.0 * s, 2.0 * s), source=BoundarySource.FALLBACK)


def _rectangle(
    origin: np.ndarray,
    t: np.ndarray,
    b: np.ndarray,
    u_min: float,
    u_max: float,
    v_min: float,
    v_max: float,
) -> Tuple[Vec3, ...]:
    corners_uv = ((u_min, v_min), (u_max, v_min), (u_max, v_max), (u_min, v_max))
    return tuple(to_vec3(origin + u * t + v * b) for u, v in corners_uv)
