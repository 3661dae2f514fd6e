"""
Snapshot reconstruction.

Rebuilds a loaded snapshot as a scene of per-anchor local frames and flat
boundary meshes. Each anchor's frame comes from its stored basis (repaired
if a hand-edited file left it skewed), never from the stored raw rotation,
so the mesh plane is always local XY with +Z as the anchor normal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh
from shapely.geometry import LinearRing

from room_snapshot.contracts import (
    AnchorRecord,
    BoundarySource,
    Pose,
    SceneSnapshot,
    Vec3,
    is_global_mesh,
    normalize_anchor_id,
)
from room_snapshot.frames import RigidTransform, basis_rotation, orthonormalize_basis

logger = logging.getLogger(__name__)


def triangulate_fan(
    points: Sequence[Sequence[float]],
    u_axis: Sequence[float],
    v_axis: Sequence[float],
) -> Tuple[np.ndarray, np.ndarray]:
    """Fan-triangulate a convex planar polygon from its first vertex.

    The polygon is projected onto (u_axis, v_axis); when its winding there is
    clockwise the vertex order is reversed so every triangle faces +(u x v).

    Returns:
        (vertices (N, 3), faces (N-2, 3)). Fewer than three points yield an
        empty face array.
    """
    verts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(verts) < 3:
        return verts, np.zeros((0, 3), dtype=np.int64)

    u = np.asarray(u_axis, dtype=float)
    v = np.asarray(v_axis, dtype=float)
    uv = np.column_stack([verts @ u, verts @ v])
    if not LinearRing(uv).is_ccw:
        verts = verts[::-1].copy()

    faces = np.array(
        [[0, i, i + 1] for i in range(1, len(verts) - 1)], dtype=np.int64
    )
    return verts, faces


@dataclass
class ReconstructedAnchor:
    """One anchor of a rebuilt scene, in the scene's root frame."""

    name: str
    label: str
    anchor_id: str
    local_pose: Pose
    mesh: Optional[trimesh.Trimesh]
    local_normal: Vec3 = (0.0, 0.0, 1.0)
    boundary_source: BoundarySource = BoundarySource.FALLBACK

    @property
    def normalized_id(self) -> str:
        return normalize_anchor_id(self.anchor_id)

    @property
    def has_mesh(self) -> bool:
        return self.mesh is not None


@dataclass
class ReconstructedScene:
    """Rebuilt snapshot. `root_transform` maps snapshot space to live space."""

    scene_id: str
    anchors: List[ReconstructedAnchor] = field(default_factory=list)
    root_transform: RigidTransform = field(default_factory=RigidTransform.identity)
    by_id: Dict[str, ReconstructedAnchor] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for anchor in self.anchors:
            self._index(anchor)

    def add(self, anchor: ReconstructedAnchor) -> None:
        self.anchors.append(anchor)
        self._index(anchor)

    def _index(self, anchor: ReconstructedAnchor) -> None:
        key = anchor.normalized_id
        if key:
            self.by_id.setdefault(key, anchor)

    @property
    def groups(self) -> Dict[str, List[ReconstructedAnchor]]:
        out: Dict[str, List[ReconstructedAnchor]] = {}
        for anchor in self.anchors:
            out.setdefault(anchor.label, []).append(anchor)
        return out

    def find_by_id(self, anchor_id: str) -> Optional[ReconstructedAnchor]:
        return self.by_id.get(normalize_anchor_id(anchor_id))

    def world_pose(self, anchor: ReconstructedAnchor) -> RigidTransform:
        return self.root_transform.compose(RigidTransform.from_pose(anchor.local_pose))

    def world_vertices(self, anchor: ReconstructedAnchor) -> np.ndarray:
        """Boundary mesh vertices in world space (root o local pose)."""
        if anchor.mesh is None:
            return np.zeros((0, 3), dtype=float)
        return self.world_pose(anchor).apply(np.asarray(anchor.mesh.vertices, dtype=float))

    def reset_root(self) -> None:
        self.root_transform = RigidTransform.identity()


def reconstruct_anchor(record: AnchorRecord) -> ReconstructedAnchor:
    basis = orthonormalize_basis(record.basis)
    local_pose = Pose(position=record.pose.position, rotation=basis_rotation(basis))

    mesh = None
    if len(record.boundary) >= 3:
        frame = RigidTransform.from_pose(local_pose)
        local_points = frame.apply_inverse(np.asarray(record.boundary, dtype=float))
        vertices, faces = triangulate_fan(local_points, (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))
        mesh = trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    else:
        logger.debug(
            "Anchor %s has %d boundary points; keeping pose only",
            record.name, len(record.boundary),
        )

    return ReconstructedAnchor(
        name=record.name,
        label=record.label,
        anchor_id=record.anchor_id,
        local_pose=local_pose,
        mesh=mesh,
        boundary_source=record.boundary_source,
    )


def reconstruct_scene(
    snapshot: SceneSnapshot, exclude_global_mesh: bool = True
) -> ReconstructedScene:
    scene = ReconstructedScene(scene_id=snapshot.scene_id)
    skipped = 0
    for record in snapshot.anchors:
        if exclude_global_mesh and is_global_mesh(record.label):
            skipped += 1
            continue
        scene.add(reconstruct_anchor(record))

    logger.info(
        "Reconstructed scene %s: %d anchors (%d global mesh skipped)",
        snapshot.scene_id, len(scene.anchors), skipped,
    )
    return scene
