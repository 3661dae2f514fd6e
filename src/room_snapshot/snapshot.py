"""
Snapshot builder: live room anchors -> immutable SceneSnapshot.

For each anchor the plane frame is derived (frames.build_basis), its
boundary rectangle extracted (boundary.extract_boundary), and its height
measured against the floor reference: the mean lower Y of all floor anchors.
"""
from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional, Sequence

import numpy as np
import trimesh

from room_snapshot.boundary import extract_boundary, local_to_world
from room_snapshot.contracts import (
    AnchorKind,
    AnchorRecord,
    SceneSnapshot,
    SnapshotConfig,
    anchor_kind,
    normalize_label,
    utc_now_iso,
)
from room_snapshot.frames import build_basis, pose_axes
from room_snapshot.room import RoomAnchor
from room_snapshot.scene_mesh import scene_mesh_info

logger = logging.getLogger(__name__)


def build_snapshot(
    anchors: Iterable[RoomAnchor],
    config: Optional[SnapshotConfig] = None,
    scene_meshes: Sequence[trimesh.Trimesh] = (),
    scene_mesh_path: str = "",
    scene_id: Optional[str] = None,
    captured_at: Optional[str] = None,
) -> SceneSnapshot:
    """Capture the given anchors as a snapshot.

    Args:
        anchors: Anchors of the live room.
        config: Builder parameters (fallback boundary size).
        scene_meshes: World-space room meshes summarized in `scene_mesh`.
        scene_mesh_path: Relative path of the exported combined mesh, if any.
        scene_id: Snapshot id; a fresh uuid4 hex when omitted.
        captured_at: ISO-8601 timestamp; now (UTC) when omitted.

    Returns:
        A validated SceneSnapshot.

    Raises:
        DuplicateAnchorIdError: If two anchors share a normalized id.
    """
    if config is None:
        config = SnapshotConfig()
    room_anchors = list(anchors)

    floor_y = estimate_floor_y(room_anchors)
    records = [anchor_record(a, floor_y, config) for a in room_anchors]

    snapshot = SceneSnapshot(
        scene_id=scene_id or uuid.uuid4().hex,
        captured_at=captured_at or utc_now_iso(),
        floor_reference_y=floor_y,
        anchors=tuple(records),
        scene_mesh=scene_mesh_info(scene_meshes, scene_mesh_path),
    )
    snapshot.validate()

    logger.info(
        "Built snapshot %s: %d anchors, floor y=%.3f, labels = %s",
        snapshot.scene_id,
        len(records),
        floor_y,
        ", ".join(f"{label}:{count}" for label, count in snapshot.label_stats.items()),
    )
    return snapshot


def anchor_record(
    anchor: RoomAnchor, floor_y: float, config: Optional[SnapshotConfig] = None
) -> AnchorRecord:
    """Derive basis, boundary and floor height for one anchor."""
    if config is None:
        config = SnapshotConfig()
    basis = build_basis(anchor.label, anchor.pose)
    boundary = extract_boundary(
        basis,
        anchor.label,
        anchor.pose,
        box=anchor.box,
        mesh_bounds=anchor.mesh_bounds,
        fallback_half_extent=config.fallback_half_extent,
    )
    if anchor.box is None and anchor.mesh_bounds is None:
        logger.debug("Anchor %s has no bounds; using fallback square", anchor.name)
    return AnchorRecord(
        anchor_id=anchor.anchor_id,
        name=anchor.name,
        label=normalize_label(anchor.label),
        pose=anchor.pose,
        basis=basis,
        boundary=boundary.points,
        size=boundary.size,
        boundary_source=boundary.source,
        height_above_floor=float(anchor.pose.position[1]) - floor_y,
    )


def estimate_floor_y(anchors: Sequence[RoomAnchor]) -> float:
    """Mean lower Y of the floor anchors (0.0 when the room has no floor)."""
    ys: List[float] = []
    for anchor in anchors:
        if anchor_kind(anchor.label) is not AnchorKind.FLOOR:
            continue
        ys.append(_lower_y(anchor))
    if not ys:
        return 0.0
    return float(np.mean(ys))


def _lower_y(anchor: RoomAnchor) -> float:
    if anchor.box is not None:
        center = local_to_world(anchor.pose, anchor.box.center)
        _, up, _ = pose_axes(anchor.pose)
        norm = float(np.linalg.norm(up))
        if norm > 1e-9:
            up = up / norm
        half_y = abs(float(anchor.box.half_extents[1]))
        return float((center - up * half_y)[1])
    if anchor.mesh_bounds is not None:
        corners = local_to_world(anchor.pose, anchor.mesh_bounds.corners())
        return float(corners[:, 1].min())
    return float(anchor.pose.position[1])
