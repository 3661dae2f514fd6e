"""Combined room mesh: bounds metadata and OBJ export."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import trimesh

from room_snapshot.contracts import SceneMeshInfo, to_vec3

logger = logging.getLogger(__name__)


def combine_meshes(meshes: Sequence[trimesh.Trimesh]) -> Optional[trimesh.Trimesh]:
    """Concatenate world-space meshes into one; None when there is nothing to combine."""
    parts = [m for m in meshes if m is not None and len(m.vertices) > 0]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0].copy()
    return trimesh.util.concatenate(parts)


def scene_mesh_info(
    meshes: Sequence[trimesh.Trimesh], path: str = ""
) -> Optional[SceneMeshInfo]:
    """Vertex count and world AABB of the room meshes."""
    parts = [m for m in meshes if m is not None and len(m.vertices) > 0]
    if not parts:
        return None
    vertices = np.vstack([np.asarray(m.vertices, dtype=float) for m in parts])
    return SceneMeshInfo(
        vertex_count=int(len(vertices)),
        mesh_count=len(parts),
        aabb_min=to_vec3(vertices.min(axis=0)),
        aabb_max=to_vec3(vertices.max(axis=0)),
        path=path,
    )


def export_scene_mesh(meshes: Sequence[trimesh.Trimesh], path: str | Path) -> Optional[Path]:
    """Write the combined room mesh as OBJ. Returns None when there are no meshes."""
    combined = combine_meshes(meshes)
    if combined is None:
        logger.warning("No scene meshes to export; skipping %s", path)
        return None
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    combined.export(file_obj=str(out), file_type="obj")
    logger.info("Exported scene mesh: %s (%d vertices)", out, len(combined.vertices))
    return out


def load_scene_meshes(paths: Sequence[str | Path]) -> List[trimesh.Trimesh]:
    """Load world-space room meshes.

    Raises:
        FileNotFoundError: If a path does not exist.
    """
    meshes = []
    for path in paths:
        if not Path(path).is_file():
            raise FileNotFoundError(f"Scene mesh not found: {path}")
        mesh = trimesh.load(str(path), force="mesh")
        meshes.append(mesh)
    return meshes
