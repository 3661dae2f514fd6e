"""
Shared test fixtures for room snapshot tests.
"""
import json
import sys
from pathlib import Path

import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from room_snapshot.boundary import MeshBounds, OrientedBox
from room_snapshot.contracts import Pose
from room_snapshot.room import RoomAnchor, StaticRoom


def make_anchor(anchor_id, label, position=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0, 1.0),
                name=None, box=None, mesh_bounds=None):
    return RoomAnchor(
        anchor_id=anchor_id,
        label=label,
        pose=Pose(position=tuple(position), rotation=tuple(rotation)),
        name=name or f"{label.lower()}_{anchor_id or 'noid'}",
        box=box,
        mesh_bounds=mesh_bounds,
    )


@pytest.fixture
def room_anchors():
    """A small room: floor, two walls, a table, a lamp without bounds, a global mesh.

    All poses use the identity rotation. The floor slab is 2cm thick with its
    top at y=0.02, so the floor reference is 0.0.
    """
    return [
        make_anchor(
            "{F100-0001}", "FLOOR", position=(0.0, 0.01, 0.0),
            box=OrientedBox(center=(0.0, 0.0, 0.0), half_extents=(2.0, 0.01, 1.5)),
        ),
        make_anchor(
            "W200-0001", "WALL_FACE", position=(0.0, 1.2, -1.5),
            box=OrientedBox(center=(0.0, 0.0, 0.0), half_extents=(2.0, 1.2, 0.05)),
        ),
        make_anchor(
            "W200-0002", "WALL_FACE", position=(0.0, 1.2, 1.5),
            rotation=(0.0, 1.0, 0.0, 0.0),
            box=OrientedBox(center=(0.0, 0.0, 0.0), half_extents=(2.0, 1.2, 0.05)),
        ),
        make_anchor(
            "T300-0001", "TABLE", position=(0.5, 0.75, 0.2),
            mesh_bounds=MeshBounds(min_corner=(-0.6, -0.02, -0.4), max_corner=(0.6, 0.0, 0.4)),
        ),
        make_anchor("L400-0001", "LAMP", position=(1.5, 1.0, 1.0)),
        make_anchor("G500-0001", "GLOBAL_MESH", position=(0.0, 0.0, 0.0)),
    ]


@pytest.fixture
def static_room(room_anchors):
    return StaticRoom(room_anchors)


@pytest.fixture
def room_description():
    return {
        "anchors": [
            {
                "id": "{F100-0001}",
                "name": "floor",
                "label": "FLOOR",
                "position": {"x": 0.0, "y": 0.01, "z": 0.0},
                "rotation": {"x": 0.0, "y": 0.0, "z": 0.0, "w": 1.0},
                "box": {"center": [0.0, 0.0, 0.0], "halfExtents": [2.0, 0.01, 1.5]},
            },
            {
                "id": "W200-0001",
                "name": "back_wall",
                "label": "WALL_FACE",
                "position": [0.0, 1.2, -1.5],
                "rotation": [0.0, 0.0, 0.0, 1.0],
                "box": {"center": [0.0, 0.0, 0.0], "halfExtents": [2.0, 1.2, 0.05]},
            },
            {
                "id": "T300-0001",
                "name": "desk",
                "label": "TABLE",
                "position": [0.5, 0.75, 0.2],
                "rotation": [0.0, 0.0, 0.0, 1.0],
                "meshBounds": {"min": [-0.6, -0.02, -0.4], "max": [0.6, 0.0, 0.4]},
            },
        ]
    }


@pytest.fixture
def room_json_file(tmp_path, room_description):
    path = tmp_path / "room.json"
    path.write_text(json.dumps(room_description, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def shifted_room_json_file(tmp_path, room_description):
    """Same room re-scanned with every anchor moved +1m along x."""
    payload = json.loads(json.dumps(room_description))
    for item in payload["anchors"]:
        pos = item["position"]
        if isinstance(pos, dict):
            pos["x"] += 1.0
        else:
            pos[0] += 1.0
    path = tmp_path / "room_shifted.json"
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def scene_meshes():
    """Two world-space boxes standing in for the room scan."""
    floor = trimesh.creation.box(extents=[4.0, 0.02, 3.0])
    floor.apply_translation([0.0, 0.01, 0.0])
    desk = trimesh.creation.box(extents=[1.2, 0.02, 0.8])
    desk.apply_translation([0.5, 0.74, 0.2])
    return [floor, desk]


@pytest.fixture
def scene_mesh_file(tmp_path, scene_meshes):
    path = tmp_path / "scan.obj"
    trimesh.util.concatenate(scene_meshes).export(str(path))
    return str(path)
