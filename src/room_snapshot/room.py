"""
Live anchor sources.

The tracking subsystem that reports the current room is an external
collaborator. Everything in this package talks to it through
`LiveAnchorSource`, so synthetic rooms (tests, CLI room descriptions) and
device-backed rooms are interchangeable.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from room_snapshot.boundary import MeshBounds, OrientedBox
from room_snapshot.contracts import (
    DuplicateAnchorIdError,
    Pose,
    RoomDescriptionError,
    SnapshotFormatError,
    normalize_anchor_id,
    normalize_label,
    short_id,
)
from room_snapshot.serialization import quat_from_json, vec3_from_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomAnchor:
    """An anchor as reported by the tracking subsystem."""

    anchor_id: str
    label: str
    pose: Pose
    name: str = ""
    box: Optional[OrientedBox] = None
    mesh_bounds: Optional[MeshBounds] = None

    @property
    def normalized_id(self) -> str:
        return normalize_anchor_id(self.anchor_id)


class LiveAnchorSource(ABC):
    """Read-only view of the room currently tracked by the device."""

    @abstractmethod
    def list_anchors(self) -> Sequence[RoomAnchor]:
        """Anchors of the current room, in the subsystem's order."""
        ...

    def has_room(self) -> bool:
        """Whether the subsystem has reported a room yet."""
        return True


def index_by_id(anchors: Iterable[RoomAnchor]) -> Dict[str, RoomAnchor]:
    """Map normalized id -> anchor, skipping anchors without an id.

    Raises:
        DuplicateAnchorIdError: If two anchors share a normalized id.
    """
    lookup: Dict[str, RoomAnchor] = {}
    for anchor in anchors:
        key = anchor.normalized_id
        if not key:
            continue
        if key in lookup:
            raise DuplicateAnchorIdError(
                f"Live anchor id {short_id(key)} reported twice "
                f"({lookup[key].name!r}, {anchor.name!r})"
            )
        lookup[key] = anchor
    return lookup


class StaticRoom(LiveAnchorSource):
    """In-memory room with a fixed list of anchors."""

    def __init__(self, anchors: Iterable[RoomAnchor] = (), ready: bool = True):
        self._anchors: List[RoomAnchor] = list(anchors)
        self.ready = ready

    def list_anchors(self) -> Sequence[RoomAnchor]:
        return list(self._anchors)

    def has_room(self) -> bool:
        return self.ready

    def add(self, anchor: RoomAnchor) -> None:
        self._anchors.append(anchor)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StaticRoom":
        """Build a room from a description payload.

        Expected shape:
        - `anchors[*]`: `id`, `label`, `position`, `rotation`, optional
          `name`, `box {center, halfExtents}`, `meshBounds {min, max}`
        Vectors may be `{x, y, z[, w]}` objects or plain lists.
        """
        if not isinstance(payload, dict):
            raise RoomDescriptionError("Room description must be a JSON object")
        raw_anchors = payload.get("anchors", [])
        if not isinstance(raw_anchors, list):
            raise RoomDescriptionError("Room description 'anchors' must be a list")
        anchors = []
        for idx, item in enumerate(raw_anchors):
            if not isinstance(item, dict):
                raise RoomDescriptionError(f"Room anchor {idx} is not an object")
            try:
                anchors.append(_room_anchor_from_dict(item, idx))
            except SnapshotFormatError as e:
                raise RoomDescriptionError(f"Room anchor {idx}: {e}") from e
        return cls(anchors)

    @classmethod
    def from_json(cls, path: str | Path) -> "StaticRoom":
        src = Path(path)
        try:
            payload = json.loads(src.read_text(encoding="utf-8"))
        except UnicodeDecodeError as e:
            raise RoomDescriptionError(f"Room description {src} is not UTF-8 text: {e}") from e
        except json.JSONDecodeError as e:
            raise RoomDescriptionError(f"Room description {src} is not valid JSON: {e}") from e
        room = cls.from_dict(payload)
        logger.info("Loaded room description %s (%d anchors)", src, len(room._anchors))
        return room


def _room_anchor_from_dict(item: Dict[str, Any], idx: int) -> RoomAnchor:
    label = normalize_label(item.get("label"))
    if not label:
        raise RoomDescriptionError(f"Room anchor {idx} has no label")
    pose = Pose(
        position=vec3_from_json(item.get("position"), "position"),
        rotation=quat_from_json(item.get("rotation", [0.0, 0.0, 0.0, 1.0]), "rotation"),
    )

    box = None
    raw_box = item.get("box")
    if raw_box is not None:
        if not isinstance(raw_box, dict):
            raise RoomDescriptionError(f"Room anchor {idx} box must be an object")
        box = OrientedBox(
            center=vec3_from_json(raw_box.get("center", [0.0, 0.0, 0.0]), "box.center"),
            half_extents=vec3_from_json(raw_box.get("halfExtents"), "box.halfExtents"),
        )

    mesh_bounds = None
    raw_bounds = item.get("meshBounds")
    if raw_bounds is not None:
        if not isinstance(raw_bounds, dict):
            raise RoomDescriptionError(f"Room anchor {idx} meshBounds must be an object")
        mesh_bounds = MeshBounds(
            min_corner=vec3_from_json(raw_bounds.get("min"), "meshBounds.min"),
            max_corner=vec3_from_json(raw_bounds.get("max"), "meshBounds.max"),
        )

    return RoomAnchor(
        anchor_id=str(item.get("id", "") or ""),
        label=label,
        pose=pose,
        name=str(item.get("name", "") or f"{label.lower()}_{idx}"),
        box=box,
        mesh_bounds=mesh_bounds,
    )
