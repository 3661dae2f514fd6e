"""Contracts for room snapshot capture, reconstruction and registration."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]
Quat = Tuple[float, float, float, float]  # scalar-last (x, y, z, w)

SNAPSHOT_FORMAT_VERSION = 4
GLOBAL_MESH_LABEL = "GLOBAL_MESH"
IDENTITY_QUAT: Quat = (0.0, 0.0, 0.0, 1.0)
BASIS_TOLERANCE = 1e-4

DEFAULT_ALIGN_LABEL_PRIORITY: Tuple[str, ...] = (
    "WALL_FACE",
    "DOOR_FRAME",
    "WINDOW_FRAME",
    "FLOOR",
    "TABLE",
)

MAJOR_LABELS = frozenset(
    {
        "WALL_FACE",
        "FLOOR",
        "TABLE",
        "BED",
        "COUCH",
        "DOOR_FRAME",
        "WINDOW_FRAME",
        "STORAGE",
    }
)


# ─── Errors ──────────────────────────────────────────────────────────────────

class RoomSnapshotError(Exception):
    """Base exception for room snapshot errors."""
    pass


class SnapshotFormatError(RoomSnapshotError, ValueError):
    """A persisted snapshot could not be parsed or is missing fields."""
    pass


class RoomDescriptionError(RoomSnapshotError, ValueError):
    """A live-room description file is invalid."""
    pass


class DuplicateAnchorIdError(RoomSnapshotError, ValueError):
    """Two anchors in one room or snapshot share a normalized id."""
    pass


class PersistenceError(RoomSnapshotError):
    """The anchor persistence service reported an error."""
    pass


class PersistenceTimeoutError(PersistenceError):
    """Saving a single anchor took longer than its timeout."""
    pass


# ─── Labels ──────────────────────────────────────────────────────────────────

class AnchorKind(Enum):
    """Geometry family an anchor label belongs to."""
    FLOOR = "floor"
    WALL = "wall"
    CEILING = "ceiling"
    TABLE = "table"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    OTHER = "other"

    @property
    def is_vertical(self) -> bool:
        return self in (AnchorKind.WALL, AnchorKind.VERTICAL)


_KIND_BY_LABEL: Dict[str, AnchorKind] = {
    "FLOOR": AnchorKind.FLOOR,
    "CEILING": AnchorKind.CEILING,
    "WALL_FACE": AnchorKind.WALL,
    "INVISIBLE_WALL_FACE": AnchorKind.WALL,
    "WALL_ART": AnchorKind.WALL,
    "TABLE": AnchorKind.TABLE,
    "BED": AnchorKind.HORIZONTAL,
    "COUCH": AnchorKind.HORIZONTAL,
    "STORAGE": AnchorKind.HORIZONTAL,
    "SCREEN": AnchorKind.HORIZONTAL,
    "LAMP": AnchorKind.HORIZONTAL,
    "PLANT": AnchorKind.HORIZONTAL,
    "DOOR_FRAME": AnchorKind.VERTICAL,
    "WINDOW_FRAME": AnchorKind.VERTICAL,
}

# Substring rules for labels outside the known vocabulary; first match wins.
_KIND_BY_SUBSTRING: Tuple[Tuple[str, AnchorKind], ...] = (
    ("FLOOR", AnchorKind.FLOOR),
    ("CEILING", AnchorKind.CEILING),
    ("WALL", AnchorKind.WALL),
    ("TABLE", AnchorKind.TABLE),
    ("DOOR_FRAME", AnchorKind.VERTICAL),
    ("WINDOW_FRAME", AnchorKind.VERTICAL),
    ("SCREEN", AnchorKind.HORIZONTAL),
    ("BED", AnchorKind.HORIZONTAL),
    ("COUCH", AnchorKind.HORIZONTAL),
    ("STORAGE", AnchorKind.HORIZONTAL),
    ("LAMP", AnchorKind.HORIZONTAL),
    ("PLANT", AnchorKind.HORIZONTAL),
)


def normalize_label(label: Optional[str]) -> str:
    return (label or "").strip().upper()


def anchor_kind(label: Optional[str]) -> AnchorKind:
    """Map a tracking-subsystem label to the geometry family used for framing."""
    key = normalize_label(label)
    kind = _KIND_BY_LABEL.get(key)
    if kind is not None:
        return kind
    for fragment, candidate in _KIND_BY_SUBSTRING:
        if fragment in key:
            return candidate
    return AnchorKind.OTHER


def is_global_mesh(label: Optional[str]) -> bool:
    return normalize_label(label) == GLOBAL_MESH_LABEL


class BoundarySource(Enum):
    """Which geometric source produced an anchor's boundary."""
    BOX = "box"
    MESH = "mesh"
    FALLBACK = "fallback"

    @classmethod
    def parse(cls, value: str) -> "BoundarySource":
        key = str(value).strip().lower()
        key = _LEGACY_BOUNDARY_SOURCES.get(key, key)
        return cls(key)


_LEGACY_BOUNDARY_SOURCES = {
    "box_bounds": "box",
    "mesh_bounds": "mesh",
    "fallback_square": "fallback",
}


# ─── Identifiers / time ──────────────────────────────────────────────────────

_ID_STRIP_RE = re.compile(r"[^0-9a-zA-Z]+")


def normalize_anchor_id(value: Optional[str]) -> str:
    """Lower-case alphanumeric form of an anchor id ('' for missing ids)."""
    if not value:
        return ""
    return _ID_STRIP_RE.sub("", str(value)).lower()


def short_id(value: Optional[str]) -> str:
    normalized = normalize_anchor_id(value)
    return normalized[:8]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_vec3(values: Sequence[float]) -> Vec3:
    return (float(values[0]), float(values[1]), float(values[2]))


def to_vec2(values: Sequence[float]) -> Vec2:
    return (float(values[0]), float(values[1]))


def to_quat(values: Sequence[float]) -> Quat:
    return (float(values[0]), float(values[1]), float(values[2]), float(values[3]))


# ─── Geometry records ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Pose:
    """World pose reported by the tracking subsystem."""

    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Quat = IDENTITY_QUAT

    def position_array(self) -> np.ndarray:
        return np.asarray(self.position, dtype=float)


@dataclass(frozen=True)
class Basis:
    """Orthonormal plane frame of an anchor (bitangent = normal x tangent)."""

    normal: Vec3
    tangent: Vec3
    bitangent: Vec3

    def as_matrix(self) -> np.ndarray:
        """Rotation matrix whose local X, Y, Z axes are tangent, bitangent, normal."""
        return np.column_stack(
            [
                np.asarray(self.tangent, dtype=float),
                np.asarray(self.bitangent, dtype=float),
                np.asarray(self.normal, dtype=float),
            ]
        )

    def is_orthonormal(self, tol: float = BASIS_TOLERANCE) -> bool:
        n = np.asarray(self.normal, dtype=float)
        t = np.asarray(self.tangent, dtype=float)
        b = np.asarray(self.bitangent, dtype=float)
        for vec in (n, t, b):
            if abs(float(np.linalg.norm(vec)) - 1.0) > tol:
                return False
        return (
            abs(float(n @ t)) <= tol
            and abs(float(n @ b)) <= tol
            and abs(float(t @ b)) <= tol
        )


@dataclass(frozen=True)
class Boundary:
    """Coplanar rectangle approximating an anchor's extent."""

    points: Tuple[Vec3, ...]
    size: Vec2
    source: BoundarySource


@dataclass(frozen=True)
class AnchorRecord:
    """One anchor as captured in a snapshot."""

    anchor_id: str
    name: str
    label: str
    pose: Pose
    basis: Basis
    boundary: Tuple[Vec3, ...]
    size: Vec2
    boundary_source: BoundarySource
    height_above_floor: float
    shape: str = "plane"
    spatial_id: str = ""
    anchor_mode: str = "identity_attach"
    relative_position: Vec3 = (0.0, 0.0, 0.0)
    relative_rotation: Quat = IDENTITY_QUAT
    open_vocab: Tuple[Tuple[str, float], ...] = ()
    semantic_confidence: float = 1.0
    mean_rgb: Vec3 = (0.0, 0.0, 0.0)

    @property
    def kind(self) -> AnchorKind:
        return anchor_kind(self.label)

    @property
    def normalized_id(self) -> str:
        return normalize_anchor_id(self.anchor_id)

    def plane_distances(self) -> np.ndarray:
        """Signed distance of every boundary point from the anchor plane."""
        if not self.boundary:
            return np.zeros(0, dtype=float)
        pts = np.asarray(self.boundary, dtype=float)
        origin = self.pose.position_array()
        normal = np.asarray(self.basis.normal, dtype=float)
        return (pts - origin) @ normal

    def validate(self, tol: float = BASIS_TOLERANCE) -> List[str]:
        """Check basis and boundary geometry. Returns list of issues (empty = ok)."""
        issues = []
        if not self.basis.is_orthonormal(tol):
            issues.append(f"Anchor {self.name!r} basis is not orthonormal")
        distances = self.plane_distances()
        if distances.size and float(np.max(np.abs(distances))) > tol:
            issues.append(f"Anchor {self.name!r} boundary is not coplanar")
        return issues


@dataclass(frozen=True)
class SceneMeshInfo:
    """Metadata of the combined room mesh written next to a snapshot."""

    vertex_count: int
    mesh_count: int
    aabb_min: Vec3
    aabb_max: Vec3
    path: str = ""


@dataclass(frozen=True)
class SceneSnapshot:
    """Immutable capture of a room's anchors at one instant."""

    scene_id: str
    captured_at: str
    floor_reference_y: float
    anchors: Tuple[AnchorRecord, ...]
    scene_mesh: Optional[SceneMeshInfo] = None
    version: int = SNAPSHOT_FORMAT_VERSION

    @property
    def anchors_by_label(self) -> Dict[str, List[AnchorRecord]]:
        groups: Dict[str, List[AnchorRecord]] = {}
        for anchor in self.anchors:
            groups.setdefault(anchor.label, []).append(anchor)
        return groups

    @property
    def label_stats(self) -> Dict[str, int]:
        return {label: len(group) for label, group in self.anchors_by_label.items()}

    def anchors_with_label(self, label: str) -> List[AnchorRecord]:
        key = normalize_label(label)
        return [a for a in self.anchors if normalize_label(a.label) == key]

    def validate(
        self, tol: float = BASIS_TOLERANCE, check_geometry: bool = True
    ) -> None:
        if not self.scene_id.strip():
            raise ValueError("SceneSnapshot.scene_id is required")
        seen: Dict[str, str] = {}
        for anchor in self.anchors:
            key = anchor.normalized_id
            if not key:
                continue
            if key in seen:
                raise DuplicateAnchorIdError(
                    f"Anchor id {short_id(key)} used by both "
                    f"{seen[key]!r} and {anchor.name!r}"
                )
            seen[key] = anchor.name
        if not check_geometry:
            return
        for anchor in self.anchors:
            issues = anchor.validate(tol)
            if issues:
                raise ValueError("; ".join(issues))


# ─── Configuration ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SnapshotConfig:
    """Configuration for building a snapshot from a live room."""

    fallback_half_extent: float = 0.2


@dataclass(frozen=True)
class PersistenceConfig:
    """Configuration for the optional per-anchor persistence pass."""

    per_anchor_timeout_s: float = 12.0
    min_timeout_s: float = 4.0
    major_labels_only: bool = False


@dataclass(frozen=True)
class ExportConfig:
    """Configuration for exporting a room snapshot to disk."""

    export_dir: str = "RegionDumps"
    snapshot_file_prefix: str = "room_snapshot_"
    scene_mesh_file_prefix: str = "scene_"
    export_scene_mesh: bool = True
    persist_anchors: bool = False
    room_wait_timeout_s: Optional[float] = None
    poll_interval_s: float = 0.5
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


@dataclass(frozen=True)
class ReplayConfig:
    """Configuration for rebuilding a snapshot and aligning it to a live room."""

    label_priority: Tuple[str, ...] = DEFAULT_ALIGN_LABEL_PRIORITY
    exclude_global_mesh: bool = True
    auto_align: bool = True
    room_wait_timeout_s: float = 12.0
    poll_interval_s: float = 0.5
    id_report_path: Optional[str] = None
