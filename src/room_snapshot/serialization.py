"""
Persisted snapshot format.

A snapshot is stored as one JSON object (see `snapshot_to_dict`). Loading is
strict about structure: anything missing or ill-typed raises
`SnapshotFormatError` and no partial snapshot is returned. Files written by
the earlier capture tool (snake_case keys such as `scene_uuid`, `p0`,
`boundary_world`, `scene_anchor_uuid`) load through key aliases.
"""
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from room_snapshot.contracts import (
    SNAPSHOT_FORMAT_VERSION,
    AnchorRecord,
    Basis,
    BoundarySource,
    Pose,
    Quat,
    SceneMeshInfo,
    SceneSnapshot,
    SnapshotFormatError,
    Vec3,
    normalize_label,
)

logger = logging.getLogger(__name__)

# Convenience per-label lists written next to `anchorsByLabel` (ignored on load).
CONVENIENCE_LISTS: Tuple[Tuple[str, str], ...] = (
    ("floors", "FLOOR"),
    ("tables", "TABLE"),
    ("walls", "WALL_FACE"),
    ("ceilings", "CEILING"),
    ("screens", "SCREEN"),
    ("couches", "COUCH"),
    ("beds", "BED"),
    ("storages", "STORAGE"),
    ("lamps", "LAMP"),
    ("plants", "PLANT"),
)

_SNAPSHOT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "sceneId": ("scene_uuid",),
    "capturedAt": ("captured_at_utc",),
    "floorReferenceY": ("floor_world_y",),
}

_ANCHOR_ALIASES: Dict[str, Tuple[str, ...]] = {
    "position": ("p0",),
    "rotation": ("rot",),
    "normal": ("n",),
    "tangent": ("u",),
    "bitangent": ("v",),
    "heightAboveFloor": ("height_from_floor",),
    "boundaryWorld": ("boundary_world",),
    "boundarySource": ("boundary_source",),
    "id": ("scene_anchor_uuid",),
    "spatialId": ("spatial_uuid",),
    "anchorMode": ("anchor_mode",),
    "relativePosition": ("rel_pos",),
    "relativeRotation": ("rel_rot",),
    "openVocab": ("open_vocab",),
    "semanticConfidence": ("semantic_conf",),
    "meanRgb": ("mu_rgb",),
}

_MISSING = object()


# ─── Vectors ─────────────────────────────────────────────────────────────────

def vec3_to_json(v: Sequence[float]) -> Dict[str, float]:
    return {"x": float(v[0]), "y": float(v[1]), "z": float(v[2])}


def quat_to_json(q: Sequence[float]) -> Dict[str, float]:
    return {"x": float(q[0]), "y": float(q[1]), "z": float(q[2]), "w": float(q[3])}


def vec3_from_json(value: Any, field_name: str) -> Vec3:
    """Parse `{x, y, z}` or `[x, y, z]`."""
    return _components(value, ("x", "y", "z"), field_name)  # type: ignore[return-value]


def quat_from_json(value: Any, field_name: str) -> Quat:
    """Parse `{x, y, z, w}` or `[x, y, z, w]`."""
    return _components(value, ("x", "y", "z", "w"), field_name)  # type: ignore[return-value]


def _components(value: Any, keys: Tuple[str, ...], field_name: str) -> Tuple[float, ...]:
    if isinstance(value, dict):
        raw = [value.get(k, _MISSING) for k in keys]
    elif isinstance(value, (list, tuple)) and len(value) == len(keys):
        raw = list(value)
    else:
        raise SnapshotFormatError(
            f"Field '{field_name}' must be an object with {'/'.join(keys)} "
            f"or a list of {len(keys)} numbers, got {value!r}"
        )
    out = []
    for key, item in zip(keys, raw):
        if item is _MISSING or isinstance(item, bool) or not isinstance(item, (int, float)):
            raise SnapshotFormatError(f"Field '{field_name}.{key}' must be a number")
        out.append(float(item))
    return tuple(out)


# ─── Snapshot -> JSON ────────────────────────────────────────────────────────

def anchor_to_dict(anchor: AnchorRecord) -> Dict[str, Any]:
    return {
        "name": anchor.name,
        "label": anchor.label,
        "id": anchor.anchor_id,
        "position": vec3_to_json(anchor.pose.position),
        "rotation": quat_to_json(anchor.pose.rotation),
        "normal": vec3_to_json(anchor.basis.normal),
        "tangent": vec3_to_json(anchor.basis.tangent),
        "bitangent": vec3_to_json(anchor.basis.bitangent),
        "shape": anchor.shape,
        "size": {"x": float(anchor.size[0]), "y": float(anchor.size[1]), "z": 0.0},
        "heightAboveFloor": float(anchor.height_above_floor),
        "boundaryWorld": [vec3_to_json(p) for p in anchor.boundary],
        "boundarySource": anchor.boundary_source.value,
        "spatialId": anchor.spatial_id,
        "anchorMode": anchor.anchor_mode,
        "relativePosition": vec3_to_json(anchor.relative_position),
        "relativeRotation": quat_to_json(anchor.relative_rotation),
        "openVocab": [
            {"label": label, "conf": float(conf)} for label, conf in anchor.open_vocab
        ],
        "semanticConfidence": float(anchor.semantic_confidence),
        "meanRgb": [float(c) for c in anchor.mean_rgb],
    }


def snapshot_to_dict(snapshot: SceneSnapshot) -> Dict[str, Any]:
    snapshot.validate(check_geometry=False)
    groups = snapshot.anchors_by_label
    payload: Dict[str, Any] = {
        "version": int(snapshot.version),
        "sceneId": snapshot.scene_id,
        "capturedAt": snapshot.captured_at,
        "floorReferenceY": float(snapshot.floor_reference_y),
        "labelStats": [
            {"label": label, "count": count}
            for label, count in snapshot.label_stats.items()
        ],
        "anchorsByLabel": [
            {"label": label, "anchors": [anchor_to_dict(a) for a in anchors]}
            for label, anchors in groups.items()
        ],
    }
    for key, label in CONVENIENCE_LISTS:
        payload[key] = [anchor_to_dict(a) for a in groups.get(label, [])]
    if snapshot.scene_mesh is not None:
        mesh = snapshot.scene_mesh
        payload["sceneMesh"] = {
            "vertexCount": int(mesh.vertex_count),
            "meshCount": int(mesh.mesh_count),
            "aabb": {"min": vec3_to_json(mesh.aabb_min), "max": vec3_to_json(mesh.aabb_max)},
            "path": mesh.path,
        }
    return payload


# ─── JSON -> Snapshot ────────────────────────────────────────────────────────

def snapshot_from_dict(payload: Dict[str, Any]) -> SceneSnapshot:
    """Parse a snapshot payload.

    Raises:
        SnapshotFormatError: If required fields are missing or ill-typed.
        DuplicateAnchorIdError: If two anchors share a normalized id.
    """
    if not isinstance(payload, dict):
        raise SnapshotFormatError("Snapshot payload must be a JSON object")

    version = payload.get("version", SNAPSHOT_FORMAT_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        raise SnapshotFormatError(f"Field 'version' must be an integer, got {version!r}")

    scene_id = _require(payload, "sceneId", _SNAPSHOT_ALIASES)
    if not isinstance(scene_id, str) or not scene_id.strip():
        raise SnapshotFormatError("Field 'sceneId' must be a non-empty string")
    captured_at = str(_lookup(payload, "capturedAt", _SNAPSHOT_ALIASES, default="") or "")
    floor_y = _number(
        _lookup(payload, "floorReferenceY", _SNAPSHOT_ALIASES, default=0.0),
        "floorReferenceY",
    )

    groups = payload.get("anchorsByLabel")
    if not isinstance(groups, list):
        raise SnapshotFormatError("Field 'anchorsByLabel' must be a list")
    anchors: List[AnchorRecord] = []
    for g_idx, group in enumerate(groups):
        if not isinstance(group, dict):
            raise SnapshotFormatError(f"anchorsByLabel[{g_idx}] must be an object")
        group_label = normalize_label(group.get("label"))
        items = group.get("anchors") or []
        if not isinstance(items, list):
            raise SnapshotFormatError(f"anchorsByLabel[{g_idx}].anchors must be a list")
        for a_idx, item in enumerate(items):
            where = f"anchorsByLabel[{g_idx}].anchors[{a_idx}]"
            if not isinstance(item, dict):
                raise SnapshotFormatError(f"{where} must be an object")
            try:
                anchors.append(anchor_from_dict(item, default_label=group_label))
            except SnapshotFormatError as e:
                raise SnapshotFormatError(f"{where}: {e}") from e

    snapshot = SceneSnapshot(
        scene_id=scene_id,
        captured_at=captured_at,
        floor_reference_y=floor_y,
        anchors=tuple(anchors),
        scene_mesh=_scene_mesh_from_payload(payload),
        version=version,
    )
    snapshot.validate(check_geometry=False)
    return snapshot


def anchor_from_dict(item: Dict[str, Any], default_label: str = "") -> AnchorRecord:
    label = normalize_label(item.get("label")) or default_label
    if not label:
        raise SnapshotFormatError("Anchor has no label")

    boundary_raw = _lookup(item, "boundaryWorld", _ANCHOR_ALIASES, default=[])
    if boundary_raw is None:
        boundary_raw = []
    if not isinstance(boundary_raw, list):
        raise SnapshotFormatError("Field 'boundaryWorld' must be a list")
    boundary = tuple(
        vec3_from_json(p, f"boundaryWorld[{i}]") for i, p in enumerate(boundary_raw)
    )

    source_raw = _lookup(item, "boundarySource", _ANCHOR_ALIASES, default="fallback")
    try:
        source = BoundarySource.parse(source_raw)
    except ValueError as e:
        raise SnapshotFormatError(f"Unknown boundarySource {source_raw!r}") from e

    size = vec3_from_json(item.get("size", [0.0, 0.0, 0.0]), "size")
    open_vocab_raw = _lookup(item, "openVocab", _ANCHOR_ALIASES, default=[]) or []
    if not isinstance(open_vocab_raw, list):
        raise SnapshotFormatError(f"Field 'openVocab' must be a list, got {open_vocab_raw!r}")
    open_vocab = tuple(
        (str(entry.get("label", "")), _number(entry.get("conf", 0.0), "openVocab.conf"))
        for entry in open_vocab_raw
        if isinstance(entry, dict)
    )
    mean_rgb_raw = _lookup(item, "meanRgb", _ANCHOR_ALIASES, default=None)
    mean_rgb = (
        vec3_from_json(mean_rgb_raw, "meanRgb") if mean_rgb_raw else (0.0, 0.0, 0.0)
    )

    return AnchorRecord(
        anchor_id=str(_lookup(item, "id", _ANCHOR_ALIASES, default="") or ""),
        name=str(item.get("name", "") or ""),
        label=label,
        pose=Pose(
            position=vec3_from_json(_require(item, "position", _ANCHOR_ALIASES), "position"),
            rotation=quat_from_json(
                _lookup(item, "rotation", _ANCHOR_ALIASES, default=[0.0, 0.0, 0.0, 1.0]),
                "rotation",
            ),
        ),
        basis=Basis(
            normal=vec3_from_json(_require(item, "normal", _ANCHOR_ALIASES), "normal"),
            tangent=vec3_from_json(_require(item, "tangent", _ANCHOR_ALIASES), "tangent"),
            bitangent=vec3_from_json(
                _require(item, "bitangent", _ANCHOR_ALIASES), "bitangent"
            ),
        ),
        boundary=boundary,
        size=(size[0], size[1]),
        boundary_source=source,
        height_above_floor=_number(
            _lookup(item, "heightAboveFloor", _ANCHOR_ALIASES, default=0.0),
            "heightAboveFloor",
        ),
        shape=str(item.get("shape", "plane") or "plane"),
        spatial_id=str(_lookup(item, "spatialId", _ANCHOR_ALIASES, default="") or ""),
        anchor_mode=str(
            _lookup(item, "anchorMode", _ANCHOR_ALIASES, default="identity_attach")
            or "identity_attach"
        ),
        relative_position=vec3_from_json(
            _lookup(item, "relativePosition", _ANCHOR_ALIASES, default=[0.0, 0.0, 0.0]),
            "relativePosition",
        ),
        relative_rotation=quat_from_json(
            _lookup(
                item, "relativeRotation", _ANCHOR_ALIASES, default=[0.0, 0.0, 0.0, 1.0]
            ),
            "relativeRotation",
        ),
        open_vocab=open_vocab,
        semantic_confidence=_number(
            _lookup(item, "semanticConfidence", _ANCHOR_ALIASES, default=1.0),
            "semanticConfidence",
        ),
        mean_rgb=mean_rgb,
    )


def _scene_mesh_from_payload(payload: Dict[str, Any]) -> Optional[SceneMeshInfo]:
    mesh = payload.get("sceneMesh")
    if isinstance(mesh, dict):
        aabb = mesh.get("aabb") or {}
        if not isinstance(aabb, dict):
            raise SnapshotFormatError("Field 'sceneMesh.aabb' must be an object")
        return SceneMeshInfo(
            vertex_count=_int(mesh.get("vertexCount", 0), "sceneMesh.vertexCount"),
            mesh_count=_int(mesh.get("meshCount", 0), "sceneMesh.meshCount"),
            aabb_min=vec3_from_json(aabb.get("min"), "sceneMesh.aabb.min"),
            aabb_max=vec3_from_json(aabb.get("max"), "sceneMesh.aabb.max"),
            path=str(mesh.get("path", "") or ""),
        )
    legacy_aabb = payload.get("sceneMeshAABB")
    if isinstance(legacy_aabb, dict):
        return SceneMeshInfo(
            vertex_count=0,
            mesh_count=_int(payload.get("sceneMeshCount", 0), "sceneMeshCount"),
            aabb_min=vec3_from_json(legacy_aabb.get("min"), "sceneMeshAABB.min"),
            aabb_max=vec3_from_json(legacy_aabb.get("max"), "sceneMeshAABB.max"),
            path=str(payload.get("scene_mesh_path", "") or ""),
        )
    return None


def _lookup(
    payload: Dict[str, Any],
    key: str,
    aliases: Dict[str, Tuple[str, ...]],
    default: Any = _MISSING,
) -> Any:
    if key in payload:
        return payload[key]
    for alias in aliases.get(key, ()):
        if alias in payload:
            return payload[alias]
    return default


def _require(payload: Dict[str, Any], key: str, aliases: Dict[str, Tuple[str, ...]]) -> Any:
    value = _lookup(payload, key, aliases)
    if value is _MISSING:
        raise SnapshotFormatError(f"Missing required field '{key}'")
    return value


def _number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotFormatError(f"Field '{field_name}' must be a number, got {value!r}")
    return float(value)


def _int(value: Any, field_name: str) -> int:
    number = _number(value, field_name)
    if not math.isfinite(number) or not number.is_integer():
        raise SnapshotFormatError(f"Field '{field_name}' must be an integer, got {value!r}")
    return int(number)


# ─── Files ───────────────────────────────────────────────────────────────────

def snapshot_file_name(
    scene_id: str, prefix: str = "room_snapshot_", now: Optional[datetime] = None
) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    return f"{prefix}{stamp}_{scene_id}.json"


def write_snapshot_json(path: str | Path, snapshot: SceneSnapshot) -> Path:
    out = Path(path)
    _write_json(out, snapshot_to_dict(snapshot))
    logger.info("Exported snapshot JSON: %s", out)
    return out


def loads_snapshot(text: str) -> SceneSnapshot:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {e}") from e
    return snapshot_from_dict(payload)


def load_snapshot_json(path: str | Path) -> SceneSnapshot:
    """Read a snapshot file.

    Raises:
        FileNotFoundError: If the file does not exist.
        SnapshotFormatError: If it cannot be parsed.
    """
    src = Path(path)
    if not src.is_file():
        raise FileNotFoundError(f"Snapshot file not found: {src}")
    try:
        text = src.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SnapshotFormatError(f"Snapshot {src} is not UTF-8 text: {e}") from e
    snapshot = loads_snapshot(text)
    logger.info(
        "Loaded snapshot %s from %s (%d anchors)",
        snapshot.scene_id, src, len(snapshot.anchors),
    )
    return snapshot


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
