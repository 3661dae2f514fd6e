"""Tests for the persisted snapshot format."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import pytest

from conftest import make_anchor
from room_snapshot.contracts import (
    BoundarySource,
    DuplicateAnchorIdError,
    SnapshotFormatError,
)
from room_snapshot.reconstruct import reconstruct_scene
from room_snapshot.serialization import (
    load_snapshot_json,
    loads_snapshot,
    snapshot_file_name,
    snapshot_from_dict,
    snapshot_to_dict,
    write_snapshot_json,
)
from room_snapshot.snapshot import build_snapshot


def _legacy_payload():
    return {
        "version": 3,
        "scene_uuid": "legacy01",
        "captured_at_utc": "2024-05-01T10:00:00Z",
        "floor_world_y": 0.05,
        "anchorsByLabel": [
            {
                "label": "TABLE",
                "anchors": [
                    {
                        "name": "desk",
                        "label": "TABLE",
                        "p0": {"x": 1.0, "y": 0.8, "z": 0.0},
                        "rot": {"x": 0.0, "y": 0.0, "z": 0.0, "w": 1.0},
                        "n": {"x": 0.0, "y": 1.0, "z": 0.0},
                        "u": {"x": 1.0, "y": 0.0, "z": 0.0},
                        "v": {"x": 0.0, "y": 0.0, "z": -1.0},
                        "size": {"x": 1.0, "y": 0.5, "z": 0.0},
                        "height_from_floor": 0.75,
                        "boundary_world": [
                            {"x": 0.5, "y": 0.8, "z": 0.25},
                            {"x": 1.5, "y": 0.8, "z": 0.25},
                            {"x": 1.5, "y": 0.8, "z": -0.25},
                            {"x": 0.5, "y": 0.8, "z": -0.25},
                        ],
                        "boundary_source": "box_bounds",
                        "scene_anchor_uuid": "ABCD-1234",
                        "spatial_uuid": "sp-1",
                    }
                ],
            }
        ],
    }


class TestWriteAndLoad:

    def test_payload_keys(self, room_anchors, scene_meshes):
        snapshot = build_snapshot(room_anchors, scene_meshes=scene_meshes, scene_mesh_path="scene_a.obj")
        payload = snapshot_to_dict(snapshot)
        assert payload["version"] == 4
        assert payload["sceneId"] == snapshot.scene_id
        assert payload["labelStats"][0] == {"label": "FLOOR", "count": 1}
        assert len(payload["walls"]) == 2
        assert len(payload["tables"]) == 1
        assert payload["plants"] == []
        assert payload["sceneMesh"]["path"] == "scene_a.obj"
        anchor = payload["anchorsByLabel"][0]["anchors"][0]
        for key in ("name", "label", "id", "position", "rotation", "normal", "tangent",
                    "bitangent", "shape", "size", "heightAboveFloor", "boundaryWorld",
                    "boundarySource"):
            assert key in anchor
        assert anchor["shape"] == "plane"
        assert anchor["boundarySource"] == "box"

    def test_round_trip_through_file(self, room_anchors, tmp_path: Path):
        snapshot = build_snapshot(room_anchors)
        path = write_snapshot_json(tmp_path / "snap.json", snapshot)
        loaded = load_snapshot_json(path)
        assert loaded.scene_id == snapshot.scene_id
        assert loaded.label_stats == snapshot.label_stats
        for before, after in zip(snapshot.anchors, loaded.anchors):
            assert after.anchor_id == before.anchor_id
            assert after.boundary_source is before.boundary_source
            assert np.allclose(after.boundary, before.boundary, atol=1e-4)
            assert np.allclose(after.basis.normal, before.basis.normal, atol=1e-4)

    def test_round_trip_reconstructs_boundary(self, room_anchors, tmp_path: Path):
        snapshot = build_snapshot(room_anchors)
        loaded = load_snapshot_json(write_snapshot_json(tmp_path / "snap.json", snapshot))
        scene = reconstruct_scene(loaded)
        for record in snapshot.anchors:
            if record.label == "GLOBAL_MESH":
                continue
            rebuilt = scene.find_by_id(record.anchor_id)
            world = scene.world_vertices(rebuilt)
            assert world.shape == (4, 3)
            assert np.allclose(world, np.asarray(record.boundary), atol=1e-4)

    def test_atomic_write_leaves_no_tmp(self, room_anchors, tmp_path: Path):
        write_snapshot_json(tmp_path / "out" / "snap.json", build_snapshot(room_anchors))
        assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["snap.json"]

    def test_file_name(self):
        stamp = datetime(2024, 3, 9, 14, 5, 7, tzinfo=timezone.utc)
        assert snapshot_file_name("abc", now=stamp) == "room_snapshot_20240309_140507_abc.json"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_snapshot_json(tmp_path / "nope.json")


class TestLegacyAndMalformed:

    def test_legacy_keys_load(self):
        snapshot = snapshot_from_dict(_legacy_payload())
        assert snapshot.scene_id == "legacy01"
        assert snapshot.version == 3
        assert snapshot.floor_reference_y == pytest.approx(0.05)
        desk = snapshot.anchors[0]
        assert desk.anchor_id == "ABCD-1234"
        assert desk.normalized_id == "abcd1234"
        assert desk.spatial_id == "sp-1"
        assert desk.boundary_source is BoundarySource.BOX
        assert desk.height_above_floor == pytest.approx(0.75)
        assert len(desk.boundary) == 4

    def test_convenience_lists_are_ignored(self):
        payload = _legacy_payload()
        payload["tables"] = [{"garbage": True}]
        assert len(snapshot_from_dict(payload).anchors) == 1

    def test_invalid_json(self):
        with pytest.raises(SnapshotFormatError):
            loads_snapshot("{not json")

    def test_not_an_object(self):
        with pytest.raises(SnapshotFormatError):
            loads_snapshot("[1, 2, 3]")

    def test_missing_scene_id(self):
        payload = _legacy_payload()
        del payload["scene_uuid"]
        with pytest.raises(SnapshotFormatError, match="sceneId"):
            snapshot_from_dict(payload)

    def test_missing_anchor_position(self):
        payload = _legacy_payload()
        del payload["anchorsByLabel"][0]["anchors"][0]["p0"]
        with pytest.raises(SnapshotFormatError, match="position"):
            snapshot_from_dict(payload)

    def test_ill_typed_vector(self):
        payload = _legacy_payload()
        payload["anchorsByLabel"][0]["anchors"][0]["n"] = {"x": "up", "y": 1, "z": 0}
        with pytest.raises(SnapshotFormatError):
            snapshot_from_dict(payload)

    def test_unknown_boundary_source(self):
        payload = _legacy_payload()
        payload["anchorsByLabel"][0]["anchors"][0]["boundary_source"] = "lidar"
        with pytest.raises(SnapshotFormatError):
            snapshot_from_dict(payload)

    def test_anchors_by_label_required(self):
        payload = _legacy_payload()
        del payload["anchorsByLabel"]
        with pytest.raises(SnapshotFormatError):
            snapshot_from_dict(payload)

    def test_duplicate_ids_rejected_on_load(self):
        payload = _legacy_payload()
        anchors = payload["anchorsByLabel"][0]["anchors"]
        twin = json.loads(json.dumps(anchors[0]))
        twin["scene_anchor_uuid"] = "{abcd-1234}"
        anchors.append(twin)
        with pytest.raises(DuplicateAnchorIdError):
            snapshot_from_dict(payload)

    def test_skewed_basis_still_loads(self):
        payload = _legacy_payload()
        payload["anchorsByLabel"][0]["anchors"][0]["n"] = {"x": 0.0, "y": 2.0, "z": 0.0}
        snapshot = snapshot_from_dict(payload)
        assert snapshot.anchors[0].basis.normal == (0.0, 2.0, 0.0)

    def test_non_utf8_file(self, tmp_path: Path):
        path = tmp_path / "room_snapshot_bad.json"
        path.write_bytes(b'{"sceneId": "\xff\xfe"}')
        with pytest.raises(SnapshotFormatError, match="UTF-8"):
            load_snapshot_json(path)

    def test_open_vocab_must_be_a_list(self):
        payload = _legacy_payload()
        payload["anchorsByLabel"][0]["anchors"][0]["openVocab"] = 5
        with pytest.raises(SnapshotFormatError, match="openVocab"):
            snapshot_from_dict(payload)

    @pytest.mark.parametrize("count", ["1e400", "NaN", "2.5"])
    def test_scene_mesh_count_must_be_an_integer(self, count):
        text = json.dumps(_legacy_payload())[:-1]
        text += ', "sceneMesh": {"vertexCount": ' + count + ', "meshCount": 1, '
        text += '"aabb": {"min": [0, 0, 0], "max": [1, 1, 1]}, "path": "scene.obj"}}'
        with pytest.raises(SnapshotFormatError, match="vertexCount"):
            loads_snapshot(text)


class TestLabels:

    def test_mixed_case_labels_round_trip(self, tmp_path: Path):
        snapshot = build_snapshot([make_anchor("t1", "Table"), make_anchor("w1", "wall_face")])
        assert snapshot.label_stats == {"TABLE": 1, "WALL_FACE": 1}

        payload = snapshot_to_dict(snapshot)
        assert [a["id"] for a in payload["tables"]] == ["t1"]
        assert [a["id"] for a in payload["walls"]] == ["w1"]

        path = write_snapshot_json(tmp_path / "snap.json", snapshot)
        loaded = load_snapshot_json(path)
        assert [a.label for a in loaded.anchors] == ["TABLE", "WALL_FACE"]
        assert loaded.label_stats == snapshot.label_stats
