#!/usr/bin/env python3
"""Capture a room description into a snapshot JSON (+ optional scene OBJ)."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from room_snapshot.contracts import ExportConfig, RoomSnapshotError, SnapshotConfig
from room_snapshot.pipeline import export_room_snapshot
from room_snapshot.room import StaticRoom
from room_snapshot.scene_mesh import load_scene_meshes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export a room's anchors as a snapshot JSON"
    )
    parser.add_argument(
        "--room", required=True, help="Room description JSON ({anchors: [...]})"
    )
    parser.add_argument(
        "--export-dir", default="RegionDumps", help="Output folder for snapshot files"
    )
    parser.add_argument(
        "--scene-mesh",
        action="append",
        default=[],
        help="World-space room mesh to combine into the scene OBJ (repeatable)",
    )
    parser.add_argument(
        "--no-scene-mesh", action="store_true", help="Do not write the scene OBJ"
    )
    parser.add_argument(
        "--fallback-half-extent",
        type=float,
        default=0.2,
        help="Half-extent in metres of the square used for anchors without bounds",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        room = StaticRoom.from_json(args.room)
    except (OSError, RoomSnapshotError) as e:
        print(f"Cannot read room description: {e}", file=sys.stderr)
        return 1

    try:
        meshes = [] if args.no_scene_mesh else load_scene_meshes(args.scene_mesh)
    except (OSError, ValueError) as e:
        print(f"Cannot read scene mesh: {e}", file=sys.stderr)
        return 1

    config = ExportConfig(
        export_dir=args.export_dir,
        export_scene_mesh=not args.no_scene_mesh,
        snapshot=SnapshotConfig(
            fallback_half_extent=max(1e-3, float(args.fallback_half_extent))
        ),
    )

    try:
        result = export_room_snapshot(room, config=config, scene_meshes=meshes)
    except RoomSnapshotError as e:
        print(f"Export failed: {e}", file=sys.stderr)
        return 1

    print(f"Snapshot: {result.snapshot_path}")
    if result.scene_mesh_path is not None:
        print(f"Scene mesh: {result.scene_mesh_path}")
    stats = ", ".join(
        f"{label}={count}" for label, count in result.snapshot.label_stats.items()
    )
    print(f"Anchors: {len(result.snapshot.anchors)} ({stats or 'none'})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
