#!/usr/bin/env python3
"""Rebuild a saved room snapshot and align it to a live room description."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from room_snapshot.contracts import (
    DEFAULT_ALIGN_LABEL_PRIORITY,
    ReplayConfig,
    RoomSnapshotError,
    SnapshotFormatError,
)
from room_snapshot.pipeline import replay_room_snapshot
from room_snapshot.registration import AlignmentState
from room_snapshot.room import StaticRoom


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconstruct a room snapshot and register it to a live room"
    )
    parser.add_argument("--snapshot", required=True, help="Snapshot JSON to replay")
    parser.add_argument(
        "--live-room", default=None, help="Room description JSON of the live room"
    )
    parser.add_argument(
        "--priority",
        nargs="+",
        default=list(DEFAULT_ALIGN_LABEL_PRIORITY),
        help="Anchor labels tried first when matching ids",
    )
    parser.add_argument(
        "--include-global-mesh",
        action="store_true",
        help="Keep GLOBAL_MESH anchors in the reconstructed scene",
    )
    parser.add_argument(
        "--id-report", default=None, help="Write recorded/live ids here on failure"
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

    live = None
    if args.live_room:
        try:
            live = StaticRoom.from_json(args.live_room)
        except (OSError, RoomSnapshotError) as e:
            print(f"Cannot read live room: {e}", file=sys.stderr)
            return 1

    config = ReplayConfig(
        label_priority=tuple(args.priority),
        exclude_global_mesh=not args.include_global_mesh,
        id_report_path=args.id_report,
    )
    try:
        result = replay_room_snapshot(args.snapshot, live_source=live, config=config)
    except (FileNotFoundError, SnapshotFormatError) as e:
        print(f"Cannot read snapshot: {e}", file=sys.stderr)
        return 1
    except RoomSnapshotError as e:
        print(f"Replay failed: {e}", file=sys.stderr)
        return 1

    scene = result.scene
    print(f"Scene: {scene.scene_id} ({len(scene.anchors)} anchors)")
    for label, group in scene.groups.items():
        print(f"  {label}: {len(group)}")
    print(f"Alignment: {result.state.value.upper()}")

    if result.state is AlignmentState.ALIGNED:
        transform = result.alignment.transform
        anchor = result.alignment.snapshot_anchor
        print(f"Anchor: {anchor.label} {anchor.name}")
        print("Translation: " + " ".join(f"{c:.4f}" for c in transform.translation))
        print("Rotation: " + " ".join(f"{c:.4f}" for c in transform.rotation))
        return 0
    if result.state is AlignmentState.FAILED:
        if result.id_report_path is not None:
            print(f"Id report: {result.id_report_path}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
