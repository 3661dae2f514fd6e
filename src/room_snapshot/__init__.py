"""Public API for room anchor snapshot capture and registration."""

from room_snapshot.contracts import (
    AnchorRecord,
    ExportConfig,
    ReplayConfig,
    SceneSnapshot,
    SnapshotConfig,
)
from room_snapshot.pipeline import export_room_snapshot, replay_room_snapshot
from room_snapshot.registration import AlignmentState, RegistrationEngine
from room_snapshot.room import LiveAnchorSource, RoomAnchor, StaticRoom

__all__ = [
    "AlignmentState",
    "AnchorRecord",
    "ExportConfig",
    "LiveAnchorSource",
    "RegistrationEngine",
    "ReplayConfig",
    "RoomAnchor",
    "SceneSnapshot",
    "SnapshotConfig",
    "StaticRoom",
    "export_room_snapshot",
    "replay_room_snapshot",
]
