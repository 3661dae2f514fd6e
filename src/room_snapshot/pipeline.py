"""
Export and replay orchestration.

Export: wait for the room -> build snapshot -> optional scene mesh OBJ ->
optional persistence pass -> snapshot JSON in the export folder.

Replay: load snapshot -> reconstruct -> wait (bounded) for the live room ->
align by anchor id -> apply the transform to the scene root.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import trimesh

from room_snapshot.contracts import (
    ExportConfig,
    ReplayConfig,
    RoomSnapshotError,
    SceneSnapshot,
)
from room_snapshot.persistence import (
    AnchorPersistenceService,
    PersistenceSummary,
    persist_anchors,
)
from room_snapshot.readiness import RoomReadiness, wait_for_room
from room_snapshot.reconstruct import ReconstructedScene, reconstruct_scene
from room_snapshot.registration import (
    AlignmentResult,
    AlignmentState,
    RegistrationEngine,
    apply_alignment,
    format_id_report,
)
from room_snapshot.room import LiveAnchorSource
from room_snapshot.scene_mesh import export_scene_mesh
from room_snapshot.serialization import (
    load_snapshot_json,
    snapshot_file_name,
    write_snapshot_json,
)
from room_snapshot.snapshot import build_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    snapshot: SceneSnapshot
    snapshot_path: Path
    scene_mesh_path: Optional[Path] = None
    persistence: Optional[PersistenceSummary] = None


@dataclass
class ReplayResult:
    snapshot: SceneSnapshot
    scene: ReconstructedScene
    readiness: Optional[RoomReadiness] = None
    alignment: Optional[AlignmentResult] = None
    id_report_path: Optional[Path] = None

    @property
    def state(self) -> AlignmentState:
        if self.alignment is None:
            return AlignmentState.IDLE
        return self.alignment.state


def export_room_snapshot(
    source: LiveAnchorSource,
    config: Optional[ExportConfig] = None,
    scene_meshes: Sequence[trimesh.Trimesh] = (),
    persistence_service: Optional[AnchorPersistenceService] = None,
) -> ExportResult:
    """Capture the live room into the export folder.

    Raises:
        RoomSnapshotError: If the room is not reported within
            `config.room_wait_timeout_s`.
        DuplicateAnchorIdError: If the room reports an id twice.
    """
    if config is None:
        config = ExportConfig()

    readiness = wait_for_room(
        source,
        timeout_s=config.room_wait_timeout_s,
        poll_interval_s=config.poll_interval_s,
    )
    if readiness is not RoomReadiness.READY:
        raise RoomSnapshotError("No room reported; nothing to export")

    export_dir = Path(config.export_dir)
    scene_id = uuid.uuid4().hex

    planned_mesh_path = None
    if config.export_scene_mesh and scene_meshes:
        planned_mesh_path = export_dir / f"{config.scene_mesh_file_prefix}{scene_id}.obj"

    # A rejected room leaves the export folder untouched.
    snapshot = build_snapshot(
        source.list_anchors(),
        config=config.snapshot,
        scene_meshes=scene_meshes,
        scene_mesh_path=planned_mesh_path.name if planned_mesh_path is not None else "",
        scene_id=scene_id,
    )

    export_dir.mkdir(parents=True, exist_ok=True)
    mesh_path = None
    if planned_mesh_path is not None:
        mesh_path = export_scene_mesh(scene_meshes, planned_mesh_path)

    summary = None
    if config.persist_anchors:
        if persistence_service is None:
            logger.warning("Anchor persistence requested but no service configured")
        else:
            summary = persist_anchors(snapshot, persistence_service, config.persistence)
            if summary.snapshot is not None:
                snapshot = summary.snapshot

    snapshot_path = write_snapshot_json(
        export_dir / snapshot_file_name(scene_id, prefix=config.snapshot_file_prefix),
        snapshot,
    )
    return ExportResult(
        snapshot=snapshot,
        snapshot_path=snapshot_path,
        scene_mesh_path=mesh_path,
        persistence=summary,
    )


def replay_room_snapshot(
    snapshot_path: str | Path,
    live_source: Optional[LiveAnchorSource] = None,
    config: Optional[ReplayConfig] = None,
) -> ReplayResult:
    """Rebuild a saved snapshot and, given a live room, align it.

    Raises:
        FileNotFoundError: If the snapshot file does not exist.
        SnapshotFormatError: If the snapshot cannot be parsed.
    """
    if config is None:
        config = ReplayConfig()

    snapshot = load_snapshot_json(snapshot_path)
    scene = reconstruct_scene(snapshot, exclude_global_mesh=config.exclude_global_mesh)
    result = ReplayResult(snapshot=snapshot, scene=scene)

    if live_source is None or not config.auto_align:
        logger.info("No live room to align against; scene left at identity")
        return result

    result.readiness = wait_for_room(
        live_source,
        timeout_s=config.room_wait_timeout_s,
        poll_interval_s=config.poll_interval_s,
    )
    if result.readiness is not RoomReadiness.READY:
        logger.warning("Live room not ready; skipping alignment")
        return result

    engine = RegistrationEngine(config.label_priority)
    result.alignment = engine.align(snapshot, live_source)
    apply_alignment(scene, result.alignment)

    if result.alignment.state is AlignmentState.FAILED and config.id_report_path:
        report_path = Path(config.id_report_path)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(format_id_report(snapshot, live_source), encoding="utf-8")
        logger.info("Wrote anchor id report: %s", report_path)
        result.id_report_path = report_path
    return result
