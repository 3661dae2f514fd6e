"""
Registration of a recorded snapshot against the live room.

Alignment uses a single anchor correspondence matched by stable id: the
first candidate whose id is present in the live room defines the rigid
transform from snapshot space to live space. Both frames are re-derived with
`frames.build_basis`, so a device that reports the same anchor with a
slightly different raw rotation still yields a consistent plane frame.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from room_snapshot.contracts import (
    DEFAULT_ALIGN_LABEL_PRIORITY,
    AnchorRecord,
    SceneSnapshot,
    is_global_mesh,
    normalize_label,
    short_id,
)
from room_snapshot.frames import RigidTransform, basis_pose, rigid_alignment
from room_snapshot.reconstruct import ReconstructedScene
from room_snapshot.room import LiveAnchorSource, RoomAnchor, index_by_id

logger = logging.getLogger(__name__)


class AlignmentState(Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    ALIGNED = "aligned"
    FAILED = "failed"


@dataclass(frozen=True)
class AlignmentResult:
    state: AlignmentState
    transform: Optional[RigidTransform] = None
    snapshot_anchor: Optional[AnchorRecord] = None
    live_anchor: Optional[RoomAnchor] = None
    candidates_tried: int = 0

    @property
    def aligned(self) -> bool:
        return self.state is AlignmentState.ALIGNED


def candidate_anchors(
    snapshot: SceneSnapshot,
    label_priority: Sequence[str] = DEFAULT_ALIGN_LABEL_PRIORITY,
) -> List[AnchorRecord]:
    """Snapshot anchors to try, best first.

    Anchors whose label is in `label_priority` come first, in priority order
    and then snapshot order; every other anchor with an id follows in
    snapshot order. Anchors without an id and global meshes are skipped.
    """
    usable = [
        a for a in snapshot.anchors if a.normalized_id and not is_global_mesh(a.label)
    ]
    ordered: List[AnchorRecord] = []
    taken = set()
    for label in label_priority:
        key = normalize_label(label)
        for anchor in usable:
            if normalize_label(anchor.label) == key and id(anchor) not in taken:
                ordered.append(anchor)
                taken.add(id(anchor))
    ordered.extend(a for a in usable if id(a) not in taken)
    return ordered


class RegistrationEngine:
    """Finds the snapshot -> live transform from one id correspondence."""

    def __init__(self, label_priority: Sequence[str] = DEFAULT_ALIGN_LABEL_PRIORITY):
        self.label_priority = tuple(label_priority)
        self.state = AlignmentState.IDLE
        self.last_result: Optional[AlignmentResult] = None

    def align(
        self, snapshot: SceneSnapshot, live_source: LiveAnchorSource
    ) -> AlignmentResult:
        """Match snapshot anchors to live anchors by id and derive the transform.

        Raises:
            DuplicateAnchorIdError: If the live room reports an id twice.
        """
        self.state = AlignmentState.SEARCHING
        live_by_id = index_by_id(live_source.list_anchors())
        candidates = candidate_anchors(snapshot, self.label_priority)
        logger.debug(
            "Aligning %s: %d candidates, %d live ids",
            snapshot.scene_id, len(candidates), len(live_by_id),
        )

        tried = 0
        for candidate in candidates:
            tried += 1
            live = live_by_id.get(candidate.normalized_id)
            if live is None:
                continue
            transform = rigid_alignment(
                basis_pose(candidate.label, candidate.pose),
                basis_pose(live.label, live.pose),
            )
            self.state = AlignmentState.ALIGNED
            logger.info(
                "Aligned via %s %s (%s) after %d candidates; translation=%s",
                candidate.label, short_id(candidate.anchor_id), candidate.name,
                tried, _fmt(transform.translation),
            )
            result = AlignmentResult(
                state=self.state,
                transform=transform,
                snapshot_anchor=candidate,
                live_anchor=live,
                candidates_tried=tried,
            )
            self.last_result = result
            return result

        self.state = AlignmentState.FAILED
        logger.warning(
            "No live anchor matched any of %d snapshot candidates for %s",
            len(candidates), snapshot.scene_id,
        )
        result = AlignmentResult(state=self.state, candidates_tried=tried)
        self.last_result = result
        return result


def apply_alignment(scene: ReconstructedScene, result: AlignmentResult) -> bool:
    """Set the scene root from an alignment. FAILED leaves the root untouched."""
    if not result.aligned or result.transform is None:
        return False
    scene.reset_root()
    scene.root_transform = result.transform
    return True


def format_id_report(snapshot: SceneSnapshot, live_source: LiveAnchorSource) -> str:
    """Recorded vs live anchor ids, for diagnosing a failed alignment."""
    live = list(live_source.list_anchors())
    live_ids = {a.normalized_id for a in live if a.normalized_id}
    lines = [f"Snapshot {snapshot.scene_id} ({len(snapshot.anchors)} anchors)"]
    for anchor in snapshot.anchors:
        mark = "match" if anchor.normalized_id in live_ids else "-"
        lines.append(
            f"  {anchor.label:<16} {anchor.normalized_id or '<no id>':<34} {mark}"
        )
    lines.append(f"Live room ({len(live)} anchors)")
    for anchor in live:
        lines.append(f"  {anchor.label:<16} {anchor.normalized_id or '<no id>'}")
    return "\n".join(lines) + "\n"


def _fmt(vec) -> str:
    return "(" + ", ".join(f"{float(c):.3f}" for c in vec) + ")"
