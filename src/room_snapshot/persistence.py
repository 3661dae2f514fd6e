"""
Optional per-anchor persistence pass run after export.

Each anchor is handed to an injected `AnchorPersistenceService` one at a
time, with its own timeout. A failed, timed-out or raising save is logged and
counted; it never aborts the batch. Returned spatial ids are back-filled into
a new snapshot.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from room_snapshot.contracts import (
    MAJOR_LABELS,
    AnchorRecord,
    PersistenceConfig,
    PersistenceError,
    PersistenceTimeoutError,
    SceneSnapshot,
    normalize_label,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveResult:
    success: bool
    spatial_id: str = ""


class AnchorPersistenceService(ABC):
    """Remote service that saves an anchor's pose beyond the session."""

    @abstractmethod
    async def save_anchor(self, anchor: AnchorRecord) -> SaveResult:
        ...


@dataclass
class PersistenceSummary:
    success_count: int = 0
    total: int = 0
    spatial_ids: Dict[str, str] = field(default_factory=dict)  # anchor name -> spatial id
    errors: List[str] = field(default_factory=list)
    snapshot: Optional[SceneSnapshot] = None

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count


def anchors_to_persist(
    snapshot: SceneSnapshot, config: PersistenceConfig
) -> List[AnchorRecord]:
    if not config.major_labels_only:
        return list(snapshot.anchors)
    return [a for a in snapshot.anchors if normalize_label(a.label) in MAJOR_LABELS]


async def save_with_timeout(
    service: AnchorPersistenceService, anchor: AnchorRecord, timeout_s: float
) -> SaveResult:
    """Save one anchor.

    Raises:
        PersistenceTimeoutError: If the service does not answer in time.
        PersistenceError: If the service raises.
    """
    try:
        return await asyncio.wait_for(service.save_anchor(anchor), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise PersistenceTimeoutError(
            f"Saving {anchor.name!r} timed out after {timeout_s:.1f}s"
        ) from e
    except PersistenceError:
        raise
    except Exception as e:
        raise PersistenceError(f"Saving {anchor.name!r} failed: {e}") from e


async def persist_anchors_async(
    snapshot: SceneSnapshot,
    service: AnchorPersistenceService,
    config: Optional[PersistenceConfig] = None,
) -> PersistenceSummary:
    if config is None:
        config = PersistenceConfig()
    timeout_s = max(config.min_timeout_s, config.per_anchor_timeout_s)
    targets = anchors_to_persist(snapshot, config)
    summary = PersistenceSummary(total=len(targets))
    by_index: Dict[int, str] = {}

    for anchor in targets:
        try:
            result = await save_with_timeout(service, anchor, timeout_s)
        except PersistenceError as e:
            logger.warning("%s", e)
            summary.errors.append(str(e))
            continue
        if not result.success:
            msg = f"Service rejected {anchor.name!r}"
            logger.warning("%s", msg)
            summary.errors.append(msg)
            continue
        summary.success_count += 1
        if result.spatial_id:
            summary.spatial_ids[anchor.name] = result.spatial_id
            by_index[_index_of(snapshot, anchor)] = result.spatial_id

    summary.snapshot = _backfill(snapshot, by_index)
    logger.info(
        "Persisted %d/%d anchors (timeout %.1fs each)",
        summary.success_count, summary.total, timeout_s,
    )
    return summary


def persist_anchors(
    snapshot: SceneSnapshot,
    service: AnchorPersistenceService,
    config: Optional[PersistenceConfig] = None,
) -> PersistenceSummary:
    """Blocking wrapper around `persist_anchors_async`."""
    return asyncio.run(persist_anchors_async(snapshot, service, config))


def _index_of(snapshot: SceneSnapshot, anchor: AnchorRecord) -> int:
    for idx, candidate in enumerate(snapshot.anchors):
        if candidate is anchor:
            return idx
    raise ValueError(f"Anchor {anchor.name!r} is not part of snapshot {snapshot.scene_id}")


def _backfill(snapshot: SceneSnapshot, by_index: Dict[int, str]) -> SceneSnapshot:
    if not by_index:
        return snapshot
    anchors = tuple(
        dataclasses.replace(a, spatial_id=by_index[idx]) if idx in by_index else a
        for idx, a in enumerate(snapshot.anchors)
    )
    return dataclasses.replace(snapshot, anchors=anchors)
