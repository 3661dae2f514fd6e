"""Waiting for the tracking subsystem to report a room."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from room_snapshot.room import LiveAnchorSource

logger = logging.getLogger(__name__)


class RoomReadiness(Enum):
    WAITING_FOR_ROOM = "waiting_for_room"
    READY = "ready"
    TIMED_OUT = "timed_out"


def wait_until(
    predicate: Callable[[], bool],
    timeout_s: Optional[float] = None,
    poll_interval_s: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll `predicate` until it returns True.

    Args:
        predicate: Condition to wait for.
        timeout_s: Give up after this many seconds; None waits forever.
        poll_interval_s: Delay between polls.
        clock: Monotonic time source (injectable for tests).
        sleep: Sleep function (injectable for tests).

    Returns:
        True if the predicate became true, False on timeout.
    """
    if poll_interval_s <= 0:
        raise ValueError(f"poll_interval_s must be > 0, got {poll_interval_s}")
    deadline = None if timeout_s is None else clock() + max(0.0, timeout_s)
    while True:
        if predicate():
            return True
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                return False
            sleep(min(poll_interval_s, remaining))
        else:
            sleep(poll_interval_s)


def wait_for_room(
    source: LiveAnchorSource,
    timeout_s: Optional[float] = None,
    poll_interval_s: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> RoomReadiness:
    if source.has_room():
        return RoomReadiness.READY
    logger.info(
        "Waiting for room (timeout=%s)",
        "none" if timeout_s is None else f"{timeout_s:.1f}s",
    )
    ready = wait_until(
        source.has_room,
        timeout_s=timeout_s,
        poll_interval_s=poll_interval_s,
        clock=clock,
        sleep=sleep,
    )
    if ready:
        logger.info("Room ready")
        return RoomReadiness.READY
    logger.warning("Room not reported within %.1fs", timeout_s)
    return RoomReadiness.TIMED_OUT
