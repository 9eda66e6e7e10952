# xair_bridge/scenes.py
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from .config import TimingConfig
from .osc import protocol as proto
from .osc.protocol import TypedArg
from .state import NUM_SCENES, SceneDirectory
from .telemetry import make_event
from .timers import PendingRequests, Timer

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[TypedArg]], bool]
EmitFn = Callable[[Dict[str, Any]], Awaitable[None]]


class SyncPhase(enum.Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"


def check_scene_id(scene_id: Any) -> int:
    try:
        sid = int(scene_id)
    except (TypeError, ValueError):
        raise ValueError(f"invalid scene id {scene_id!r}") from None
    if not 0 <= sid < NUM_SCENES:
        raise ValueError(f"scene id must be 0..{NUM_SCENES - 1}, got {scene_id!r}")
    return sid


class SceneSynchronizer:
    """
    Keeps the 64-slot scene directory in sync with the mixer.

    A refresh asks for every slot name in small batches (the mixer drops
    requests if all 64 arrive at once). The cycle ends when replies stop for
    `scene_debounce` seconds, or at `scene_hard_timeout` at the latest, and
    broadcasts whatever has been collected.
    """

    def __init__(
        self,
        directory: SceneDirectory,
        send: SendFn,
        emit: EmitFn,
        timing: Optional[TimingConfig] = None,
    ) -> None:
        self.directory = directory
        self.timing = timing or TimingConfig()
        self._send = send
        self._emit = emit

        self.phase = SyncPhase.IDLE
        self._pending: Optional[PendingRequests[int]] = None
        self._batches: Optional[asyncio.Task] = None
        self._debounce = Timer(self.timing.scene_debounce, self._finalize, name="scene_debounce")
        self._hard = Timer(self.timing.scene_hard_timeout, self._on_hard_timeout, name="scene_hard_timeout")

    @property
    def in_progress(self) -> bool:
        return self.phase is SyncPhase.IN_PROGRESS

    # -------------------- refresh cycle --------------------

    def refresh(self) -> bool:
        """Start a sync cycle. Returns False (and does nothing) if one is running."""
        if self.in_progress:
            logger.info("Scene refresh already in progress, ignoring request")
            return False

        self.directory.clear()
        self.phase = SyncPhase.IN_PROGRESS
        self._pending = PendingRequests(range(NUM_SCENES))
        self._hard.start()
        self._batches = asyncio.create_task(self._request_batches(), name="xair.scene_batches")
        logger.info("Scene refresh started")
        return True

    async def _request_batches(self) -> None:
        size = max(1, int(self.timing.scene_batch_size))
        for start in range(0, NUM_SCENES, size):
            if start:
                await asyncio.sleep(self.timing.scene_batch_delay)
            for sid in range(start, min(start + size, NUM_SCENES)):
                self._send(proto.scene_name_address(sid), [])
        self._send(proto.SNAP_INDEX, [])

    async def _on_hard_timeout(self) -> None:
        if self._pending is not None and not self._pending.complete:
            logger.warning("Scene refresh timed out, %d slot(s) did not answer",
                           len(self._pending.missing))
        await self._finalize()

    async def _finalize(self) -> None:
        if not self.in_progress:
            return
        self._debounce.cancel()
        self._hard.cancel()
        if self._pending is not None:
            self._pending.release()
        self._pending = None
        self.phase = SyncPhase.IDLE

        named = sum(1 for s in self.directory.slots if s.name)
        logger.info("Scene refresh complete: %d named scene(s)", named)
        await self._emit(make_event("scene_list", self.directory.to_payload()))

    def reset(self) -> None:
        self._debounce.cancel()
        self._hard.cancel()
        task = self._batches
        self._batches = None
        if task is not None and not task.done():
            task.cancel()
        if self._pending is not None:
            self._pending.release()
        self._pending = None
        self.phase = SyncPhase.IDLE

    # -------------------- mixer replies --------------------

    def on_scene_name(self, scene_id: int, name: str) -> None:
        if not 0 <= scene_id < NUM_SCENES:
            return
        self.directory.set_name(scene_id, name)
        if not self.in_progress:
            return
        if self._pending is not None:
            self._pending.resolve(scene_id, name)
        self._debounce.start()

    async def on_scene_index(self, wire_index: int) -> None:
        sid = int(wire_index) - 1
        if not 0 <= sid < NUM_SCENES:
            logger.debug("Ignoring scene index %r", wire_index)
            return
        self.directory.current_scene_id = sid
        await self._emit(make_event("current_scene", {"sceneId": sid}))

    # -------------------- commands --------------------

    async def load(self, scene_id: int) -> None:
        sid = check_scene_id(scene_id)
        self._send(proto.SNAP_LOAD, [proto.int_arg(sid + 1)])
        # the mixer never acknowledges a load
        self.directory.current_scene_id = sid
        logger.info("Loading scene %d", sid)
        await self._emit(make_event("scene_loaded", {"sceneId": sid}))

    async def save(self, scene_id: int, name: Optional[str] = None) -> None:
        sid = check_scene_id(scene_id)
        self._send(proto.SNAP_SAVE, [proto.int_arg(sid + 1)])
        if name:
            self._send(proto.scene_name_address(sid), [proto.str_arg(name)])
        logger.info("Saved scene %d%s", sid, f" as {name!r}" if name else "")
        self.refresh()
        await self._emit(make_event("scene_saved", {"sceneId": sid, "name": name}))
