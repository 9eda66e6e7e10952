# xair_bridge/connection.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Sequence

from .config import TimingConfig
from .osc import protocol as proto
from .osc.protocol import TypedArg
from .state import ConnectionPhase, ConnectionState
from .timers import Timer

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[TypedArg]], bool]
StatusFn = Callable[[bool, str], Awaitable[None]]
TickFn = Callable[[], Awaitable[None]]


class ConnectionValidator:
    """
    Mixer liveness: Unvalidated -> Validating -> Connected.

    Any inbound message counts as proof of life. The validation timeout is a
    single Timer, so a new validate() supersedes a pending one.
    """

    def __init__(
        self,
        state: ConnectionState,
        send: SendFn,
        on_status: StatusFn,
        timing: Optional[TimingConfig] = None,
        describe: Callable[[], str] = lambda: "mixer",
        on_keepalive: Optional[TickFn] = None,
    ) -> None:
        self.state = state
        self.timing = timing or TimingConfig()
        self._send = send
        self._on_status = on_status
        self._describe = describe
        self._on_keepalive = on_keepalive

        self._timeout = Timer(self.timing.validate_timeout, self._on_timeout, name="validate_timeout")
        self._keepalive_task: Optional[asyncio.Task] = None

    # -------------------- lifecycle --------------------

    async def start(self) -> None:
        if self._keepalive_task is None or self._keepalive_task.done():
            self._keepalive_task = asyncio.create_task(self._keepalive_loop(), name="xair.keepalive")
        await self.validate()

    def reset(self) -> None:
        """Drop timers and go back to Unvalidated (mixer address changed / shutdown)."""
        self._timeout.cancel()
        task = self._keepalive_task
        self._keepalive_task = None
        if task is not None and not task.done():
            task.cancel()
        self.state.phase = ConnectionPhase.UNVALIDATED
        self.state.last_response_at = None

    # -------------------- transitions --------------------

    async def validate(self) -> None:
        prev = self.state.phase
        self.state.phase = ConnectionPhase.VALIDATING
        self._send(proto.INFO, [])
        self._timeout.start()
        if prev is not ConnectionPhase.VALIDATING:
            await self._on_status(False, f"Validating connection to {self._describe()}")

    async def on_message(self) -> None:
        self.state.last_response_at = time.time()
        if self.state.phase is ConnectionPhase.CONNECTED:
            return
        self._timeout.cancel()
        self.state.phase = ConnectionPhase.CONNECTED
        logger.info("Mixer %s responded", self._describe())
        # /xremote subscribes us to parameter changes made on the desk
        self._send(proto.XREMOTE, [])
        await self._on_status(True, f"Mixer responding at {self._describe()}")

    async def _on_timeout(self) -> None:
        if self.state.phase is not ConnectionPhase.VALIDATING:
            return
        self.state.phase = ConnectionPhase.UNVALIDATED
        logger.warning("No response from mixer at %s", self._describe())
        await self._on_status(False, f"No response from mixer at {self._describe()}")

    # -------------------- keepalive --------------------

    def is_stale(self, now: Optional[float] = None) -> bool:
        last = self.state.last_response_at
        if last is None:
            return True
        now = time.time() if now is None else now
        return now - last > self.timing.stale_after

    async def tick(self) -> None:
        if self.state.phase is ConnectionPhase.CONNECTED:
            self._send(proto.XREMOTE, [])
            if self._on_keepalive is not None:
                await self._on_keepalive()

        if self.state.phase is not ConnectionPhase.VALIDATING and self.is_stale():
            logger.info("No mixer traffic for %.0fs, revalidating", self.timing.stale_after)
            await self.validate()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.timing.keepalive_interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Keepalive tick failed")
