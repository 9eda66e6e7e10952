# xair_bridge/channels.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import TimingConfig
from .osc import protocol as proto
from .osc.protocol import TypedArg
from .state import NUM_CHANNELS
from .timers import PendingRequests

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[TypedArg]], bool]

# property path -> raw value as returned by the mixer
ChannelPropertySet = Dict[str, Any]


def _eq_band(n: int) -> List[str]:
    return [f"eq/{n}/type", f"eq/{n}/f", f"eq/{n}/g", f"eq/{n}/q"]


CHANNEL_PROPERTIES: Tuple[str, ...] = tuple(
    [
        "config/name", "config/color", "config/insrc", "config/rtnsrc",
        "preamp/trim", "preamp/invert", "preamp/hpon", "preamp/hpslope", "preamp/hpf",
        "gate/on", "gate/mode", "gate/thr", "gate/range", "gate/attack", "gate/hold",
        "gate/release", "gate/keysrc", "gate/filter/on", "gate/filter/type", "gate/filter/f",
        "dyn/on", "dyn/mode", "dyn/det", "dyn/env", "dyn/thr", "dyn/ratio", "dyn/knee",
        "dyn/mgain", "dyn/attack", "dyn/hold", "dyn/release", "dyn/mix", "dyn/keysrc",
        "dyn/auto", "dyn/filter/on", "dyn/filter/type", "dyn/filter/f",
        "insert/on", "insert/fxslot",
        "eq/on",
    ]
    + _eq_band(1) + _eq_band(2) + _eq_band(3) + _eq_band(4)
    + [
        "mix/on", "mix/fader", "mix/lr", "mix/pan",
        "grp/dca", "grp/mute",
        "automix/group", "automix/weight",
    ]
)

BUS_SEND_PROPERTIES: Tuple[str, ...] = tuple(
    f"mix/{bus:02d}/{p}"
    for bus in range(1, 7)
    for p in ("on", "level", "pan", "tap", "grpon")
)

CATALOGUE: Tuple[str, ...] = CHANNEL_PROPERTIES + BUS_SEND_PROPERTIES


class TransferAborted(RuntimeError):
    """The mixer link was reset while a transfer was running."""


def check_channel(channel: Any) -> int:
    try:
        ch = int(channel)
    except (TypeError, ValueError):
        raise ValueError(f"invalid channel {channel!r}") from None
    if not 1 <= ch <= NUM_CHANNELS:
        raise ValueError(f"channel must be 1..{NUM_CHANNELS}, got {channel!r}")
    return ch


class ChannelTransfer:
    """
    Bulk read/write of a channel's catalogued properties; copy and swap are
    built from those two primitives.
    """

    def __init__(self, send: SendFn, timing: Optional[TimingConfig] = None) -> None:
        self.timing = timing or TimingConfig()
        self._send = send
        self._reads: List[PendingRequests[Tuple[int, str]]] = []
        # bumped on reset(); a transfer started under an older value is stale
        self._generation = 0

    # -------------------- replies --------------------

    def on_channel_reply(self, channel: int, prop: str, args: Sequence[Any]) -> bool:
        """Feed a /ch/NN/<prop> reply; True if a pending read wanted it."""
        if not args or not self._reads:
            return False
        key = (channel, prop)
        matched = False
        for pending in self._reads:
            if pending.resolve(key, args[0]):
                matched = True
        return matched

    def reset(self) -> None:
        """Abort every read and write in flight against the current mixer."""
        self._generation += 1
        for pending in self._reads:
            pending.release()

    def _check_generation(self, generation: int, channel: int) -> None:
        if generation != self._generation:
            raise TransferAborted(f"mixer connection reset during channel {channel} transfer")

    # -------------------- primitives --------------------

    async def read_all(self, channel: int) -> ChannelPropertySet:
        ch = check_channel(channel)
        generation = self._generation
        pending: PendingRequests[Tuple[int, str]] = PendingRequests((ch, p) for p in CATALOGUE)
        self._reads.append(pending)
        try:
            for prop in CATALOGUE:
                self._send(proto.channel_address(ch, prop), [])
            got = await pending.wait(self.timing.read_timeout)
        finally:
            self._reads.remove(pending)
        self._check_generation(generation, ch)

        if not pending.complete:
            logger.warning("Channel %d read incomplete: %d/%d properties",
                           ch, len(got), len(CATALOGUE))
        props = {prop: value for (_c, prop), value in got.items()}
        # catalogue order, so writes replay in a stable sequence
        return {p: props[p] for p in CATALOGUE if p in props}

    async def write_all(self, channel: int, props: ChannelPropertySet) -> int:
        return await self._write(check_channel(channel), props, self._generation)

    async def _write(self, ch: int, props: ChannelPropertySet, generation: int) -> int:
        written = 0
        for prop in CATALOGUE:
            if prop not in props:
                continue
            if written:
                await asyncio.sleep(self.timing.write_delay)
            self._check_generation(generation, ch)
            self._send(proto.channel_address(ch, prop), [proto.infer_arg(props[prop])])
            written += 1
        logger.info("Wrote %d properties to channel %d", written, ch)
        return written

    # -------------------- operations --------------------

    async def copy(self, source: int, target: int) -> int:
        src, dst = check_channel(source), check_channel(target)
        if src == dst:
            raise ValueError("source and target channel are the same")
        generation = self._generation
        props = await self.read_all(src)
        return await self._write(dst, props, generation)

    async def swap(self, a: int, b: int) -> Tuple[int, int]:
        ch_a, ch_b = check_channel(a), check_channel(b)
        if ch_a == ch_b:
            raise ValueError("cannot swap a channel with itself")
        generation = self._generation
        # both reads must finish before anything is written
        props_a, props_b = await asyncio.gather(self.read_all(ch_a), self.read_all(ch_b))
        written_a, written_b = await asyncio.gather(
            self._write(ch_a, props_b, generation),
            self._write(ch_b, props_a, generation),
        )
        return written_a, written_b
