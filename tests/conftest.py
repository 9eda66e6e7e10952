"""
Shared fixtures for bridge tests.

FakeMixer stands in for OscTransport: it records every outgoing message and
answers queries the way an X-Air desk does, from an in-memory table.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio

from xair_bridge.config import MixerConfig, TimingConfig
from xair_bridge.engine import MixerBridge
from xair_bridge.settings import AppSettings

_SNAP_NAME = re.compile(r"^/-snap/(\d{2})/name$")


class FakeMixer:
    """In-memory mixer with the transport contract (open/close/send/is_open)."""

    def __init__(self, cfg: MixerConfig, on_message) -> None:
        self.cfg = cfg
        self.on_message = on_message
        self.is_open = False
        self.responsive = True

        self.sent: List[Tuple[str, List[Any]]] = []
        self.info = ["V0.04", "XR18-0A-1B-2C", "XR18", "1.17"]
        self.properties: Dict[str, Any] = {}
        self.scene_names: Dict[int, str] = {}  # wire slot (1-based) -> name
        self.scene_index = 1
        # addresses that never get an answer
        self.silent: set = set()

    async def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def reply(self, address: str, args: Sequence[Any]) -> None:
        self.on_message(address, list(args))

    def send(self, address: str, args: Sequence[Tuple[str, Any]] = ()) -> bool:
        if not self.is_open:
            return False
        values = [v for _tag, v in args]
        self.sent.append((address, values))
        if not self.responsive or address in self.silent:
            return True

        if address in ("/info", "/xinfo"):
            self.reply(address, self.info)
        elif address == "/-snap/index" and not values:
            self.reply(address, [self.scene_index])
        elif address == "/-snap/load":
            self.scene_index = int(values[0])
        elif _SNAP_NAME.match(address):
            slot = int(_SNAP_NAME.match(address).group(1))
            if values:
                self.scene_names[slot] = values[0]
            else:
                self.reply(address, [self.scene_names.get(slot, "")])
        elif address.startswith("/ch/"):
            if values:
                self.properties[address] = values[0]
            elif address in self.properties:
                self.reply(address, [self.properties[address]])
        return True

    # -------------------- helpers --------------------

    def sent_to(self, address: str) -> List[List[Any]]:
        return [args for addr, args in self.sent if addr == address]

    def writes(self, prefix: str = "") -> List[Tuple[str, List[Any]]]:
        return [(a, v) for a, v in self.sent if v and a.startswith(prefix)]

    def clear(self) -> None:
        self.sent.clear()


def fast_timing(**overrides: Any) -> TimingConfig:
    values = dict(
        validate_timeout=0.1,
        keepalive_interval=60.0,
        stale_after=30.0,
        scene_batch_size=8,
        scene_batch_delay=0.001,
        scene_debounce=0.05,
        scene_hard_timeout=0.5,
        read_timeout=0.2,
        write_delay=0.0,
        relay_timeout=1.0,
    )
    values.update(overrides)
    return TimingConfig(**values)


def of_type(events: List[Dict[str, Any]], event_type: str) -> List[Dict[str, Any]]:
    return [e for e in events if e.get("type") == event_type]


async def settle(bridge: MixerBridge, rounds: int = 5) -> None:
    """Let the receive loop drain whatever the fake mixer answered."""
    for _ in range(rounds):
        while not bridge._rx.empty():
            await asyncio.sleep(0)
        await asyncio.sleep(0)


@pytest.fixture
def timing() -> TimingConfig:
    return fast_timing()


@pytest.fixture
def events() -> List[Dict[str, Any]]:
    return []


@pytest_asyncio.fixture
async def make_bridge(timing, events):
    """Factory: build, start and later close a bridge on a FakeMixer."""
    created: List[MixerBridge] = []

    async def _make(settings: Optional[AppSettings] = None, start: bool = True) -> MixerBridge:
        bridge = MixerBridge(
            mixer=MixerConfig(ip="10.0.0.50"),
            timing=timing,
            settings=settings or AppSettings(),
            transport_factory=FakeMixer,
        )
        bridge.set_event_callback(events.append)
        created.append(bridge)
        if start:
            await bridge.start()
            await settle(bridge)
        return bridge

    yield _make

    for bridge in created:
        await bridge.close()


@pytest_asyncio.fixture
async def bridge(make_bridge) -> MixerBridge:
    return await make_bridge()
