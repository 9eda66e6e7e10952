# xair_bridge/state.py
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


# Telemetry callback: the bridge calls it for every event going out to the
# broadcast hub (WS). May be sync or async.
EventCallback = Callable[[Dict[str, Any]], Any]

METER_FLOOR_DB = -90.0
NUM_METER_CHANNELS = 40
NUM_BUSES = 6
NUM_DYNAMICS_CHANNELS = 16
NUM_SCENES = 64
NUM_CHANNELS = 16


def _floor_list(n: int) -> List[float]:
    return [METER_FLOOR_DB] * n


@dataclass
class MeterFrame:
    channels: List[float] = field(default_factory=lambda: _floor_list(NUM_METER_CHANNELS))
    buses: List[float] = field(default_factory=lambda: _floor_list(NUM_BUSES))
    timestamp: float = 0.0

    @property
    def main_lr(self) -> tuple:
        return self.channels[36], self.channels[37]

    def to_payload(self) -> Dict[str, Any]:
        left, right = self.main_lr
        return {
            "channels": list(self.channels),
            "buses": list(self.buses),
            "main": {"left": left, "right": right},
            "timestamp": self.timestamp,
        }


@dataclass
class DynamicsFrame:
    gate: List[float] = field(default_factory=lambda: [0.0] * NUM_DYNAMICS_CHANNELS)
    comp: List[float] = field(default_factory=lambda: [0.0] * NUM_DYNAMICS_CHANNELS)
    buses: List[float] = field(default_factory=lambda: [0.0] * NUM_BUSES)
    main: float = 0.0
    timestamp: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "channels": [{"gate": g, "comp": c} for g, c in zip(self.gate, self.comp)],
            "buses": list(self.buses),
            "main": self.main,
            "timestamp": self.timestamp,
        }


@dataclass
class SceneSlot:
    id: int
    name: str = ""
    updated_at: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "updatedAt": self.updated_at}


@dataclass
class SceneDirectory:
    slots: List[SceneSlot] = field(default_factory=list)
    current_scene_id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.slots:
            self.clear()

    def clear(self) -> None:
        self.slots = [SceneSlot(id=i) for i in range(NUM_SCENES)]

    def set_name(self, scene_id: int, name: str) -> None:
        slot = self.slots[scene_id]
        slot.name = name
        slot.updated_at = time.time()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "scenes": [s.to_payload() for s in self.slots],
            "currentSceneId": self.current_scene_id,
        }


@dataclass
class FaderState:
    channel: int
    value: float = 0.0  # 0..100
    muted: bool = False  # last known
    is_active: bool = False
    last_triggered_at: Optional[float] = None
    command_executed: bool = False


class ConnectionPhase(enum.Enum):
    UNVALIDATED = "unvalidated"
    VALIDATING = "validating"
    CONNECTED = "connected"


@dataclass
class ConnectionState:
    phase: ConnectionPhase = ConnectionPhase.UNVALIDATED
    last_response_at: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED

    @property
    def validating(self) -> bool:
        return self.phase is ConnectionPhase.VALIDATING


@dataclass
class BridgeState:
    """
    Everything the bridge knows about the mixer.

    One instance per MixerBridge; components receive it (or a piece of it)
    explicitly instead of reaching for module globals.
    """

    meters: MeterFrame = field(default_factory=MeterFrame)
    dynamics: DynamicsFrame = field(default_factory=DynamicsFrame)
    scenes: SceneDirectory = field(default_factory=SceneDirectory)
    connection: ConnectionState = field(default_factory=ConnectionState)
    faders: Dict[int, FaderState] = field(default_factory=dict)
    channel_names: Dict[int, str] = field(default_factory=dict)
    speaker_muted: bool = False
    firmware: Optional[str] = None

    def fader(self, channel: int) -> FaderState:
        st = self.faders.get(channel)
        if st is None:
            st = FaderState(channel=channel)
            self.faders[channel] = st
        return st

    def peek_fader(self, channel: int) -> Optional[FaderState]:
        return self.faders.get(channel)
