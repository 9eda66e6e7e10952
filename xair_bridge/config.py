# xair_bridge/config.py
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class MixerConfig:
    # OSC target (X-Air listens on 10024)
    ip: str = "192.168.1.10"
    port: int = 10024

    # local UDP port the mixer replies to
    local_host: str = "0.0.0.0"
    local_port: int = 10023

    @classmethod
    def from_env(cls) -> "MixerConfig":
        return cls(
            ip=os.environ.get("MIXER_IP", cls.ip),
            port=int(os.environ.get("MIXER_PORT", cls.port)),
            local_port=int(os.environ.get("LOCAL_OSC_PORT", cls.local_port)),
        )


@dataclass
class ServerConfig:
    # WS (broadcast hub / client control)
    host: str = "0.0.0.0"
    port: int = 8080
    ws_endpoint: str = "/ws"

    # settings file (fader mappings, speaker mute, radio software)
    settings_path: str = "./bridge-settings.json"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=os.environ.get("BRIDGE_HOST", cls.host),
            port=int(os.environ.get("BRIDGE_PORT", cls.port)),
            settings_path=os.environ.get("BRIDGE_SETTINGS", cls.settings_path),
        )


@dataclass
class TimingConfig:
    """
    All protocol timings, in seconds.

    Tests shrink these; production keeps the defaults the mixer is known to
    tolerate.
    """

    # connection validation
    validate_timeout: float = 3.0
    keepalive_interval: float = 9.0
    stale_after: float = 30.0

    # scene directory sync
    scene_batch_size: int = 8
    scene_batch_delay: float = 0.1
    scene_debounce: float = 1.5
    scene_hard_timeout: float = 8.0

    # channel property transfer
    read_timeout: float = 5.0
    write_delay: float = 0.01

    # radio relay HTTP
    relay_timeout: float = 5.0
