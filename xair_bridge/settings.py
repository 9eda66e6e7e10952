# xair_bridge/settings.py
"""
Bridge settings (bridge-settings.json).

The file is written by the UI / setup tooling; the bridge only reads it.
Keys are camelCase on disk to stay compatible with the dashboard.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class FaderMapping:
    channel: int
    threshold: float
    command: str = ""
    id: str = ""
    is_stereo: bool = False
    fade_down_threshold: Optional[float] = None
    fade_down_command: Optional[str] = None
    listen_to_mute: bool = False
    enabled: bool = True
    description: str = ""

    def covers(self, channel: int) -> bool:
        """Stereo mappings own the linked channel (channel + 1) too."""
        if self.is_stereo:
            return channel in (self.channel, self.channel + 1)
        return channel == self.channel

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FaderMapping":
        fdt = d.get("fadeDownThreshold")
        return cls(
            id=str(d.get("id", "")),
            channel=int(d["channel"]),
            is_stereo=bool(d.get("isStereo", False)),
            threshold=float(d.get("threshold", 0)),
            command=str(d.get("command", "") or ""),
            fade_down_threshold=float(fdt) if fdt is not None else None,
            fade_down_command=d.get("fadeDownCommand") or None,
            listen_to_mute=bool(d.get("listenToMute", False)),
            enabled=bool(d.get("enabled", True)),
            description=str(d.get("description", "")),
        )


@dataclass
class SpeakerMuteConfig:
    enabled: bool = False
    trigger_channels: List[int] = field(default_factory=list)

    # name-following: trigger channels are looked up by their current name
    follow_channel_names: bool = False
    trigger_channel_names: List[str] = field(default_factory=list)

    mute_type: str = "bus"  # "bus" | "muteGroup"
    bus_number: int = 1
    mute_group_number: int = 1
    threshold: float = 10.0
    description: str = "Mute main speakers when mics are open"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SpeakerMuteConfig":
        mute_type = str(d.get("muteType", "bus"))
        if mute_type not in ("bus", "muteGroup"):
            logger.warning("Unknown speaker mute type %r, using 'bus'", mute_type)
            mute_type = "bus"
        return cls(
            enabled=bool(d.get("enabled", False)),
            trigger_channels=[int(c) for c in d.get("triggerChannels", []) or []],
            follow_channel_names=bool(d.get("followChannelNames", False)),
            trigger_channel_names=[str(n) for n in d.get("triggerChannelNames", []) or []],
            mute_type=mute_type,
            bus_number=int(d.get("busNumber", 1) or 1),
            mute_group_number=int(d.get("muteGroupNumber", 1) or 1),
            threshold=float(d.get("threshold", 10)),
            description=str(d.get("description", cls.description)),
        )


@dataclass
class RadioSoftwareConfig:
    type: str = "mairlist"  # "mairlist" | "radiodj"
    host: str = "localhost"
    port: int = 9300
    username: str = ""
    password: str = ""
    enabled: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RadioSoftwareConfig":
        return cls(
            type=str(d.get("type", "mairlist")),
            host=str(d.get("host", "localhost")),
            port=int(d.get("port", 9300)),
            username=str(d.get("username", "") or ""),
            password=str(d.get("password", "") or ""),
            enabled=bool(d.get("enabled", False)),
        )


@dataclass
class AppSettings:
    radio_software: RadioSoftwareConfig = field(default_factory=RadioSoftwareConfig)
    fader_mappings: List[FaderMapping] = field(default_factory=list)
    speaker_mute: SpeakerMuteConfig = field(default_factory=SpeakerMuteConfig)

    # 0 disables duplicate-trigger suppression
    fader_retrigger_guard_ms: int = 0

    @property
    def active_mappings(self) -> List[FaderMapping]:
        return [m for m in self.fader_mappings if m.enabled]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AppSettings":
        mappings: List[FaderMapping] = []
        for raw in d.get("faderMappings", []) or []:
            try:
                mappings.append(FaderMapping.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid fader mapping %r: %s", raw, e)

        return cls(
            radio_software=RadioSoftwareConfig.from_dict(d.get("radioSoftware", {}) or {}),
            fader_mappings=mappings,
            speaker_mute=SpeakerMuteConfig.from_dict(d.get("speakerMute", {}) or {}),
            fader_retrigger_guard_ms=int(d.get("faderRetriggerGuardMs", 0) or 0),
        )


def load_settings(path: str) -> AppSettings:
    """
    Load settings from disk, merged over defaults.

    A missing file is normal on first start; a broken one is logged and
    replaced by defaults so the bridge still comes up.
    """
    if not os.path.exists(path):
        logger.info("Settings file %s not found, using defaults", path)
        return AppSettings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Error loading settings from %s: %s", path, e)
        return AppSettings()

    if not isinstance(data, dict):
        logger.error("Settings file %s does not contain an object", path)
        return AppSettings()

    return AppSettings.from_dict(data)
