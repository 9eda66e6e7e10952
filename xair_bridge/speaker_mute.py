# xair_bridge/speaker_mute.py
from __future__ import annotations

import logging
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from .names import resolve_channel
from .osc import protocol as proto
from .osc.protocol import TypedArg
from .settings import SpeakerMuteConfig
from .state import BridgeState

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[TypedArg]], bool]


def effective_trigger_channels(cfg: SpeakerMuteConfig, names: Mapping[int, str]) -> List[int]:
    if not (cfg.follow_channel_names and cfg.trigger_channel_names):
        return list(cfg.trigger_channels)

    channels: List[int] = []
    for name in cfg.trigger_channel_names:
        ch = resolve_channel(name, names)
        if ch is None:
            logger.warning("Speaker mute: no channel named %r, skipping", name)
            continue
        if ch not in channels:
            channels.append(ch)
    return channels


def _target(cfg: Optional[SpeakerMuteConfig]) -> Optional[Tuple[str, int]]:
    if cfg is None:
        return None
    if cfg.mute_type == "bus":
        return ("bus", cfg.bus_number or 1)
    return ("muteGroup", cfg.mute_group_number or 1)


class SpeakerMuteAutomation:
    """
    Mutes the studio speakers while any trigger mic is open.

    Level-triggered with no hysteresis: a fader sitting on the threshold can
    toggle the speakers on every update. Kept that way for compatibility.
    """

    def __init__(self, state: BridgeState, send: SendFn, config: Optional[SpeakerMuteConfig] = None) -> None:
        self.state = state
        self._send = send
        self.config: Optional[SpeakerMuteConfig] = None
        self.configure(config)

    def configure(self, config: Optional[SpeakerMuteConfig]) -> Optional[bool]:
        """
        Swap in a new config. If the speakers are muted and the new config no
        longer controls the same bus or group, the old target is unmuted first
        and False is returned; otherwise None.
        """
        new = config if config is not None and config.enabled else None
        released = None
        if self.state.speaker_muted and self.config is not None and _target(new) != _target(self.config):
            self._send_command(False)
            self.state.speaker_muted = False
            released = False

        self.config = new
        if self.config is not None:
            logger.info("Speaker mute enabled (%s)", self.describe())
        return released

    def describe(self) -> str:
        cfg = self.config
        if cfg is None:
            return "disabled"
        target = f"bus {cfg.bus_number}" if cfg.mute_type == "bus" else f"mute group {cfg.mute_group_number}"
        if cfg.follow_channel_names and cfg.trigger_channel_names:
            return f"{target}, following {', '.join(cfg.trigger_channel_names)}"
        return f"{target}, channels {', '.join(str(c) for c in cfg.trigger_channels)}"

    def should_mute(self) -> bool:
        cfg = self.config
        if cfg is None:
            return False
        for ch in effective_trigger_channels(cfg, self.state.channel_names):
            st = self.state.peek_fader(ch)
            # a muted mic cannot hold the speakers down
            if st is not None and st.value >= cfg.threshold and not st.muted:
                return True
        return False

    def evaluate(self) -> Optional[bool]:
        """Returns the new mute state if it changed (command sent), else None."""
        if self.config is None:
            return None
        mute = self.should_mute()
        if mute == self.state.speaker_muted:
            return None
        self.state.speaker_muted = mute
        self._send_command(mute)
        return mute

    def _send_command(self, mute: bool) -> None:
        cfg = self.config
        if cfg.mute_type == "bus":
            # /bus/N/mix/on: 0 = muted
            self._send(proto.bus_mute_address(cfg.bus_number or 1), [proto.int_arg(0 if mute else 1)])
        else:
            # /config/mute/N: 1 = group active
            self._send(proto.mute_group_address(cfg.mute_group_number or 1), [proto.int_arg(1 if mute else 0)])
        logger.info("%s speakers (%s)", "Muting" if mute else "Unmuting", self.describe())
