# xair_bridge/names.py
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .osc import protocol as proto
from .osc.protocol import TypedArg
from .state import NUM_CHANNELS

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[TypedArg]], bool]

NAME_PROPERTY = "config/name"


def _norm(name: str) -> str:
    return " ".join(str(name).split()).casefold()


def resolve_channel(name: str, names: Mapping[int, str]) -> Optional[int]:
    """
    Current channel carrying `name` (case/whitespace-insensitive), lowest
    channel wins on duplicates. Pure: callers re-run it on every evaluation
    because names change on the desk at any time.
    """
    wanted = _norm(name)
    if not wanted:
        return None
    for ch in sorted(names):
        if _norm(names[ch]) == wanted:
            return ch
    return None


class ChannelNames:
    """Channel names as last reported by the mixer."""

    def __init__(self, names: Dict[int, str], send: SendFn) -> None:
        self.names = names
        self._send = send

    def on_name(self, channel: int, name: str) -> bool:
        """Returns True if the name changed."""
        if self.names.get(channel) == name:
            return False
        self.names[channel] = name
        return True

    def set_name(self, channel: int, name: str) -> None:
        if not 1 <= int(channel) <= NUM_CHANNELS:
            raise ValueError(f"channel must be 1..{NUM_CHANNELS}, got {channel!r}")
        self._send(proto.channel_address(int(channel), NAME_PROPERTY), [proto.str_arg(name)])
        self.names[int(channel)] = name
        logger.info("Set channel %d name: %r", channel, name)

    def request_all(self) -> None:
        for ch in range(1, NUM_CHANNELS + 1):
            self._send(proto.channel_address(ch, NAME_PROPERTY), [])

    def resolve(self, name: str) -> Optional[int]:
        return resolve_channel(name, self.names)

    def to_payload(self) -> Dict[str, List[Dict[str, object]]]:
        return {"channels": [{"channel": ch, "name": self.names[ch]} for ch in sorted(self.names)]}
