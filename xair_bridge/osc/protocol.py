# xair_bridge/osc/protocol.py
"""
X-Air address patterns and typed arguments.

Addresses must match the mixer bit-for-bit. Scene numbers are 1-based on the
wire; everything above this module uses 0-based scene ids.
"""
from __future__ import annotations

import re
from typing import Any, List, Optional, Sequence, Tuple

# (type_tag, value), type_tag in "i" | "f" | "s" | "b"
TypedArg = Tuple[str, Any]

METERS_SUBSCRIBE = "/meters"
METERS_LEVELS = "/meters/1"
METERS_DYNAMICS = "/meters/6"

INFO = "/info"
XINFO = "/xinfo"
XREMOTE = "/xremote"

SNAP_LOAD = "/-snap/load"
SNAP_SAVE = "/-snap/save"
SNAP_INDEX = "/-snap/index"

_CH_RE = re.compile(r"^/ch/(\d{2})/(.+)$")
_SNAP_NAME_RE = re.compile(r"^/-snap/(\d{2})/name$")


def int_arg(v: Any) -> TypedArg:
    return ("i", int(v))


def float_arg(v: Any) -> TypedArg:
    return ("f", float(v))


def str_arg(v: Any) -> TypedArg:
    return ("s", str(v))


def infer_arg(value: Any) -> TypedArg:
    """Type a raw value read back from the mixer so it can be written again."""
    if isinstance(value, bool):
        return ("i", int(value))
    if isinstance(value, int):
        return ("i", value)
    if isinstance(value, float):
        return ("f", value)
    if isinstance(value, (bytes, bytearray)):
        return ("b", bytes(value))
    return ("s", str(value))


def coerce_args(raw: Sequence[Any]) -> List[TypedArg]:
    """
    Client-supplied args: either {"type": "i", "value": 1} objects (the
    dashboard's format) or bare values.
    """
    out: List[TypedArg] = []
    for a in raw:
        if isinstance(a, dict) and "value" in a:
            t = str(a.get("type", "")) or infer_arg(a["value"])[0]
            if t == "i":
                out.append(int_arg(a["value"]))
            elif t == "f":
                out.append(float_arg(a["value"]))
            elif t == "s":
                out.append(str_arg(a["value"]))
            else:
                raise ValueError(f"unsupported OSC arg type: {t!r}")
        else:
            out.append(infer_arg(a))
    return out


# -------------------- channels --------------------

def channel_address(channel: int, prop: str) -> str:
    return f"/ch/{channel:02d}/{prop}"


def parse_channel_address(address: str) -> Optional[Tuple[int, str]]:
    m = _CH_RE.match(address)
    if m is None:
        return None
    return int(m.group(1)), m.group(2)


def bus_mute_address(bus: int) -> str:
    return f"/bus/{bus}/mix/on"


def mute_group_address(group: int) -> str:
    return f"/config/mute/{group}"


# -------------------- scenes --------------------

def scene_name_address(scene_id: int) -> str:
    """scene_id is 0-based; the wire slot is 1-based."""
    return f"/-snap/{scene_id + 1:02d}/name"


def parse_scene_name_address(address: str) -> Optional[int]:
    """Returns the 0-based scene id for a /-snap/NN/name address."""
    m = _SNAP_NAME_RE.match(address)
    if m is None:
        return None
    return int(m.group(1)) - 1
