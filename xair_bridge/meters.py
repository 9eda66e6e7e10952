# xair_bridge/meters.py
"""
/meters blob decoding.

Blob layout: int32 big-endian count N, then N int16 little-endian values in
1/256 dB steps. The mixer mixes endianness here; this is not a typo.
"""
from __future__ import annotations

import logging
import struct
import time
from typing import Optional

import numpy as np

from .state import (
    METER_FLOOR_DB,
    NUM_BUSES,
    NUM_DYNAMICS_CHANNELS,
    NUM_METER_CHANNELS,
    DynamicsFrame,
    MeterFrame,
)

logger = logging.getLogger(__name__)

_HEADER = struct.Struct(">i")
_VALUE_DTYPE = np.dtype("<i2")

# /meters/1 positions
LEVEL_MONO = slice(0, 16)
LEVEL_BUSES = slice(26, 32)
LEVEL_MAIN = slice(36, 38)

# /meters/6 positions
DYN_GATE = slice(0, 16)
DYN_COMP = slice(16, 32)
DYN_BUSES = slice(32, 38)
DYN_MAIN = 38
DYN_MIN_VALUES = 32


def decode_blob(payload: bytes) -> Optional[np.ndarray]:
    """
    Returns the decoded values, or None when there is not even a header.
    A truncated payload yields its longest complete prefix.
    """
    if payload is None or len(payload) < _HEADER.size:
        return None
    (count,) = _HEADER.unpack_from(payload, 0)
    available = (len(payload) - _HEADER.size) // _VALUE_DTYPE.itemsize
    n = max(0, min(int(count), available))
    if n == 0:
        return np.empty(0, dtype=np.float64)
    raw = np.frombuffer(payload, dtype=_VALUE_DTYPE, count=n, offset=_HEADER.size)
    return raw.astype(np.float64) / 256.0


def _take(values: np.ndarray, sl: slice, fill: float) -> np.ndarray:
    out = np.full(sl.stop - sl.start, fill, dtype=np.float64)
    part = values[sl]
    out[: len(part)] = part
    return out


def level_frame(payload: bytes, ts: Optional[float] = None) -> Optional[MeterFrame]:
    values = decode_blob(payload)
    if values is None:
        logger.debug("Level meter blob too short (%d bytes)", len(payload or b""))
        return None

    channels = np.full(NUM_METER_CHANNELS, METER_FLOOR_DB, dtype=np.float64)
    channels[LEVEL_MONO] = _take(values, LEVEL_MONO, METER_FLOOR_DB)
    channels[LEVEL_MAIN] = _take(values, LEVEL_MAIN, METER_FLOOR_DB)
    buses = _take(values, LEVEL_BUSES, METER_FLOOR_DB)

    np.maximum(channels, METER_FLOOR_DB, out=channels)
    np.maximum(buses, METER_FLOOR_DB, out=buses)

    return MeterFrame(
        channels=channels.tolist(),
        buses=buses.tolist(),
        timestamp=time.time() if ts is None else ts,
    )


def dynamics_frame(payload: bytes, ts: Optional[float] = None) -> Optional[DynamicsFrame]:
    values = decode_blob(payload)
    if values is None or len(values) < DYN_MIN_VALUES:
        logger.debug("Dynamics blob incomplete, keeping previous frame")
        return None

    main = float(values[DYN_MAIN]) if len(values) > DYN_MAIN else 0.0
    return DynamicsFrame(
        gate=values[DYN_GATE].tolist()[:NUM_DYNAMICS_CHANNELS],
        comp=values[DYN_COMP].tolist()[:NUM_DYNAMICS_CHANNELS],
        buses=_take(values, DYN_BUSES, 0.0).tolist()[:NUM_BUSES],
        main=main,
        timestamp=time.time() if ts is None else ts,
    )
