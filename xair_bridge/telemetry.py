# xair_bridge/telemetry.py
from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Dict, Optional

from .state import EventCallback

logger = logging.getLogger(__name__)


async def _maybe_await(x: Any) -> None:
    """
    Lets the event callback be sync or async.
    """
    if x is None:
        return
    if inspect.isawaitable(x):
        await x


def make_event(
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
    req_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Envelope contract with the UI: {type, payload, ts, reqId?}
    """
    msg: Dict[str, Any] = {"type": event_type, "payload": payload or {}, "ts": time.time()}
    if req_id is not None:
        msg["reqId"] = req_id
    return msg


async def emit(event_cb: Optional[EventCallback], msg: Dict[str, Any]) -> None:
    """
    Publish an event to the broadcast hub.

    A failing emitter must never stop mixer message handling, so errors are
    logged here and not re-raised.
    """
    if event_cb is None:
        return
    try:
        maybe = event_cb(msg)
        await _maybe_await(maybe)
    except Exception:
        logger.exception("Event callback failed for %s", msg.get("type"))


async def emit_mixer_status(event_cb: Optional[EventCallback], connected: bool, message: str) -> None:
    """
    Contract with the UI:
      type: "mixer_status"
      payload: { connected: bool, message: string }
    """
    await emit(event_cb, make_event("mixer_status", {"connected": connected, "message": message}))
