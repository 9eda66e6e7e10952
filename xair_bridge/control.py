# xair_bridge/control.py
from __future__ import annotations

from typing import Any, Dict, Optional

from .osc.protocol import coerce_args
from .scenes import check_scene_id
from .settings import RadioSoftwareConfig
from .telemetry import make_event


def _ack(req_id: Optional[str], payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": "ack", "reqId": req_id, "payload": payload or {"ok": True}}


def _err(req_id: Optional[str], code: str, message: str) -> Dict[str, Any]:
    return {"type": "error", "reqId": req_id, "payload": {"code": code, "message": message}}


async def handle_control(bridge: Any, msg: Dict[str, Any]) -> Dict[str, Any] | None:
    """
    Client -> bridge control router.

    In:  { "type": "...", "payload": {...}, "reqId": "..." }
    Out: response envelope (ack / error / scene_list / all-channel-names ...)

    Nothing here waits on the mixer: long operations (scene sync, channel
    copy/swap, radio commands) are started and report back through the
    event callback.
    """
    t = msg.get("type")
    req = msg.get("reqId")
    payload = msg.get("payload", {}) or {}

    # -------------------- connection --------------------
    if t == "validate_mixer":
        await bridge.connection.validate()
        return _ack(req, {"ok": True, "mixer": bridge.describe_mixer()})

    if t == "update_mixer_ip":
        ip = payload.get("mixerIP") or payload.get("ip")
        if not ip:
            return _err(req, "BAD_REQUEST", "mixerIP is required")
        try:
            port = int(payload["mixerPort"]) if payload.get("mixerPort") is not None else None
        except (TypeError, ValueError):
            return _err(req, "BAD_REQUEST", f"invalid mixerPort {payload.get('mixerPort')!r}")
        await bridge.set_mixer_address(str(ip), port)
        return _ack(req, {"ok": True, "mixer": bridge.describe_mixer()})

    # -------------------- meters --------------------
    if t == "subscribe_meters":
        bridge.subscribe_meters("/meters/1")
        return _ack(req)

    if t == "subscribe_dynamics":
        bridge.subscribe_meters("/meters/6")
        return _ack(req)

    # -------------------- scenes --------------------
    if t == "get_scene_list":
        if bridge.scenes.refresh():
            return _ack(req, {"ok": True, "refreshing": True})
        # a cycle is already running; its scene_list will reach this client too
        return _ack(req, {"ok": True, "refreshing": False})

    if t == "load_scene":
        try:
            await bridge.scenes.load(check_scene_id(payload.get("sceneId")))
            return _ack(req)
        except ValueError as e:
            return _err(req, "SCENE_LOAD_FAILED", str(e))

    if t == "save_scene":
        try:
            name = payload.get("name")
            await bridge.scenes.save(check_scene_id(payload.get("sceneId")), None if name is None else str(name))
            return _ack(req)
        except ValueError as e:
            return _err(req, "SCENE_SAVE_FAILED", str(e))

    # -------------------- channels --------------------
    if t == "copy_channel":
        try:
            bridge.start_channel_operation("copy", payload.get("source"), payload.get("target"), req)
            return _ack(req, {"ok": True, "started": True})
        except ValueError as e:
            return _err(req, "CHANNEL_COPY_FAILED", str(e))

    if t == "swap_channels":
        try:
            bridge.start_channel_operation("swap", payload.get("channelA"), payload.get("channelB"), req)
            return _ack(req, {"ok": True, "started": True})
        except ValueError as e:
            return _err(req, "CHANNEL_SWAP_FAILED", str(e))

    if t in ("set_channel_name", "set-channel-name"):
        try:
            channel = int(payload.get("channel"))
            name = str(payload.get("name", ""))
            bridge.names.set_name(channel, name)
        except (TypeError, ValueError) as e:
            return _err(req, "BAD_REQUEST", str(e))
        await bridge.emit(make_event("channel-name", {"channel": channel, "name": name}))
        return _ack(req)

    if t in ("get_channel_names", "get-channel-names"):
        bridge.names.request_all()
        return {"type": "all-channel-names", "payload": bridge.names.to_payload(), "reqId": req}

    # -------------------- settings --------------------
    if t == "reload_settings":
        settings = await bridge.reload_settings()
        return _ack(req, {
            "ok": True,
            "faderMappings": len(settings.active_mappings),
            "speakerMute": bridge.speaker_mute.describe(),
        })

    if t == "radio_config":
        try:
            cfg = RadioSoftwareConfig.from_dict(payload)
        except (TypeError, ValueError) as e:
            return _err(req, "BAD_REQUEST", str(e))
        bridge.set_radio_config(cfg)
        return _ack(req)

    # -------------------- passthrough --------------------
    if t == "osc":
        address = payload.get("address")
        if not isinstance(address, str) or not address.startswith("/"):
            return _err(req, "BAD_REQUEST", f"invalid OSC address {address!r}")
        try:
            args = coerce_args(payload.get("args") or [])
        except ValueError as e:
            return _err(req, "BAD_REQUEST", str(e))
        if not bridge.send(address, args):
            return _err(req, "OSC_SEND_FAILED", "mixer transport is not open")
        return _ack(req)

    if t == "radio_command":
        command = str(payload.get("command", "")).strip()
        if not command:
            return _err(req, "BAD_REQUEST", "command is required")
        bridge.radio_command(command, req)
        return _ack(req, {"ok": True, "command": command})

    # subscribe/unsubscribe are handled by the ws server; ack here too
    if t in ("subscribe", "unsubscribe"):
        return _ack(req)

    # -------------------- unknown --------------------
    return _err(req, "UNKNOWN_MSG", str(t))
