# bridge_server.py
import json
import logging
import os
import time
from typing import Any, Dict

from aiohttp import web, WSMsgType

from xair_bridge.config import MixerConfig, ServerConfig
from xair_bridge.engine import MixerBridge
from xair_bridge.ws.subscriptions import Subscriptions


# ================== CONFIG ==================
LOG_EVERY = 10.0

# meter streams go only to subscribed clients; request type -> (stream, mixer blob)
METER_STREAMS = {
    "subscribe_meters": ("vu_meters", "/meters/1"),
    "subscribe_dynamics": ("dynamics_meters", "/meters/6"),
}
STREAM_BLOBS = {stream: blob for stream, blob in METER_STREAMS.values()}

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-7s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("bridge_server")

msg_count = 0
last_log_time = time.time()


# ================== CORS ==================
@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        resp = web.Response(status=200)
    else:
        resp = await handler(request)

    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization"
    resp.headers["Access-Control-Max-Age"] = "86400"
    return resp


# ================== WS BROADCAST ==================
async def send_json(ws: web.WebSocketResponse, msg: Dict[str, Any]) -> bool:
    try:
        await ws.send_str(json.dumps(msg, ensure_ascii=False))
        return True
    except (ConnectionResetError, RuntimeError) as e:
        logger.debug("WS send failed: %r", e)
        return False


async def broadcast(app: web.Application, msg: Dict[str, Any]) -> None:
    subs: Subscriptions = app["subs"]
    t = msg.get("type")
    targets = subs.get(t) if t in STREAM_BLOBS else subs.clients

    raw = json.dumps(msg, ensure_ascii=False)
    dead = []
    for ws in list(targets):
        if ws.closed:
            dead.append(ws)
            continue
        try:
            await ws.send_str(raw)
        except (ConnectionResetError, RuntimeError):
            dead.append(ws)
    for ws in dead:
        drop_client(app, ws)


def bridge_event_cb(app: web.Application):
    async def _cb(msg: Dict[str, Any]) -> None:
        if msg.get("type"):
            await broadcast(app, msg)
    return _cb


def drop_client(app: web.Application, ws: web.WebSocketResponse) -> None:
    subs: Subscriptions = app["subs"]
    bridge: MixerBridge = app["bridge"]
    subs.remove_ws(ws)
    # stop renewing mixer meter subscriptions nobody listens to any more
    for stream, blob in STREAM_BLOBS.items():
        if not subs.get(stream):
            bridge.unsubscribe_meters(blob)


# ================== HTTP ==================
async def health(request: web.Request) -> web.Response:
    bridge: MixerBridge = request.app["bridge"]
    subs: Subscriptions = request.app["subs"]
    return web.json_response({
        "ok": True,
        "mixer": bridge.describe_mixer(),
        "connected": bridge.state.connection.connected,
        "clients": len(subs.clients),
    })


# ================== WS ==================
async def ws_handler(request: web.Request) -> web.WebSocketResponse:
    global msg_count, last_log_time
    app = request.app
    bridge: MixerBridge = app["bridge"]
    subs: Subscriptions = app["subs"]

    ws = web.WebSocketResponse(heartbeat=20)
    await ws.prepare(request)

    subs.connect(ws)
    logger.info("WS client connected (%d total)", len(subs.clients))

    await send_json(ws, {"type": "hello_ack", "payload": {"server": "xair-bridge"}})
    for event in bridge.snapshot():
        await send_json(ws, event)

    try:
        async for m in ws:
            if m.type != WSMsgType.TEXT:
                continue

            msg_count += 1
            now = time.time()
            if now - last_log_time > LOG_EVERY:
                logger.info("WS msg rate: ~%d msgs/%0.1fs", msg_count, now - last_log_time)
                msg_count = 0
                last_log_time = now

            try:
                data = json.loads(m.data)
            except json.JSONDecodeError:
                await send_json(ws, {"type": "error", "reqId": None,
                                     "payload": {"code": "BAD_JSON", "message": "invalid JSON"}})
                continue
            if not isinstance(data, dict):
                continue

            t = data.get("type")

            # subscriptions
            if t == "subscribe":
                for s in (data.get("payload") or {}).get("streams", []):
                    subs.add(s, ws)
                    if s in STREAM_BLOBS:
                        bridge.subscribe_meters(STREAM_BLOBS[s])
                await send_json(ws, {"type": "ack", "reqId": data.get("reqId")})
                continue

            if t == "unsubscribe":
                for s in (data.get("payload") or {}).get("streams", []):
                    subs.discard(s, ws)
                    if s in STREAM_BLOBS and not subs.get(s):
                        bridge.unsubscribe_meters(STREAM_BLOBS[s])
                await send_json(ws, {"type": "ack", "reqId": data.get("reqId")})
                continue

            if t in METER_STREAMS:
                subs.add(METER_STREAMS[t][0], ws)

            # bridge control
            resp = await bridge.handle_control(data)
            if resp:
                await send_json(ws, resp)

    finally:
        drop_client(app, ws)
        logger.info("WS client disconnected (%d left)", len(subs.clients))

    return ws


# ================== APP ==================
async def on_startup(app: web.Application):
    bridge: MixerBridge = app["bridge"]
    bridge.set_event_callback(bridge_event_cb(app))
    await bridge.start()


async def on_cleanup(app: web.Application):
    subs: Subscriptions = app["subs"]
    for ws in list(subs.clients):
        await ws.close()
    subs.clear()

    await app["bridge"].close()


def create_app(bridge: MixerBridge = None, server_cfg: ServerConfig = None) -> web.Application:
    server_cfg = server_cfg or ServerConfig.from_env()
    app = web.Application(middlewares=[cors_middleware])
    app["server_cfg"] = server_cfg
    app["bridge"] = bridge or MixerBridge(mixer=MixerConfig.from_env(), settings_path=server_cfg.settings_path)
    app["subs"] = Subscriptions()

    app.router.add_get("/health", health)
    app.router.add_get(server_cfg.ws_endpoint, ws_handler)

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main() -> None:
    server_cfg = ServerConfig.from_env()
    web.run_app(create_app(server_cfg=server_cfg), host=server_cfg.host, port=server_cfg.port)


if __name__ == "__main__":
    main()
