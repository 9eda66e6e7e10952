# xair_bridge/engine.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .channels import ChannelTransfer, TransferAborted, check_channel
from .config import MixerConfig, TimingConfig
from .connection import ConnectionValidator
from .control import handle_control as handle_control_router
from .faders import FaderTriggerEngine, FaderUpdate
from .meters import dynamics_frame, level_frame
from .names import ChannelNames
from .osc import protocol as proto
from .osc.protocol import TypedArg
from .osc.transport import MessageHandler, OscTransport
from .radio import RadioRelay
from .scenes import SceneSynchronizer
from .settings import AppSettings, load_settings
from .speaker_mute import SpeakerMuteAutomation
from .state import BridgeState, EventCallback
from .telemetry import emit as telemetry_emit, emit_mixer_status, make_event

logger = logging.getLogger(__name__)

TransportFactory = Callable[[MixerConfig, MessageHandler], Any]

METER_BLOBS = (proto.METERS_LEVELS, proto.METERS_DYNAMICS)


def _osc_transport(cfg: MixerConfig, on_message: MessageHandler) -> OscTransport:
    return OscTransport(cfg.ip, cfg.port, on_message, local_host=cfg.local_host, local_port=cfg.local_port)


class MixerBridge:
    """
    Bridge engine:
    - owns the mixer link, all derived state and the protocol components
    - inbound OSC is queued and handled strictly one message at a time
    - events go out through set_event_callback(cb) (envelope in telemetry.py)
    - client requests come in through handle_control(msg) (router in control.py)
    """

    def __init__(
        self,
        mixer: MixerConfig | None = None,
        timing: TimingConfig | None = None,
        settings: AppSettings | None = None,
        settings_path: Optional[str] = None,
        transport_factory: TransportFactory | None = None,
        relay: RadioRelay | None = None,
    ) -> None:
        self.mixer_cfg = mixer or MixerConfig()
        self.timing = timing or TimingConfig()
        self.settings_path = settings_path
        if settings is None:
            settings = load_settings(settings_path) if settings_path else AppSettings()
        self.settings = settings

        self.state = BridgeState()

        self._transport_factory = transport_factory or _osc_transport
        self.transport = self._transport_factory(self.mixer_cfg, self._on_osc_message)

        self._rx: asyncio.Queue[Tuple[str, List[Any]]] = asyncio.Queue(maxsize=1024)
        self._rx_task: Optional[asyncio.Task] = None
        self._event_cb: Optional[EventCallback] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closing = False

        # /meters/1, /meters/6 blobs currently wanted by at least one client
        self.meter_subscriptions: Set[str] = set()

        self.connection = ConnectionValidator(
            self.state.connection,
            self.send,
            self._on_connection_status,
            self.timing,
            describe=self.describe_mixer,
            on_keepalive=self._renew_meter_subscriptions,
        )
        self.scenes = SceneSynchronizer(self.state.scenes, self.send, self.emit, self.timing)
        self.transfer = ChannelTransfer(self.send, self.timing)
        self.names = ChannelNames(self.state.channel_names, self.send)
        self.relay = relay or RadioRelay(timeout=self.timing.relay_timeout)
        self.faders = FaderTriggerEngine(self.state, self._dispatch_command)
        self.speaker_mute = SpeakerMuteAutomation(self.state, self.send)

        self._apply_settings(self.settings)

    # -------------------- lifecycle --------------------

    def set_event_callback(self, cb: EventCallback | None) -> None:
        self._event_cb = cb

    def describe_mixer(self) -> str:
        return f"{self.mixer_cfg.ip}:{self.mixer_cfg.port}"

    async def start(self) -> None:
        self._closing = False
        await self._open_transport()
        if self._rx_task is None or self._rx_task.done():
            self._rx_task = asyncio.create_task(self._rx_loop(), name="xair.rx_loop")
        await self.connection.start()
        self.names.request_all()

    async def close(self) -> None:
        self._closing = True
        self._reset_protocol_state()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._rx_task is not None:
            self._rx_task.cancel()
            try:
                await self._rx_task
            except asyncio.CancelledError:
                pass
            self._rx_task = None

        await self.relay.close()
        self.transport.close()
        # the old socket is only released on the next loop iteration
        await asyncio.sleep(0)

    async def _open_transport(self) -> None:
        try:
            await self.transport.open()
        except OSError as e:
            # keep running: sends become logged no-ops until the address is fixed
            logger.error("Cannot open OSC transport for %s: %r", self.describe_mixer(), e)

    def _reset_protocol_state(self) -> None:
        self.connection.reset()
        self.scenes.reset()
        self.transfer.reset()

    async def set_mixer_address(self, ip: str, port: Optional[int] = None) -> None:
        """Tear the mixer link down and rebuild it for a new address."""
        logger.info("Switching mixer to %s:%s", ip, port or self.mixer_cfg.port)
        self._reset_protocol_state()
        self.transport.close()
        self._drain_queue()
        # let asyncio release the old socket before the same local port is bound again
        await asyncio.sleep(0)

        self.mixer_cfg.ip = str(ip)
        if port is not None:
            self.mixer_cfg.port = int(port)
        self.transport = self._transport_factory(self.mixer_cfg, self._on_osc_message)
        await self._open_transport()
        await self.connection.start()
        self.names.request_all()

    # -------------------- settings --------------------

    def _apply_settings(self, settings: AppSettings) -> Optional[bool]:
        """Returns False if the speakers had to be released by the new config."""
        self.faders.configure(settings.fader_mappings, settings.fader_retrigger_guard_ms / 1000.0)
        released = self.speaker_mute.configure(settings.speaker_mute)
        self.relay.configure(settings.radio_software)
        return released

    async def reload_settings(self) -> AppSettings:
        if self.settings_path:
            self.settings = load_settings(self.settings_path)
        released = self._apply_settings(self.settings)
        if released is not None:
            await self._publish_speaker_mute(released)
        # current faders against the new trigger set
        changed = self.speaker_mute.evaluate()
        if changed is not None:
            await self._publish_speaker_mute(changed)
        logger.info("Settings reloaded")
        return self.settings

    def set_radio_config(self, config: Any) -> None:
        self.settings.radio_software = config
        self.relay.configure(config)

    # -------------------- telemetry helpers --------------------

    async def emit(self, msg: Dict[str, Any]) -> None:
        await telemetry_emit(self._event_cb, msg)

    async def _on_connection_status(self, connected: bool, message: str) -> None:
        await emit_mixer_status(self._event_cb, connected, message)

    def snapshot(self) -> List[Dict[str, Any]]:
        """Current state as events, for a client that just connected."""
        events = [
            make_event("mixer_status", {
                "connected": self.state.connection.connected,
                "message": f"Mixer {'responding' if self.state.connection.connected else 'not validated'}"
                           f" at {self.describe_mixer()}",
            }),
            make_event("speaker_mute_status", {"muted": self.state.speaker_muted}),
            make_event("all-channel-names", self.names.to_payload()),
        ]
        if self.state.scenes.current_scene_id is not None:
            events.append(make_event("current_scene", {"sceneId": self.state.scenes.current_scene_id}))
        return events

    # -------------------- control entrypoint --------------------

    async def handle_control(self, msg: Dict[str, Any]) -> Dict[str, Any] | None:
        return await handle_control_router(self, msg)

    # -------------------- outbound --------------------

    def send(self, address: str, args: Sequence[TypedArg] = ()) -> bool:
        return self.transport.send(address, list(args))

    def _spawn(self, coro: Any, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -------------------- queue helpers --------------------

    def _on_osc_message(self, address: str, args: List[Any]) -> None:
        try:
            self._rx.put_nowait((address, args))
        except asyncio.QueueFull:
            logger.warning("Inbound OSC queue full, dropping %s", address)

    def _drain_queue(self) -> None:
        try:
            while True:
                self._rx.get_nowait()
        except asyncio.QueueEmpty:
            pass

    async def _rx_loop(self) -> None:
        while not self._closing:
            address, args = await self._rx.get()
            try:
                await self.handle_message(address, args)
            except Exception:
                logger.exception("Error handling %s %r", address, args)

    # -------------------- inbound router --------------------

    async def handle_message(self, address: str, args: List[Any]) -> None:
        await self.connection.on_message()

        if address == proto.METERS_LEVELS:
            await self._on_level_meters(args)
            return
        if address == proto.METERS_DYNAMICS:
            await self._on_dynamics_meters(args)
            return
        if address in (proto.INFO, proto.XINFO):
            await self._on_info(args)
            return
        if address == proto.SNAP_INDEX:
            if args:
                await self.scenes.on_scene_index(int(args[0]))
            return

        scene_id = proto.parse_scene_name_address(address)
        if scene_id is not None:
            if args:
                self.scenes.on_scene_name(scene_id, str(args[0]))
            return

        parsed = proto.parse_channel_address(address)
        if parsed is not None:
            await self._on_channel_message(parsed[0], parsed[1], args)

    async def _on_level_meters(self, args: List[Any]) -> None:
        blob = _first_blob(args)
        frame = level_frame(blob) if blob is not None else None
        if frame is None:
            return
        self.state.meters = frame
        await self.emit(make_event("vu_meters", frame.to_payload()))

    async def _on_dynamics_meters(self, args: List[Any]) -> None:
        blob = _first_blob(args)
        frame = dynamics_frame(blob) if blob is not None else None
        if frame is None:
            return
        self.state.dynamics = frame
        await self.emit(make_event("dynamics_meters", frame.to_payload()))

    async def _on_info(self, args: List[Any]) -> None:
        # /info:  [server version, server name, model, firmware]
        # /xinfo: [ip, name, model, firmware]
        if not args:
            return
        firmware = str(args[3]) if len(args) >= 4 else str(args[-1])
        payload = {
            "firmware": firmware,
            "name": str(args[1]) if len(args) >= 2 else "",
            "model": str(args[2]) if len(args) >= 3 else "",
        }
        if firmware != self.state.firmware:
            self.state.firmware = firmware
            logger.info("Mixer %s firmware %s", payload["model"] or "?", firmware)
        await self.emit(make_event("firmware_version", payload))

    async def _on_channel_message(self, channel: int, prop: str, args: List[Any]) -> None:
        self.transfer.on_channel_reply(channel, prop, args)
        if not args:
            return

        if prop == "mix/fader":
            await self._after_fader_event(self.faders.on_fader(channel, float(args[0]) * 100.0))
        elif prop == "mix/on":
            # mix/on: 1 = channel on, 0 = muted
            await self._after_fader_event(self.faders.on_mute(channel, int(args[0]) == 0))
        elif prop == "config/name":
            name = str(args[0])
            if self.names.on_name(channel, name):
                await self.emit(make_event("channel-name", {"channel": channel, "name": name}))

    async def _publish_speaker_mute(self, muted: bool) -> None:
        await self.emit(make_event("speaker_mute_status", {"muted": muted}))

    async def _after_fader_event(self, update: FaderUpdate) -> None:
        changed = self.speaker_mute.evaluate()
        if changed is not None:
            await self._publish_speaker_mute(changed)
        if update.mapped:
            await self.emit(make_event("fader_update", update.to_payload()))

    # -------------------- radio relay --------------------

    def _dispatch_command(self, command: str) -> None:
        self._spawn(self._relay_command(command), name="xair.radio_command")

    async def _relay_command(self, command: str, req_id: Optional[str] = None) -> None:
        result = await self.relay.dispatch(command)
        await self.emit(make_event("radio_command_result", result.to_payload(), req_id))

    def radio_command(self, command: str, req_id: Optional[str] = None) -> None:
        self._spawn(self._relay_command(command, req_id), name="xair.radio_command")

    # -------------------- meters --------------------

    def subscribe_meters(self, blob: str = proto.METERS_LEVELS) -> None:
        if blob not in METER_BLOBS:
            raise ValueError(f"unknown meter blob {blob!r}")
        self.meter_subscriptions.add(blob)
        self.send(proto.METERS_SUBSCRIBE, [proto.str_arg(blob)])

    def unsubscribe_meters(self, blob: str) -> None:
        # the mixer drops the subscription by itself once we stop renewing it
        self.meter_subscriptions.discard(blob)

    async def _renew_meter_subscriptions(self) -> None:
        for blob in sorted(self.meter_subscriptions):
            self.send(proto.METERS_SUBSCRIBE, [proto.str_arg(blob)])

    # -------------------- channel operations --------------------

    def start_channel_operation(self, operation: str, a: Any, b: Any, req_id: Optional[str] = None) -> None:
        """
        Validates arguments now (raises ValueError), runs the transfer in the
        background and reports channel_operation_complete / _error.
        """
        if operation not in ("copy", "swap"):
            raise ValueError(f"unknown channel operation {operation!r}")
        ch_a, ch_b = check_channel(a), check_channel(b)
        if ch_a == ch_b:
            raise ValueError("channels must differ")
        self._spawn(self._run_channel_operation(operation, ch_a, ch_b, req_id), name=f"xair.{operation}")

    async def _run_channel_operation(self, operation: str, a: int, b: int, req_id: Optional[str]) -> None:
        try:
            if operation == "copy":
                written = await self.transfer.copy(a, b)
            else:
                written = sum(await self.transfer.swap(a, b))
        except asyncio.CancelledError:
            raise
        except TransferAborted as e:
            logger.warning("Channel %s %d -> %d aborted: %s", operation, a, b, e)
            await self._channel_operation_error(operation, a, b, str(e), req_id)
            return
        except Exception as e:
            logger.exception("Channel %s %d -> %d failed", operation, a, b)
            await self._channel_operation_error(operation, a, b, str(e), req_id)
            return
        await self.emit(make_event(
            "channel_operation_complete",
            {"operation": operation, "source": a, "target": b, "properties": written},
            req_id,
        ))

    async def _channel_operation_error(self, operation: str, a: int, b: int, message: str,
                                       req_id: Optional[str]) -> None:
        await self.emit(make_event(
            "channel_operation_error",
            {"operation": operation, "source": a, "target": b, "message": message},
            req_id,
        ))


def _first_blob(args: Sequence[Any]) -> Optional[bytes]:
    for a in args:
        if isinstance(a, (bytes, bytearray, memoryview)):
            return bytes(a)
    return None
