# xair_bridge/osc/transport.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Sequence

from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_message_builder import BuildError, OscMessageBuilder
from pythonosc.osc_server import AsyncIOOSCUDPServer

from .protocol import TypedArg

logger = logging.getLogger(__name__)

# (address, args) for every message the mixer sends us
MessageHandler = Callable[[str, List[Any]], None]


class OscTransport:
    """
    UDP link to the mixer.

    Sends and receives on the same local socket: X-Air answers to the source
    port of the request, so a separate client socket would never see replies.
    """

    def __init__(self, ip: str, port: int, on_message: MessageHandler,
                 local_host: str = "0.0.0.0", local_port: int = 0) -> None:
        self.ip = ip
        self.port = int(port)
        self.local_host = local_host
        self.local_port = int(local_port)
        self._on_message = on_message

        self._dispatcher = Dispatcher()
        self._dispatcher.set_default_handler(self._default_handler)

        self._transport: Optional[asyncio.DatagramTransport] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(self) -> None:
        if self.is_open:
            return
        server = AsyncIOOSCUDPServer(
            (self.local_host, self.local_port), self._dispatcher, asyncio.get_running_loop()
        )
        transport, _protocol = await server.create_serve_endpoint()
        self._transport = transport
        logger.info("OSC UDP ready on %s:%d -> mixer %s:%d",
                    self.local_host, self.local_port, self.ip, self.port)

    def close(self) -> None:
        tr = self._transport
        self._transport = None
        if tr is not None:
            tr.close()

    def send(self, address: str, args: Sequence[TypedArg] = ()) -> bool:
        """
        Fire-and-forget. Without a socket this is a logged no-op, never an
        exception for the caller.
        """
        if not self.is_open:
            logger.warning("OSC transport not open, dropping %s", address)
            return False

        builder = OscMessageBuilder(address=address)
        try:
            for type_tag, value in args:
                builder.add_arg(value, type_tag)
            dgram = builder.build().dgram
        except (BuildError, ValueError) as e:
            logger.warning("Cannot encode %s %r: %s", address, list(args), e)
            return False

        try:
            self._transport.sendto(dgram, (self.ip, self.port))
        except OSError as e:
            logger.warning("OSC send to %s:%d failed: %r", self.ip, self.port, e)
            return False
        return True

    def _default_handler(self, address: str, *args: Any) -> None:
        self._on_message(address, list(args))
