# xair_bridge/ws/subscriptions.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Set

from aiohttp import web


@dataclass
class Subscriptions:
    """
    Connected WS clients and their stream subscriptions.

    stream_name -> set(ws_connections)

    Subscription-only streams:
      - "vu_meters"
      - "dynamics_meters"
    Every other event goes to all clients.
    """

    clients: Set[web.WebSocketResponse] = field(default_factory=set)
    by_stream: Dict[str, Set[web.WebSocketResponse]] = field(default_factory=dict)

    def connect(self, ws: web.WebSocketResponse) -> None:
        self.clients.add(ws)

    def add(self, stream: str, ws: web.WebSocketResponse) -> None:
        self.by_stream.setdefault(stream, set()).add(ws)

    def discard(self, stream: str, ws: web.WebSocketResponse) -> None:
        subs = self.by_stream.get(stream)
        if subs is None:
            return
        subs.discard(ws)
        if not subs:
            del self.by_stream[stream]

    def remove_ws(self, ws: web.WebSocketResponse) -> None:
        self.clients.discard(ws)
        for stream in list(self.by_stream.keys()):
            self.discard(stream, ws)

    def get(self, stream: str) -> Set[web.WebSocketResponse]:
        return self.by_stream.get(stream, set())

    def clear(self) -> None:
        self.clients.clear()
        self.by_stream.clear()
