"""
Client-side transport.

`Transport.connect(url)` opens one connection; a `Connection` exposes text `send`/`recv`
and `close`. The session only ever sees `TransportError` (could not open) and
`ConnectionLost` (an open connection ended), so tests can swap in an in-memory fake.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The connection could not be established."""


class ConnectionLost(Exception):
    """An established connection ended; `clean` is True for a normal close handshake."""

    def __init__(self, clean: bool, reason: str = ""):
        self.clean = clean
        self.reason = reason
        super().__init__(reason or ("closed" if clean else "connection lost"))


class Connection(Protocol):
    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


class Transport(Protocol):
    async def connect(self, url: str) -> Connection: ...


class WebSocketConnection:
    def __init__(self, ws) -> None:
        self._ws = ws

    async def send(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            raise ConnectionLost(isinstance(exc, ConnectionClosedOK), str(exc)) from exc

    async def recv(self) -> str:
        try:
            frame = await self._ws.recv()
        except ConnectionClosed as exc:
            raise ConnectionLost(isinstance(exc, ConnectionClosedOK), str(exc)) from exc
        return frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame

    async def close(self) -> None:
        await self._ws.close()


class WebSocketTransport:
    """`websockets`-backed transport. Keepalive is application-level (`ping`/`pong` frames)."""

    def __init__(self, *, open_timeout: float = 10.0):
        self._open_timeout = open_timeout

    async def connect(self, url: str) -> Connection:
        try:
            ws = await websockets.connect(url, open_timeout=self._open_timeout, ping_interval=None)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(f"failed to connect to {url}: {exc}") from exc
        logger.debug("websocket opened url=%s", url)
        return WebSocketConnection(ws)
