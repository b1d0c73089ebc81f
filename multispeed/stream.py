"""
Reliable, ordered stream transport over a WebSocket.

Every unit is one binary WebSocket message, so framing comes for free and
nothing is ever lost or reordered.  This is the comparison baseline.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import websockets
import websockets.exceptions

from .constants import MAX_WS_MESSAGE
from .endpoint import Endpoint
from .errors import SendFailed, TransportUnavailable
from .models import TransportKind
from .transport import Transport

logger = logging.getLogger(__name__)


class StreamTransport(Transport):
    """WebSocket client connection to the reflector."""

    kind = TransportKind.STREAM
    max_payload_size = MAX_WS_MESSAGE

    def __init__(self, endpoint: Endpoint) -> None:
        super().__init__()
        self.endpoint = endpoint
        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    async def _open(self) -> None:
        try:
            self._ws = await websockets.connect(
                self.endpoint.ws_url,
                ping_interval=None,
                close_timeout=2,
                max_size=MAX_WS_MESSAGE,
                # establish() already bounds the whole handshake.
                open_timeout=None,
            )
        except websockets.exceptions.InvalidURI as exc:
            raise TransportUnavailable(self.kind, f"invalid URL: {exc}") from exc
        except websockets.exceptions.InvalidHandshake as exc:
            raise TransportUnavailable(self.kind, f"handshake rejected: {exc}") from exc

        self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def _read_loop(self, ws) -> None:  # noqa: ANN001
        try:
            async for message in ws:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                self._deliver(message)
        except websockets.exceptions.ConnectionClosedError as exc:
            self._mark_lost(f"connection closed: {exc}")
            return
        except (ConnectionError, OSError) as exc:
            self._mark_lost(str(exc))
            return
        self._mark_lost("connection closed by peer")

    async def _send(self, payload: bytes) -> None:
        try:
            await self._ws.send(payload)
        except websockets.exceptions.ConnectionClosed as exc:
            self._mark_lost(f"connection closed: {exc}")
            raise SendFailed(str(exc)) from exc
        except (ConnectionError, OSError) as exc:
            raise SendFailed(str(exc)) from exc

    async def _close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
