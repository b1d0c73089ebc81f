"""
Datagram transport reached through an HTTP relay.

For callers that cannot open UDP sockets, an HTTP front end bridges to the
datagram backend.  How it translates is its own business; from here it
looks exactly like a ``DatagramTransport``: units may be lost, reordered
or duplicated and nothing is retransmitted.

Relay API::

    GET  {relay}/stream?client={id}   long-lived response, one base64 unit per line
    POST {relay}/send?client={id}     body is one unit
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import uuid
from typing import Optional

import aiohttp

from .constants import MAX_UDP_DATAGRAM
from .endpoint import Endpoint
from .errors import SendFailed, TransportUnavailable
from .models import TransportKind
from .transport import Transport

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "multispeed-relay-client",
    "Accept-Encoding": "identity",
}


class RelayDatagramTransport(Transport):
    """The relay collaborator, presented as a datagram transport."""

    kind = TransportKind.DATAGRAM
    max_payload_size = MAX_UDP_DATAGRAM

    def __init__(self, endpoint: Endpoint) -> None:
        super().__init__()
        self.endpoint = endpoint
        self.client_id = uuid.uuid4().hex[:12]
        self._session: Optional[aiohttp.ClientSession] = None
        self._stream: Optional[aiohttp.ClientResponse] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def _params(self) -> dict:
        return {"client": self.client_id}

    async def _open(self) -> None:
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        self._session = aiohttp.ClientSession(headers=HEADERS, timeout=timeout)
        try:
            self._stream = await self._session.get(
                f"{self.endpoint.relay_url}/stream", params=self._params
            )
        except aiohttp.ClientError as exc:
            raise TransportUnavailable(self.kind, f"relay unreachable: {exc}") from exc

        if self._stream.status != 200:
            raise TransportUnavailable(self.kind, f"relay answered HTTP {self._stream.status}")

        self._reader = asyncio.create_task(self._read_loop(self._stream))

    async def _read_loop(self, resp: aiohttp.ClientResponse) -> None:
        try:
            async for line in resp.content:
                line = line.strip()
                if not line:
                    continue
                try:
                    unit = base64.b64decode(line, validate=True)
                except (binascii.Error, ValueError):
                    logger.debug("Dropping undecodable relay line (%d bytes)", len(line))
                    continue
                self._deliver(unit)
        except (aiohttp.ClientError, ConnectionError, OSError) as exc:
            self._mark_lost(f"relay stream failed: {exc}")
            return
        self._mark_lost("relay stream ended")

    async def _send(self, payload: bytes) -> None:
        if self._session is None or self._session.closed:
            raise SendFailed("relay session is closed")
        try:
            async with self._session.post(
                f"{self.endpoint.relay_url}/send",
                params=self._params,
                data=payload,
                headers={"Content-Type": "application/octet-stream"},
            ) as resp:
                if resp.status >= 300:
                    raise SendFailed(f"relay answered HTTP {resp.status}")
                await resp.read()
        except aiohttp.ClientError as exc:
            raise SendFailed(f"relay POST failed: {exc}") from exc

    async def _close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()
