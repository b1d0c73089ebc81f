"""
The far end of every transport.

A reflector answers ``hello`` with ``welcome``, echoes ping frames
verbatim, streams data units after ``download`` until the requested
duration elapses or ``stop`` arrives, and counts upload units.  One
``ReflectorSession`` holds that behaviour per peer; the servers below only
move bytes:

    UDP        asyncio datagram endpoint, one session per source address
    WebSocket  ``websockets.serve``, one session per connection
    HTTP relay ``aiohttp.web``, one session per relay client id
    QUIC       ``aioquic.asyncio.serve`` (needs a certificate and key)
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import websockets
import websockets.exceptions
from aiohttp import web
from aioquic.asyncio import QuicConnectionProtocol, serve as quic_serve
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, DatagramFrameReceived

from .constants import (
    DEFAULT_DURATION_MS,
    DEFAULT_PACKET_INTERVAL_MS,
    DEFAULT_PAYLOAD_SIZE,
    MAX_DURATION_MS,
    MAX_QUIC_DATAGRAM,
    MAX_UDP_DATAGRAM,
    MAX_WS_MESSAGE,
    QUIC_ALPN,
    REFLECTOR_IDLE_TIMEOUT,
)
from .endpoint import Endpoint
from .errors import ProtocolError
from .protocol import DOWNLOAD, HELLO, PING, STOP, WELCOME, decode, encode_control, make_data_unit

logger = logging.getLogger(__name__)

SendFn = Callable[[bytes], Awaitable[None]]

_RELAY_QUEUE_SIZE = 256   # units buffered per relay client before dropping


# ---------------------------------------------------------------------------
# Per-peer behaviour
# ---------------------------------------------------------------------------

class ReflectorSession:
    """Protocol state for one peer, independent of the carrying transport."""

    def __init__(self, peer: str, send: SendFn, max_unit: int) -> None:
        self.peer = peer
        self._send = send
        self._max_unit = max_unit
        self._stream_task: Optional[asyncio.Task] = None
        self._pending: List[asyncio.Task] = []
        self.units_received = 0
        self.bytes_received = 0
        self.units_sent = 0
        self.last_seen = time.perf_counter()

    def feed(self, payload: bytes) -> None:
        """Handle one received unit.  Never blocks."""
        self.last_seen = time.perf_counter()
        try:
            frame = decode(payload)
        except ProtocolError as exc:
            logger.debug("%s: dropping frame: %s", self.peer, exc)
            return

        if frame.is_data:
            self.units_received += 1
            self.bytes_received += frame.size
        elif frame.type == HELLO:
            self._reply(encode_control(WELCOME))
        elif frame.type == PING:
            self._reply(payload)
        elif frame.type == DOWNLOAD:
            self._start_download(frame.fields)
        elif frame.type == STOP:
            self._stop_download()

    def _reply(self, payload: bytes) -> None:
        task = asyncio.ensure_future(self._safe_send(payload))
        self._pending.append(task)
        task.add_done_callback(self._pending.remove)

    async def _safe_send(self, payload: bytes) -> bool:
        try:
            await self._send(payload)
        except (ConnectionError, OSError, websockets.exceptions.ConnectionClosed) as exc:
            logger.debug("%s: send failed: %s", self.peer, exc)
            return False
        return True

    # -- Download streaming -------------------------------------------------

    def _start_download(self, fields: Dict) -> None:
        self._stop_download()
        try:
            duration_ms = min(float(fields.get("duration_ms", DEFAULT_DURATION_MS)), MAX_DURATION_MS)
            size = int(fields.get("payload_size", DEFAULT_PAYLOAD_SIZE))
            interval_ms = float(fields.get("interval_ms", DEFAULT_PACKET_INTERVAL_MS))
        except (TypeError, ValueError):
            logger.debug("%s: malformed download request %r", self.peer, fields)
            return
        size = max(1, min(size, self._max_unit))
        logger.info(
            "%s: streaming %d-byte units for %.0f ms", self.peer, size, duration_ms
        )
        self._stream_task = asyncio.ensure_future(
            self._stream_units(duration_ms / 1000, size, max(interval_ms, 0) / 1000)
        )

    async def _stream_units(self, duration: float, size: int, interval: float) -> None:
        unit = make_data_unit(size)
        deadline = time.perf_counter() + duration
        while time.perf_counter() < deadline:
            if not await self._safe_send(unit):
                break
            self.units_sent += 1
            await asyncio.sleep(interval)
        logger.debug("%s: download stream ended after %d units", self.peer, self.units_sent)

    @property
    def streaming(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    def idle_for(self, now: float) -> float:
        """Seconds since the last unit from the peer."""
        return now - self.last_seen

    def _stop_download(self) -> None:
        if self._stream_task is not None and not self._stream_task.done():
            self._stream_task.cancel()
        self._stream_task = None

    async def close(self) -> None:
        tasks = list(self._pending)
        if self._stream_task is not None:
            tasks.append(self._stream_task)
        self._stream_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(
            "%s: session closed (%d units / %d bytes received)",
            self.peer, self.units_received, self.bytes_received,
        )


# ---------------------------------------------------------------------------
# UDP
# ---------------------------------------------------------------------------

class UdpReflectorProtocol(asyncio.DatagramProtocol):
    """One session per source address.

    Clients come from a fresh ephemeral port every run, so sessions that
    stay quiet for ``idle_timeout`` seconds (and are not streaming) are
    closed and forgotten.
    """

    def __init__(self, idle_timeout: float = REFLECTOR_IDLE_TIMEOUT) -> None:
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.sessions: Dict[Tuple, ReflectorSession] = {}
        self.idle_timeout = idle_timeout
        self._sweeper: Optional[asyncio.Task] = None

    def connection_made(self, transport) -> None:  # noqa: ANN001
        self.transport = transport
        self._sweeper = asyncio.ensure_future(self._sweep())

    def datagram_received(self, data: bytes, addr) -> None:  # noqa: ANN001
        session = self.sessions.get(addr)
        if session is None:
            session = ReflectorSession(
                f"udp:{addr[0]}:{addr[1]}", self._sender(addr), MAX_UDP_DATAGRAM
            )
            self.sessions[addr] = session
        session.feed(data)

    def _sender(self, addr) -> SendFn:  # noqa: ANN001
        async def _send(payload: bytes) -> None:
            if self.transport is None or self.transport.is_closing():
                raise ConnectionError("UDP reflector is closed")
            self.transport.sendto(payload, addr)
            await asyncio.sleep(0)

        return _send

    def error_received(self, exc: Exception) -> None:
        logger.debug("UDP reflector socket error: %s", exc)

    # -- Idle eviction ------------------------------------------------------

    def evict_idle(self, now: Optional[float] = None) -> List[ReflectorSession]:
        """Drop quiet sessions from the map and return them for closing."""
        if now is None:
            now = time.perf_counter()
        idle = [
            addr for addr, session in self.sessions.items()
            if not session.streaming and session.idle_for(now) >= self.idle_timeout
        ]
        return [self.sessions.pop(addr) for addr in idle]

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.idle_timeout / 2)
            for session in self.evict_idle():
                logger.debug("%s: idle for %.0f s, dropping session", session.peer, self.idle_timeout)
                await session.close()

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            await session.close()
        if self.transport is not None:
            self.transport.close()


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

async def _ws_handler(connection) -> None:  # noqa: ANN001
    peer = connection.remote_address
    session = ReflectorSession(f"ws:{peer[0]}:{peer[1]}", connection.send, MAX_WS_MESSAGE)
    try:
        async for message in connection:
            if isinstance(message, str):
                message = message.encode("utf-8")
            session.feed(message)
    except websockets.exceptions.ConnectionClosedError as exc:
        logger.debug("%s: connection closed: %s", session.peer, exc)
    finally:
        await session.close()


# ---------------------------------------------------------------------------
# HTTP relay
# ---------------------------------------------------------------------------

class RelayServer:
    """HTTP front end that carries datagram units for clients without UDP.

    Units toward the client are queued and dropped when the queue is full,
    so the relay stays as lossy as the datagram path it stands in for.
    """

    def __init__(self) -> None:
        self.sessions: Dict[str, ReflectorSession] = {}
        self.dropped = 0

    def app(self) -> web.Application:
        application = web.Application()
        application.router.add_get("/udp-relay/stream", self.handle_stream)
        application.router.add_post("/udp-relay/send", self.handle_send)
        return application

    async def handle_stream(self, request: web.Request) -> web.StreamResponse:
        client = request.query.get("client")
        if not client:
            raise web.HTTPBadRequest(text="missing client id")

        queue: asyncio.Queue = asyncio.Queue(maxsize=_RELAY_QUEUE_SIZE)

        async def _enqueue(payload: bytes) -> None:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                self.dropped += 1

        session = ReflectorSession(f"relay:{client}", _enqueue, MAX_UDP_DATAGRAM)
        self.sessions[client] = session

        response = web.StreamResponse(headers={"Content-Type": "text/plain"})
        await response.prepare(request)
        try:
            # Blank lines are skipped by clients; this one flushes the headers.
            await response.write(b"\n")
            while request.transport is not None and not request.transport.is_closing():
                try:
                    unit = await asyncio.wait_for(queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                await response.write(base64.b64encode(unit) + b"\n")
        except (ConnectionResetError, ConnectionError) as exc:
            logger.debug("relay:%s: stream closed: %s", client, exc)
        finally:
            self.sessions.pop(client, None)
            await session.close()
        return response

    async def handle_send(self, request: web.Request) -> web.Response:
        session = self.sessions.get(request.query.get("client", ""))
        if session is None:
            raise web.HTTPNotFound(text="unknown client id")
        session.feed(await request.read())
        return web.Response(status=204)


# ---------------------------------------------------------------------------
# QUIC
# ---------------------------------------------------------------------------

class QuicReflectorProtocol(QuicConnectionProtocol):
    """QUIC server protocol that reflects DATAGRAM frames."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session = ReflectorSession("quic", self._send_datagram, MAX_QUIC_DATAGRAM)

    async def _send_datagram(self, data: bytes) -> None:
        self._quic.send_datagram_frame(data)
        self.transmit()

    def quic_event_received(self, event):
        if isinstance(event, DatagramFrameReceived):
            self._session.feed(event.data)
        elif isinstance(event, ConnectionTerminated):
            asyncio.ensure_future(self._session.close())


# ---------------------------------------------------------------------------
# Server bundle
# ---------------------------------------------------------------------------

class Reflector:
    """Runs every reflector server on one host.

    Ports of ``0`` pick a free port; the bound ports are available as
    ``endpoint`` once ``start()`` returns.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        udp_port: int = 0,
        ws_port: int = 0,
        http_port: Optional[int] = 0,
        quic_port: Optional[int] = None,
        cert: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        self.host = host
        self._ports = {"udp": udp_port, "ws": ws_port, "http": http_port, "quic": quic_port}
        self._cert = cert
        self._key = key
        self.udp: Optional[UdpReflectorProtocol] = None
        self.relay = RelayServer()
        self._ws_server = None
        self._runner: Optional[web.AppRunner] = None
        self._quic_server = None
        self.endpoint: Optional[Endpoint] = None

    async def start(self) -> Endpoint:
        loop = asyncio.get_running_loop()
        ports: Dict[str, int] = {}

        _, self.udp = await loop.create_datagram_endpoint(
            UdpReflectorProtocol, local_addr=(self.host, self._ports["udp"])
        )
        ports["udp"] = self.udp.transport.get_extra_info("sockname")[1]

        self._ws_server = await websockets.serve(
            _ws_handler, self.host, self._ports["ws"],
            max_size=MAX_WS_MESSAGE, ping_interval=None,
        )
        ports["ws"] = self._ws_server.sockets[0].getsockname()[1]

        if self._ports["http"] is not None:
            self._runner = web.AppRunner(self.relay.app())
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self._ports["http"])
            await site.start()
            ports["http"] = self._runner.addresses[0][1]

        if self._ports["quic"] is not None:
            if not (self._cert and self._key):
                raise ValueError("QUIC needs --cert and --key")
            configuration = QuicConfiguration(
                is_client=False,
                alpn_protocols=[QUIC_ALPN],
                max_datagram_frame_size=65536,
            )
            configuration.load_cert_chain(self._cert, self._key)
            self._quic_server = await quic_serve(
                self.host,
                self._ports["quic"],
                configuration=configuration,
                create_protocol=QuicReflectorProtocol,
            )
            ports["quic"] = self._ports["quic"]

        self.endpoint = Endpoint(
            host=self.host,
            udp_port=ports["udp"],
            ws_port=ports["ws"],
            **{f"{name}_port": ports[name] for name in ("http", "quic") if name in ports},
        )
        logger.info(
            "Reflector listening on %s (%s)",
            self.host, ", ".join(f"{name} {port}" for name, port in ports.items()),
        )
        return self.endpoint

    async def stop(self) -> None:
        if self._quic_server is not None:
            self._quic_server.close()
            self._quic_server = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None
        if self.udp is not None:
            await self.udp.close()
            self.udp = None

    async def __aenter__(self) -> Reflector:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def serve_forever(self) -> None:
        """Run until cancelled."""
        async with self:
            await asyncio.Event().wait()
