"""
WebSocket transport adapter.

The session layer only needs a small surface from a socket: send text, close,
register listeners for inbound text / close / error, and report whether the
socket is open. `SocketLike` describes that surface; `AiohttpSocket` provides
it on top of an aiohttp client WebSocket. Any other implementation can be
plugged into the client through its `socket_factory` argument.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp

logger = logging.getLogger(__name__)

WS_CONNECTING = 0
WS_OPEN = 1
WS_CLOSING = 2
WS_CLOSED = 3

Listener = Callable[[Any], None]


@dataclass
class CloseEvent:
    code: Optional[int] = None
    reason: str = ""


class SocketLike(Protocol):
    @property
    def ready_state(self) -> int: ...

    async def send(self, data: str) -> None: ...

    async def close(self) -> None: ...

    def add_listener(self, event_type: str, listener: Listener) -> None: ...

    def remove_listener(self, event_type: str, listener: Listener) -> None: ...


SocketFactory = Callable[[str], Awaitable[SocketLike]]


class AiohttpSocket:
    """SocketLike adapter over `aiohttp.ClientWebSocketResponse`.

    A reader task forwards inbound frames to listeners. The `close` listeners
    fire exactly once, whichever side ended the connection.
    """

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws
        self._listeners: dict[str, list[Listener]] = {"message": [], "close": [], "error": []}
        self._reader: Optional[asyncio.Task] = None
        self._closing = False
        self._closed = False

    @property
    def ready_state(self) -> int:
        if self._closed or self._ws.closed:
            return WS_CLOSED
        if self._closing:
            return WS_CLOSING
        return WS_OPEN

    def add_listener(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def send(self, data: str) -> None:
        await self._ws.send_str(data)

    async def close(self) -> None:
        if self._closing or self._closed:
            return
        self._closing = True
        try:
            await self._ws.close()
        finally:
            await self._session.close()

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._fire("message", msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._fire("message", msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._fire("error", self._ws.exception() or ConnectionError("WebSocket error"))
        except (aiohttp.ClientError, ConnectionError) as exc:
            self._fire("error", exc)
        finally:
            if not self._closing:
                await self._session.close()
            self._closed = True
            self._fire("close", CloseEvent(code=self._ws.close_code))

    def _fire(self, event_type: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"WebSocket {event_type} listener failed")


async def open_socket(url: str, **ws_options: Any) -> AiohttpSocket:
    """Open a WebSocket at `url` and return a started adapter.

    `ws_options` are passed to `ClientSession.ws_connect` (e.g. proxy, heartbeat).
    """
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, **ws_options)
    except BaseException:
        await session.close()
        raise
    socket = AiohttpSocket(session, ws)
    socket.start()
    return socket
