"""
HXA-Connect client: HTTP remote calls plus the real-time WebSocket session.

The session owns at most one live socket. It authenticates with a one-time
ticket, turns inbound frames into typed events for the dispatcher, and
reconnects on unexpected loss with exponential backoff. A server-signaled
restart (close code 1012) is retried immediately, up to a small cap.

Messages sent while the socket was down are NOT replayed. Listen for
`reconnected` and fetch missed state yourself.
"""
import asyncio
import enum
import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from hxa_connect.config import (
    HTTP_TIMEOUT,
    MAX_IMMEDIATE_RECONNECTS,
    SERVICE_RESTART_CODE,
    ReconnectOptions,
)
from hxa_connect.errors import (
    ApiError,
    NotConnectedError,
    SocketOpenError,
    TicketExchangeError,
)
from hxa_connect.events import WILDCARD, EventDispatcher, EventHandler
from hxa_connect.models import Agent, MessagePart, ThreadDetail, parse_event
from hxa_connect.transport import WS_OPEN, CloseEvent, SocketFactory, SocketLike, open_socket

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"
    CLOSED_INTENTIONAL = "closed_intentional"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"


def _ws_url(base_url: str, ticket: str) -> str:
    if base_url.startswith("https:"):
        ws_base = "wss:" + base_url[len("https:"):]
    elif base_url.startswith("http:"):
        ws_base = "ws:" + base_url[len("http:"):]
    else:
        ws_base = base_url
    return f"{ws_base}/ws?ticket={quote(ticket, safe='')}"


class HxaConnectClient:
    """Client for one bot identity on an HXA-Connect server.

    Args:
        url: Server base URL, e.g. "http://localhost:4800".
        token: Long-lived bot token. Only sent as an HTTP bearer header,
            never placed in the WebSocket URL.
        org_id: Optional org id, sent as X-Org-Id on every request.
        timeout: HTTP timeout in seconds.
        reconnect: Auto-reconnect settings.
        ws_options: Extra keyword arguments for the default socket factory.
        socket_factory: Coroutine `(url) -> SocketLike`; defaults to aiohttp.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        url: str,
        token: str,
        org_id: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT,
        reconnect: Optional[ReconnectOptions] = None,
        ws_options: Optional[dict[str, Any]] = None,
        socket_factory: Optional[SocketFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = url.rstrip("/")
        self._token = token
        self.org_id = org_id
        self.timeout = timeout
        self.reconnect_options = reconnect or ReconnectOptions()
        self._ws_options = ws_options or {}
        self._socket_factory = socket_factory
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

        self._events = EventDispatcher()
        self._ws: Optional[SocketLike] = None
        self._state = ConnectionState.DISCONNECTED

        # Reconnect bookkeeping. The two counters follow different rules:
        # backoff attempts grow the delay, immediate reconnects are capped.
        self._reconnect_attempts = 0
        self._immediate_reconnects = 0
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._intentional_disconnect = False
        # Bumped by connect() and disconnect(); a reconnect attempt started
        # under an older generation never adopts its socket.
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> "HxaConnectClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client."""
        await self.disconnect()
        await self._http.aclose()

    # ─────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Authenticated JSON request. Raises ApiError on a non-2xx status."""
        hdrs = {"Authorization": f"Bearer {self._token}"}
        if self.org_id:
            hdrs["X-Org-Id"] = self.org_id
        if headers:
            hdrs.update(headers)

        kwargs: dict[str, Any] = {"headers": hdrs}
        if body is not None:
            kwargs["json"] = body

        resp = await self._http.request(method, path, **kwargs)
        if resp.is_error:
            try:
                err_body = resp.json()
            except ValueError:
                err_body = resp.text or None
            raise ApiError(resp.status_code, err_body)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body)

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self.request("PATCH", path, body)

    async def delete(self, path: str, body: Any = None) -> Any:
        return await self.request("DELETE", path, body)

    async def exchange_ticket(self) -> str:
        """Trade the bearer token for a one-time WebSocket ticket."""
        data = await self.post("/api/ws-ticket")
        if not isinstance(data, dict) or not data.get("ticket"):
            raise ValueError(f"Malformed ws-ticket response: {data!r}")
        return data["ticket"]

    async def get_thread(self, thread_id: str) -> ThreadDetail:
        """Thread details including participants."""
        return ThreadDetail.model_validate(await self.get(f"/api/threads/{thread_id}"))

    async def get_profile(self) -> Agent:
        """The current bot's profile."""
        return Agent.model_validate(await self.get("/api/me"))

    # ─────────────────────────────────────────────
    # WebSocket session
    # ─────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.ready_state == WS_OPEN

    async def connect(self) -> None:
        """Open the real-time connection. No-op if already connected.

        Raises TicketExchangeError or SocketOpenError (both ConnectError)
        if the connection cannot be established; the client stays
        disconnected and connect() may be retried.
        """
        if self.connected:
            return

        self._intentional_disconnect = False
        self._reconnect_attempts = 0
        self._immediate_reconnects = 0
        self._clear_reconnect_timer()
        self._generation += 1
        generation = self._generation

        try:
            socket = await self._do_connect()
        except Exception:
            if generation == self._generation:
                self._state = ConnectionState.DISCONNECTED
            raise

        if generation != self._generation or self.connected:
            # disconnect() or another connect() won while we were opening.
            await socket.close()
            return
        self._adopt(socket)

    async def _do_connect(self) -> SocketLike:
        """Exchange a ticket and open a socket. The caller decides whether to adopt it."""
        self._state = ConnectionState.CONNECTING
        try:
            ticket = await self.exchange_ticket()
        except Exception as exc:
            raise TicketExchangeError(f"WebSocket ticket exchange failed: {exc}") from exc

        url = _ws_url(self.base_url, ticket)
        try:
            if self._socket_factory is not None:
                socket = await self._socket_factory(url)
            else:
                socket = await open_socket(url, **self._ws_options)
        except Exception as exc:
            raise SocketOpenError(f"WebSocket connection failed: {exc}") from exc
        return socket

    def _adopt(self, socket: SocketLike) -> None:
        socket.add_listener("message", self._on_socket_message)
        socket.add_listener("close", lambda event: self._on_socket_close(socket, event))
        socket.add_listener("error", self._on_socket_error)
        self._ws = socket
        self._state = ConnectionState.CONNECTED
        logger.info(f"Connected to {self.base_url}/ws (ticket redacted)")

    def _on_socket_message(self, data: Any) -> None:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8", errors="replace")
        if not data:
            return
        try:
            event = parse_event(json.loads(data))
        except ValueError as exc:
            logger.debug(f"Dropping malformed frame: {exc}")
            return
        self._events.emit(event.type, event)
        self._events.emit(WILDCARD, event)

    def _on_socket_close(self, socket: SocketLike, event: CloseEvent) -> None:
        code = getattr(event, "code", None)
        if self._ws is socket:
            self._ws = None
        logger.info(f"WebSocket closed (code={code})")
        self._events.emit("close", {"code": code})
        if self._intentional_disconnect:
            self._state = ConnectionState.CLOSED_INTENTIONAL
            return
        self._schedule_reconnect(immediate=code == SERVICE_RESTART_CODE)

    def _on_socket_error(self, err: Any) -> None:
        self._events.emit("error", err)

    def _schedule_reconnect(self, immediate: bool = False) -> None:
        opts = self.reconnect_options
        if self._intentional_disconnect:
            return
        if not opts.enabled:
            self._state = ConnectionState.DISCONNECTED
            return
        if opts.max_attempts is not None and self._reconnect_attempts >= opts.max_attempts:
            self._state = ConnectionState.RECONNECT_EXHAUSTED
            logger.error(f"Giving up after {self._reconnect_attempts} reconnect attempt(s)")
            self._events.emit("reconnect_failed", {"attempts": self._reconnect_attempts})
            return

        # Cap consecutive immediate reconnects so a server stuck restarting
        # does not cause a reconnect storm.
        do_immediate = immediate and self._immediate_reconnects < MAX_IMMEDIATE_RECONNECTS
        if do_immediate:
            delay = 0.0
            self._immediate_reconnects += 1
        else:
            try:
                delay = min(opts.initial_delay * opts.backoff_factor ** self._reconnect_attempts, opts.max_delay)
            except OverflowError:
                delay = opts.max_delay
            self._reconnect_attempts += 1
            self._immediate_reconnects = 0

        attempt = self._reconnect_attempts or self._immediate_reconnects
        self._state = ConnectionState.RECONNECT_PENDING
        logger.info(f"Reconnecting in {delay:.2f}s (attempt {attempt})")
        self._events.emit("reconnecting", {"attempt": attempt, "delay": delay})

        self._clear_reconnect_timer()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        if self._intentional_disconnect:
            return
        task = asyncio.get_running_loop().create_task(self._attempt_reconnect())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _attempt_reconnect(self) -> None:
        generation = self._generation
        try:
            socket = await self._do_connect()
        except Exception as exc:
            logger.warning(f"Reconnect attempt failed: {exc}")
            if generation == self._generation:
                self._schedule_reconnect()
            return

        if generation != self._generation or self.connected:
            # disconnect() or connect() was called while the attempt was in flight.
            logger.info("Discarding socket from a superseded reconnect attempt")
            await socket.close()
            return

        self._adopt(socket)
        attempts = self._reconnect_attempts or self._immediate_reconnects
        logger.info(f"Reconnected after {attempts} attempt(s)")
        self._events.emit("reconnected", {"attempts": attempts})
        self._reconnect_attempts = 0
        self._immediate_reconnects = 0

    def _clear_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def disconnect(self) -> None:
        """Close the connection and stop auto-reconnect.

        Event handlers are kept for a later connect().
        """
        self._intentional_disconnect = True
        self._generation += 1
        self._clear_reconnect_timer()
        self._state = ConnectionState.CLOSED_INTENTIONAL
        socket, self._ws = self._ws, None
        if socket is not None:
            await socket.close()

    async def ping(self) -> None:
        """Send a ping; the server answers with a `pong` event. No-op if not connected."""
        if self.connected:
            await self._ws.send(json.dumps({"type": "ping"}))

    async def send_message(
        self,
        channel_id: str,
        content: Optional[str] = None,
        parts: Optional[list[MessagePart | dict]] = None,
        content_type: Optional[str] = None,
    ) -> None:
        """Send a channel message over the WebSocket."""
        if not self.connected:
            raise NotConnectedError("WebSocket not connected. Call connect() first.")
        if not content and not parts:
            raise ValueError("Either content or parts must be provided.")
        payload: dict[str, Any] = {"type": "send", "channel_id": channel_id}
        if content:
            payload["content"] = content
        if content_type:
            payload["content_type"] = content_type
        if parts:
            payload["parts"] = [
                p.model_dump(exclude_none=True) if isinstance(p, MessagePart) else p for p in parts
            ]
        await self._ws.send(json.dumps(payload))

    # ─────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to an event type.

        Server events: message, bot_online, bot_offline, channel_created,
        thread_created, thread_updated, thread_message, thread_artifact,
        thread_participant, thread_status_changed, bot_renamed, error, pong.
        Client events: close, reconnecting, reconnected, reconnect_failed,
        error (handler failures), and `*` for every server event.
        """
        self._events.on(event_type, handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        self._events.off(event_type, handler)

    def emit_error(self, err: Any) -> None:
        """Report an error to `error` subscribers."""
        self._events.emit_error(err)
