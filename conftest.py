"""
Shared fixtures for the HXA-Connect client tests.

Unit tests use an httpx MockTransport (`FakeHub`) for the HTTP side and
`FakeSocket` objects for the WebSocket side, so no network is needed.
Integration tests use `live_hub`: a small FastAPI app served by uvicorn
in-process on a free local port, reached through the real aiohttp socket.
"""
import asyncio
import json
import secrets
import socket
from collections import defaultdict
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from hxa_connect.client import HxaConnectClient
from hxa_connect.config import ReconnectOptions
from hxa_connect.transport import WS_CLOSED, WS_OPEN, CloseEvent

TEST_TOKEN = "secret-token"
BOT_ID = "bot-self"
BOT_NAME = "nova"


# ─────────────────────────────────────────────
# Frame builders
# ─────────────────────────────────────────────

def thread_message(
    thread_id: str,
    msg_id: str,
    content: str = "",
    created_at: int = 1_000,
    sender_id: Optional[str] = "bot-alice",
    sender_name: Optional[str] = None,
    parts: Optional[list[dict]] = None,
) -> dict:
    message: dict[str, Any] = {
        "id": msg_id,
        "thread_id": thread_id,
        "sender_id": sender_id,
        "content": content,
        "content_type": "text",
        "parts": parts or [],
        "mentions": [],
        "mention_all": False,
        "metadata": None,
        "created_at": created_at,
    }
    if sender_name is not None:
        message["sender_name"] = sender_name
    return {"type": "thread_message", "thread_id": thread_id, "message": message}


def thread_payload(thread_id: str, topic: str = "Design review", status: str = "active", **extra) -> dict:
    data = {
        "id": thread_id,
        "org_id": "org-1",
        "topic": topic,
        "tags": None,
        "status": status,
        "initiator_id": "bot-alice",
        "channel_id": None,
        "context": None,
        "close_reason": None,
        "permission_policy": None,
        "revision": 1,
        "created_at": 1_000,
        "updated_at": 1_000,
        "last_activity_at": 1_000,
        "resolved_at": None,
    }
    data.update(extra)
    return data


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def drain(ctx) -> None:
    """Wait for every in-flight delivery of a ThreadContext."""
    while ctx._deliveries:
        await asyncio.gather(*list(ctx._deliveries))


# ─────────────────────────────────────────────
# Fakes for unit tests
# ─────────────────────────────────────────────

class FakeHub:
    """httpx MockTransport handler standing in for the HXA-Connect HTTP API."""

    def __init__(self) -> None:
        self.ticket_calls = 0
        self.profile_calls = 0
        self.thread_calls = 0
        self.fail_tickets = False
        self.fail_threads = False
        self.fail_profile = False
        self.profile = {"id": BOT_ID, "org_id": "org-1", "name": BOT_NAME}
        self.threads: dict[str, dict] = {}
        self.posted: list[tuple[str, Any]] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.headers.get("authorization") != f"Bearer {TEST_TOKEN}":
            return httpx.Response(401, json={"error": "invalid token"})

        if request.method == "POST" and path == "/api/ws-ticket":
            self.ticket_calls += 1
            if self.fail_tickets:
                return httpx.Response(503, json={"error": "ticket service unavailable"})
            return httpx.Response(200, json={"ticket": f"ticket/{self.ticket_calls}"})

        if request.method == "GET" and path == "/api/me":
            self.profile_calls += 1
            if self.fail_profile:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json=self.profile)

        if request.method == "GET" and path.startswith("/api/threads/"):
            self.thread_calls += 1
            thread_id = path.rsplit("/", 1)[-1]
            if self.fail_threads:
                return httpx.Response(503, json={"error": "unavailable"})
            if thread_id not in self.threads:
                return httpx.Response(404, json={"error": "Thread not found"})
            return httpx.Response(200, json=self.threads[thread_id])

        if request.method == "POST" and path.endswith("/messages"):
            body = json.loads(request.content or b"null")
            self.posted.append((path, body))
            return httpx.Response(201, json={"id": f"m-{len(self.posted)}", **(body or {})})

        if request.method == "DELETE":
            return httpx.Response(204)

        return httpx.Response(404, json={"error": "Not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeSocket:
    """In-memory SocketLike. Tests drive it with feed() and drop()."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.ready_state = WS_OPEN
        self.sent: list[str] = []
        self.close_calls = 0
        self._listeners: dict[str, list] = defaultdict(list)

    def add_listener(self, event_type: str, listener) -> None:
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener) -> None:
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        if self.ready_state == WS_CLOSED:
            return
        self.drop(1000)

    def feed(self, payload: Any) -> None:
        text = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        for listener in list(self._listeners["message"]):
            listener(text)

    def fail(self, err: Exception) -> None:
        for listener in list(self._listeners["error"]):
            listener(err)

    def drop(self, code: Optional[int] = 1006) -> None:
        self.ready_state = WS_CLOSED
        for listener in list(self._listeners["close"]):
            listener(CloseEvent(code=code))


class SocketFarm:
    """Socket factory handing out FakeSockets, with failure and gating switches."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.urls: list[str] = []
        self.fail_next = 0
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next > 0:
            self.fail_next -= 1
            raise OSError("connection refused")
        sock = FakeSocket(url)
        self.sockets.append(sock)
        return sock

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def sockets() -> SocketFarm:
    return SocketFarm()


@pytest_asyncio.fixture
async def make_client(hub, sockets):
    """Factory for clients wired to the FakeHub and SocketFarm; closed on teardown."""
    clients: list[HxaConnectClient] = []

    def _make(**kwargs) -> HxaConnectClient:
        kwargs.setdefault(
            "reconnect",
            ReconnectOptions(enabled=True, initial_delay=0.01, max_delay=0.05, backoff_factor=2.0, max_attempts=None),
        )
        client = HxaConnectClient(
            "http://hub.test",
            kwargs.pop("token", TEST_TOKEN),
            transport=hub.transport,
            socket_factory=sockets,
            **kwargs,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


def record(client: HxaConnectClient, *event_types: str) -> list[tuple[str, Any]]:
    """Subscribe to event types and collect (type, payload) in arrival order."""
    seen: list[tuple[str, Any]] = []
    for event_type in event_types:
        client.on(event_type, lambda payload, t=event_type: seen.append((t, payload)))
    return seen


# ─────────────────────────────────────────────
# In-process hub for integration tests
# ─────────────────────────────────────────────

def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class LiveHub:
    """Minimal HXA-Connect server: ticket exchange, profile, thread fetch and /ws."""

    def __init__(self) -> None:
        self.url = ""
        self.tickets: set[str] = set()
        self.sockets: list[WebSocket] = []
        self.received: list[dict] = []
        self.connections = 0
        self.reject_sockets = False
        self.threads: dict[str, dict] = {}
        self.app = FastAPI()
        self._routes()

    def _authorized(self, request: Request) -> bool:
        return request.headers.get("authorization") == f"Bearer {TEST_TOKEN}"

    def _routes(self) -> None:
        app = self.app

        @app.post("/api/ws-ticket")
        async def ws_ticket(request: Request):
            if not self._authorized(request):
                return JSONResponse(status_code=401, content={"error": "invalid token"})
            ticket = secrets.token_urlsafe(12)
            self.tickets.add(ticket)
            return {"ticket": ticket}

        @app.get("/api/me")
        async def me(request: Request):
            if not self._authorized(request):
                return JSONResponse(status_code=401, content={"error": "invalid token"})
            return {"id": BOT_ID, "org_id": "org-1", "name": BOT_NAME}

        @app.get("/api/threads/{thread_id}")
        async def get_thread(thread_id: str, request: Request):
            if thread_id not in self.threads:
                return JSONResponse(status_code=404, content={"error": "Thread not found"})
            return self.threads[thread_id]

        @app.websocket("/ws")
        async def ws_endpoint(websocket: WebSocket):
            ticket = websocket.query_params.get("ticket")
            if self.reject_sockets or ticket not in self.tickets:
                await websocket.close(code=4001)
                return
            self.tickets.discard(ticket)  # tickets are single use
            await websocket.accept()
            self.sockets.append(websocket)
            self.connections += 1
            try:
                while True:
                    data = json.loads(await websocket.receive_text())
                    if data.get("type") == "ping":
                        await websocket.send_text(json.dumps({"type": "pong"}))
                    else:
                        self.received.append(data)
            except WebSocketDisconnect:
                pass
            finally:
                if websocket in self.sockets:
                    self.sockets.remove(websocket)

    async def broadcast(self, event: dict) -> None:
        for ws in list(self.sockets):
            await ws.send_text(json.dumps(event))

    async def restart(self) -> None:
        """Close every socket with 1012 (Service Restart)."""
        for ws in list(self.sockets):
            self.sockets.remove(ws)
            await ws.close(code=1012)


@pytest_asyncio.fixture
async def live_hub():
    hub = LiveHub()
    port = _free_port()
    config = uvicorn.Config(hub.app, host="127.0.0.1", port=port, log_level="warning", lifespan="off")
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    for _ in range(200):
        if server.started:
            break
        await asyncio.sleep(0.025)
    else:
        raise Exception("uvicorn hub failed to start")
    hub.url = f"http://127.0.0.1:{port}"

    yield hub

    server.should_exit = True
    await asyncio.wait_for(task, timeout=10)
