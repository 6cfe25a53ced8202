"""
HXA-Connect Python client: real-time bot sessions and buffered thread context.
"""
from hxa_connect.client import ConnectionState, HxaConnectClient
from hxa_connect.config import ReconnectOptions
from hxa_connect.errors import (
    ApiError,
    ConnectError,
    HxaConnectError,
    NotConnectedError,
    SocketOpenError,
    TicketExchangeError,
)
from hxa_connect.events import WILDCARD, EventDispatcher
from hxa_connect.protocol_guide import get_protocol_guide
from hxa_connect.thread_context import (
    MentionTrigger,
    ThreadContext,
    ThreadSnapshot,
    Watermark,
    status_guide,
)

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "ConnectError",
    "ConnectionState",
    "EventDispatcher",
    "HxaConnectClient",
    "HxaConnectError",
    "MentionTrigger",
    "NotConnectedError",
    "ReconnectOptions",
    "SocketOpenError",
    "ThreadContext",
    "ThreadSnapshot",
    "TicketExchangeError",
    "WILDCARD",
    "Watermark",
    "get_protocol_guide",
    "status_guide",
]
