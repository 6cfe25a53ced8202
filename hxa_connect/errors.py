"""
Exception types raised by the HXA-Connect client.
"""
from typing import Any


class HxaConnectError(Exception):
    """Base class for client-side errors."""


class ApiError(HxaConnectError):
    """Raised when the server answers an HTTP request with a non-2xx status."""

    def __init__(self, status: int, body: Any = None) -> None:
        self.status = status
        self.body = body
        if isinstance(body, dict) and "error" in body:
            message = str(body["error"])
        else:
            message = f"HTTP {status}"
        super().__init__(message)


class NotConnectedError(HxaConnectError):
    """Raised when a WebSocket send is attempted without an open connection."""


class ConnectError(ConnectionError):
    """Raised by connect() when the live connection cannot be established."""


class TicketExchangeError(ConnectError):
    """The one-time WebSocket ticket could not be obtained."""


class SocketOpenError(ConnectError):
    """The WebSocket could not be opened with the obtained ticket."""
