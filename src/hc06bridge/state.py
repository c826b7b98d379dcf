"""
Session state shared by the serial session and the event hub.

One ``SessionState`` is created at startup and handed to both components, so
there is a single source of truth about the hardware link.
"""
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    """Serial link states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class SessionState:
    """Current serial link status"""
    status: ConnectionState = ConnectionState.DISCONNECTED
    path: str | None = None
    error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.status == ConnectionState.CONNECTING

    def set_connecting(self, path: str) -> None:
        self.status = ConnectionState.CONNECTING
        self.path = path
        self.error = None

    def set_connected(self, path: str) -> None:
        self.status = ConnectionState.CONNECTED
        self.path = path
        self.error = None

    def set_error(self, message: str) -> None:
        # An error always means no usable link; the path is cleared with it
        self.status = ConnectionState.ERROR
        self.path = None
        self.error = message

    def set_disconnected(self) -> None:
        """Link closed. The last error, if any, is kept for status queries."""
        self.status = ConnectionState.DISCONNECTED
        self.path = None

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "connected": self.is_connected,
            "port": self.path if self.is_connected else None,
            "error": self.error,
        }
