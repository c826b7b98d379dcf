#!/usr/bin/env python3
"""
Event Hub - fan-out/fan-in between the serial session and UI clients.

Every client gets its own outbound queue, whatever transport carries it
(WebSocket or SSE). Serial events are broadcast to all clients; command
replies go only to the client that asked.
"""
import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable

from .exceptions import EnumerationError
from .logging_setup import get_logger
from .ports import PortDescriptor, list_ports
from .router import EventKind, EventRouter, SerialEvent
from .serial_session import SerialSession
from .state import SessionState

logger = get_logger(__name__)

# Client -> server
LIST_PORTS = "listPorts"
CONNECT_PORT = "connectPort"
DISCONNECT_PORT = "disconnectPort"
SEND_DATA = "sendData"

# Server -> client
PORTS_LIST = "portsList"
SERIAL_CONNECTED = "serialConnected"
SERIAL_DISCONNECTED = "serialDisconnected"
SERIAL_DATA = "serialData"
SERIAL_ERROR = "serialError"
DISCONNECT_RESULT = "disconnectResult"
SEND_RESULT = "sendResult"

PortLister = Callable[[], Awaitable[list[PortDescriptor]]]


def make_message(event: str, data: Any = None) -> dict[str, Any]:
    """Wire form shared by all transports."""
    return {"event": event, "data": data}


class Client:
    """Represents a connected UI client."""

    def __init__(self, transport: str = "ws", client_id: str | None = None):
        self.client_id = client_id or str(uuid.uuid4())[:8]
        self.transport = transport
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.connected = True
        self.connected_at = time.time()

    async def send(self, event: str, data: Any = None) -> None:
        """Queue a message for this client."""
        if self.connected:
            await self.queue.put(make_message(event, data))

    def disconnect(self) -> None:
        """Mark client as disconnected."""
        self.connected = False

    def __repr__(self) -> str:
        return f"Client({self.client_id!r}, {self.transport})"


class EventHub:
    """
    Relays one serial session to any number of clients.

    Connection state is shared truth: connect results are broadcast to every
    client, not just the one that asked.
    """

    def __init__(
        self,
        state: SessionState,
        session: SerialSession,
        router: EventRouter,
        port_lister: PortLister = list_ports,
    ):
        self.state = state
        self.session = session
        self.port_lister = port_lister
        self.clients: dict[str, Client] = {}
        self.clients_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

        # Port of the last serialConnected broadcast, None after serialDisconnected
        self.announced_path: str | None = None

        self._commands = {
            LIST_PORTS: self._handle_list_ports,
            CONNECT_PORT: self._handle_connect,
            DISCONNECT_PORT: self._handle_disconnect,
            SEND_DATA: self._handle_send,
        }

        router.subscribe_all(self._on_serial_event)

    # --- Client set ---

    async def attach(self, client: Client) -> None:
        """Register a client and hand it the current link state."""
        async with self.clients_lock:
            self.clients[client.client_id] = client
            count = len(self.clients)
            if self.announced_path is not None:
                await client.send(SERIAL_CONNECTED, self.announced_path)
        logger.info("Client connected: %s (%d total)", client.client_id, count)

    async def detach(self, client: Client) -> None:
        client.disconnect()
        async with self.clients_lock:
            removed = self.clients.pop(client.client_id, None)
            count = len(self.clients)
        if removed is not None:
            logger.info("Client disconnected: %s (%d left)", client.client_id, count)

    async def disconnect_all(self) -> None:
        async with self.clients_lock:
            for client in self.clients.values():
                client.disconnect()
            self.clients.clear()

    def get_client(self, client_id: str) -> Client | None:
        return self.clients.get(client_id)

    def get_client_count(self) -> int:
        return len(self.clients)

    # --- Commands ---

    async def handle_command(self, client: Client, command: str, data: Any = None) -> None:
        """Route one command from ``client``; replies go to that client only."""
        handler = self._commands.get(command)
        if handler is None:
            logger.warning("Unknown command '%s' from %s", command, client.client_id)
            await client.send(SERIAL_ERROR, f"Unknown command: {command}")
            return

        logger.debug("Command '%s' from %s", command, client.client_id)
        try:
            await handler(client, data)
        except Exception as e:
            logger.error("Command '%s' failed: %s", command, e, exc_info=True)
            await client.send(SERIAL_ERROR, f"Command failed: {command} - {e}")

    async def _handle_list_ports(self, client: Client, data: Any) -> None:
        try:
            ports = await self.port_lister()
        except EnumerationError as e:
            await client.send(SERIAL_ERROR, str(e))
            return
        await client.send(PORTS_LIST, [p.to_dict() for p in ports])

    async def _handle_connect(self, client: Client, path: Any) -> None:
        if not isinstance(path, str) or not path.strip():
            await client.send(SERIAL_ERROR, "connectPort requires a port path")
            return

        # Connects run one at a time in arrival order; the last one wins
        async with self._connect_lock:
            if self.session.is_open:
                logger.info("Switching link from %s to %s", self.session.path, path)
                self.session.disconnect()
            await self.session.wait_closed()
            await self.session.connect(path)

    async def _handle_disconnect(self, client: Client, data: Any) -> None:
        await client.send(DISCONNECT_RESULT, self.session.disconnect())

    async def _handle_send(self, client: Client, payload: Any) -> None:
        if payload is None:
            await client.send(SEND_RESULT, False)
            return
        if not isinstance(payload, str):
            payload = str(payload)
        await client.send(SEND_RESULT, self.session.send(payload))

    # --- Broadcast ---

    async def _on_serial_event(self, event: SerialEvent) -> None:
        if event.kind == EventKind.CONNECTED:
            # Recipients and snapshot change together so a joiner gets exactly one of them
            async with self.clients_lock:
                self.announced_path = event.data
                clients = list(self.clients.values())
            await self._deliver(clients, SERIAL_CONNECTED, event.data)
        elif event.kind == EventKind.DISCONNECTED:
            async with self.clients_lock:
                self.announced_path = None
                clients = list(self.clients.values())
            await self._deliver(clients, SERIAL_DISCONNECTED)
        elif event.kind == EventKind.DATA:
            await self.broadcast(SERIAL_DATA, event.data)
        elif event.kind == EventKind.ERROR:
            await self.broadcast(SERIAL_ERROR, event.data)

    async def broadcast(self, event: str, data: Any = None) -> None:
        """Broadcast a message to all connected clients."""
        async with self.clients_lock:
            clients = list(self.clients.values())
        await self._deliver(clients, event, data)

    async def _deliver(self, clients: list[Client], event: str, data: Any = None) -> None:
        for client in clients:
            try:
                await client.send(event, data)
            except Exception as e:
                logger.warning("Failed to queue %s for client %s: %s", event, client.client_id, e)
