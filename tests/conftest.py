"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import serial

from hc06bridge.hub import EventHub
from hc06bridge.ports import PortDescriptor
from hc06bridge.router import EventRouter
from hc06bridge.serial_session import SerialSession
from hc06bridge.state import SessionState


class FakeSerialTransport:
    """Stands in for a pyserial-asyncio transport; records writes."""

    def __init__(self, loop, protocol, path):
        self.loop = loop
        self.protocol = protocol
        self.path = path
        self.written: list[bytes] = []
        self.fail_writes = False
        self.hang_on_close = False
        self.aborted = False
        self._closing = False

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise serial.SerialException("write failed: device not ready")
        self.written.append(data)

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        if not self.hang_on_close:
            self.loop.call_soon(self.protocol.connection_lost, None)

    def abort(self) -> None:
        self.aborted = True
        self._closing = True
        self.loop.call_soon(self.protocol.connection_lost, None)

    def feed(self, data: bytes) -> None:
        """Simulate bytes arriving from the device."""
        self.protocol.data_received(data)

    def drop(self, exc: Exception) -> None:
        """Simulate the device vanishing mid-session."""
        self._closing = True
        self.loop.call_soon(self.protocol.connection_lost, exc)


class FakeSerialDevice:
    """Replaces the session's default opener, ``open_serial_connection``."""

    def __init__(self, fail_paths: dict[str, str] | None = None, open_delay: float = 0.0):
        self.fail_paths = fail_paths or {}
        self.open_delay = open_delay
        self.opened: list[tuple[str, int]] = []
        self.transports: list[FakeSerialTransport] = []

    async def __call__(self, loop, protocol_factory, url, baudrate=9600, **kwargs):
        self.opened.append((url, baudrate))
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if url in self.fail_paths:
            raise serial.SerialException(self.fail_paths[url])
        protocol = protocol_factory()
        transport = FakeSerialTransport(loop, protocol, url)
        protocol.connection_made(transport)
        self.transports.append(transport)
        return transport, protocol

    @property
    def open_transports(self) -> list[FakeSerialTransport]:
        return [t for t in self.transports if not t.is_closing()]


class EventRecorder:
    """Router subscriber that keeps every event as (kind, data)."""

    def __init__(self, router: EventRouter):
        self.events = []
        router.subscribe_all(self._record)

    async def _record(self, event):
        self.events.append((event.kind, event.data))


def drain_queue(client) -> list[dict]:
    """Pop everything currently queued for a hub client."""
    messages = []
    while not client.queue.empty():
        messages.append(client.queue.get_nowait())
    return messages


SAMPLE_PORTS = [
    PortDescriptor(
        path="/dev/rfcomm0",
        manufacturer="Guangzhou HC Information Technology",
        serial_number="98D331F5A1B2",
    ),
    PortDescriptor(
        path="COM3",
        manufacturer="FTDI",
        vendor_id="0403",
        product_id="6001",
    ),
]


async def fake_list_ports():
    return list(SAMPLE_PORTS)


@pytest.fixture
def device():
    return FakeSerialDevice(fail_paths={"/dev/missing": "could not open port /dev/missing"})


@pytest.fixture
def state():
    return SessionState()


@pytest.fixture
def router():
    return EventRouter()


@pytest.fixture
def recorder(router):
    return EventRecorder(router)


@pytest.fixture
def session(state, router, device):
    return SerialSession(state, router, opener=device)


@pytest.fixture
def hub(state, session, router):
    return EventHub(state, session, router, port_lister=fake_list_ports)
