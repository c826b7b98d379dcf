"""
Serial Session - owner of the single serial link.

The session is the only component that opens, closes, reads or writes the
serial device. It never touches clients directly: every lifecycle change and
every received line is published as a ``SerialEvent`` through the
``EventRouter``. Events are queued and dispatched by one pump task, so
consumers see them in exactly the order the link produced them.

Usage:
    state = SessionState()
    router = EventRouter()
    session = SerialSession(state, router)
    session.start()

    await session.connect("/dev/rfcomm0")
    session.send("FF0000")          # writes b"FF0000\\n"
    session.disconnect()
    await session.wait_closed()
"""
import asyncio
from typing import Any, Awaitable, Callable

import serial
import serial_asyncio

from .config_loader import BAUD_RATE, LINE_DELIMITER, WRITE_TERMINATOR
from .exceptions import OpenError, RuntimeLinkError, WriteError
from .logging_setup import get_logger
from .router import EventKind, EventRouter, SerialEvent
from .state import SessionState

logger = get_logger(__name__)

# Max seconds to wait for a closing link to report its close
CLOSE_TIMEOUT = 5.0

SerialOpener = Callable[..., Awaitable[tuple[asyncio.BaseTransport, asyncio.Protocol]]]


async def open_serial_connection(loop, protocol_factory, url, baudrate=BAUD_RATE):
    """
    Open ``url`` in a worker thread and wrap it in an asyncio serial transport.

    Opening an rfcomm device pages the remote module and can block for
    seconds; the event loop only sees the finished handle.
    """
    serial_instance = await asyncio.to_thread(serial.serial_for_url, url, baudrate=baudrate)
    try:
        return await serial_asyncio.connection_for_serial(loop, protocol_factory, serial_instance)
    except BaseException:
        serial_instance.close()
        raise


class LineDecoder:
    """Splits a byte stream into text records on a fixed delimiter."""

    def __init__(self, delimiter: bytes = LINE_DELIMITER, encoding: str = "utf-8"):
        self.delimiter = delimiter
        self.encoding = encoding
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes still waiting for a delimiter."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Add bytes and return every record completed by them, in order."""
        self._buffer.extend(chunk)
        lines = []
        while True:
            index = self._buffer.find(self.delimiter)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[:index + len(self.delimiter)]
            lines.append(raw.decode(self.encoding, errors="replace"))
        return lines

    def reset(self) -> None:
        self._buffer.clear()


class SerialLinkProtocol(asyncio.Protocol):
    """asyncio protocol bound to one open link; forwards everything to the session."""

    def __init__(self, session: "SerialSession"):
        self._session = session
        self._decoder = LineDecoder()
        self.transport: asyncio.BaseTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport

    def data_received(self, data: bytes) -> None:
        for line in self._decoder.feed(data):
            self._session._on_line(self, line)

    def connection_lost(self, exc: Exception | None) -> None:
        if self._decoder.pending:
            logger.debug("Discarding %d bytes of unterminated input", self._decoder.pending)
        self._decoder.reset()
        self._session._on_link_closed(self, exc)


class SerialSession:
    """
    Owns zero or one open serial link.

    The at-most-one-link rule is the caller's job: ``connect()`` refuses to
    run while a link exists, so the event hub closes the old link (and waits
    for it) before opening a new one.
    """

    def __init__(
        self,
        state: SessionState,
        router: EventRouter,
        opener: SerialOpener | None = None,
        baud_rate: int = BAUD_RATE,
    ):
        self.state = state
        self.router = router
        self.baud_rate = baud_rate
        self._opener = opener or open_serial_connection

        self._transport: asyncio.BaseTransport | None = None
        self._protocol: SerialLinkProtocol | None = None
        self._link_path: str | None = None
        self._closed: asyncio.Future | None = None

        # Open in flight, and whether a disconnect was requested meanwhile
        self._pending_path: str | None = None
        self._abort_pending = False
        self._opening: asyncio.Future | None = None

        self._events: asyncio.Queue[SerialEvent] | None = None
        self._pump_task: asyncio.Task | None = None
        self._stopped = False

    # --- Properties ---

    @property
    def is_open(self) -> bool:
        """True while a link is open and not already closing"""
        return self._transport is not None and not self._transport.is_closing()

    @property
    def is_pending(self) -> bool:
        """True while an open() is in flight"""
        return self._pending_path is not None

    @property
    def path(self) -> str | None:
        return self._link_path

    # --- Event pump ---

    def start(self) -> None:
        """Start the event pump. Must be called from a running event loop."""
        if self._pump_task is not None and not self._pump_task.done():
            return
        self._stopped = False
        self._events = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump(), name="serial-event-pump")
        logger.debug("Serial event pump started")

    async def _pump(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.router.publish(event)
            finally:
                self._events.task_done()

    def _emit(self, kind: EventKind, data: Any = None) -> None:
        if self._pump_task is None or self._pump_task.done():
            if self._stopped:
                logger.debug("Session stopped, dropping %s event", kind.value)
                return
            self.start()
        self._events.put_nowait(SerialEvent(kind, data))

    async def drain(self) -> None:
        """Wait until every event emitted so far has been dispatched."""
        if self._events is not None and self._pump_task is not None:
            await self._events.join()

    # --- Operations ---

    async def connect(self, path: str) -> None:
        """
        Open ``path`` at the fixed baud rate.

        Success publishes ``connected``; failure publishes ``error`` and leaves
        the session unopened. Open failures are never retried.
        """
        if self._transport is not None or self._pending_path is not None:
            raise RuntimeError("close the current serial link before connecting")

        self._pending_path = path
        self._abort_pending = False
        self.state.set_connecting(path)
        logger.info("🔌 Opening %s at %d baud", path, self.baud_rate)

        loop = asyncio.get_running_loop()
        self._opening = loop.create_future()
        try:
            transport, protocol = await self._opener(
                loop,
                lambda: SerialLinkProtocol(self),
                path,
                baudrate=self.baud_rate,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._abort_pending = False
            error = OpenError(path, str(e) or f"cannot open {path}")
            logger.error("Failed to open %s: %s", path, error)
            self.state.set_error(str(error))
            self._emit(EventKind.ERROR, str(error))
            return
        finally:
            self._pending_path = None
            self._opening.set_result(None)
            self._opening = None

        self._transport = transport
        self._protocol = protocol
        self._link_path = path
        self._closed = loop.create_future()

        if self._abort_pending:
            self._abort_pending = False
            logger.info("Disconnect requested while opening %s, closing it again", path)
            transport.close()
            return

        self.state.set_connected(path)
        logger.info("🔌 Connected to %s", path)
        self._emit(EventKind.CONNECTED, path)

    def disconnect(self) -> bool:
        """
        Close the current link.

        Returns True if a link was open (or being opened) and is now closing,
        False if there was nothing to close. The ``disconnected`` event follows
        asynchronously from the link's close.
        """
        if self._pending_path is not None:
            logger.info("Disconnect queued until %s finishes opening", self._pending_path)
            self._abort_pending = True
            return True

        if not self.is_open:
            return False

        logger.info("Closing %s", self._link_path)
        self._transport.close()
        return True

    async def wait_closed(self) -> None:
        """Wait for a closing link to deliver its close event. No-op unless a close is underway."""
        closed = self._closed
        if closed is None or closed.done() or self.is_open:
            return
        try:
            await asyncio.wait_for(asyncio.shield(closed), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                "%s did not report close within %.0fs, aborting it", self._link_path, CLOSE_TIMEOUT
            )
            if self._transport is not None:
                self._transport.abort()
            self._on_link_closed(self._protocol, None)

    def send(self, payload: str) -> bool:
        """
        Write ``payload`` followed by a newline.

        Returns False without touching the link when nothing is open. When the
        link is open the write is accepted optimistically; a failing write is
        reported as an ``error`` event instead.
        """
        if not self.is_open:
            logger.warning("No serial link open, dropping %r", payload)
            return False

        data = (payload + WRITE_TERMINATOR).encode("utf-8")
        try:
            self._transport.write(data)
        except (serial.SerialException, OSError) as e:
            error = WriteError(f"write to {self._link_path} failed: {e}")
            logger.error("%s", error)
            self._emit(EventKind.ERROR, str(error))
        else:
            logger.debug("📡 Sent to %s: %s", self._link_path, payload)
        return True

    async def stop(self) -> None:
        """Close any link (waiting out an open in flight) and stop the event pump."""
        opening = self._opening
        if opening is not None:
            self._abort_pending = True
            try:
                await asyncio.wait_for(asyncio.shield(opening), timeout=CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("%s still opening after %.0fs, not waiting for it",
                               self._pending_path, CLOSE_TIMEOUT)

        self.disconnect()
        await self.wait_closed()
        await asyncio.sleep(0)
        await self.drain()

        self._stopped = True
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        logger.debug("Serial session stopped")

    # --- Protocol callbacks ---

    def _on_line(self, protocol: SerialLinkProtocol, line: str) -> None:
        if protocol is not self._protocol:
            return
        logger.debug("📡 Received from %s: %s", self._link_path, line)
        self._emit(EventKind.DATA, line)

    def _on_link_closed(self, protocol: SerialLinkProtocol | None, exc: Exception | None) -> None:
        if protocol is None or protocol is not self._protocol:
            logger.debug("Ignoring close of a link that is no longer current")
            return

        path = self._link_path
        closed = self._closed
        self._transport = None
        self._protocol = None
        self._link_path = None

        if exc is not None:
            error = RuntimeLinkError(f"{path}: {exc}")
            logger.error("Serial link error: %s", error)
            self.state.set_error(str(exc))
            self._emit(EventKind.ERROR, str(exc))

        self.state.set_disconnected()
        logger.info("Serial link to %s closed", path)
        self._emit(EventKind.DISCONNECTED, path)

        if closed is not None and not closed.done():
            closed.set_result(None)
