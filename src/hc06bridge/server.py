#!/usr/bin/env python3
"""
HTTP, WebSocket and Server-Sent Events transport for the bridge using FastAPI.

WebSocket clients exchange JSON frames ``{"event": ..., "data": ...}`` in both
directions on ``/ws``. SSE clients read the same events from ``/events`` and
post their commands to ``/api/clients/{client_id}/commands``.
"""
import asyncio
import json
import time
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from . import __version__
from .config_loader import ServerConfig
from .exceptions import EnumerationError
from .hub import CONNECT_PORT, SERIAL_ERROR, Client, EventHub
from .logging_setup import get_logger
from .serial_session import SerialSession
from .state import SessionState

logger = get_logger(__name__)

SSE_KEEPALIVE = 30.0


class CommandRequest(BaseModel):
    """Command posted by an SSE client"""
    event: str
    data: Any = None


class StatusResponse(BaseModel):
    """Link status"""
    connected: bool
    port: str | None = None


class BridgeServer:
    """
    Serves the event hub over HTTP.

    Owns the FastAPI application and the uvicorn server running it.
    """

    def __init__(
        self,
        config: ServerConfig,
        state: SessionState,
        session: SerialSession,
        hub: EventHub,
    ):
        self.config = config
        self.state = state
        self.session = session
        self.hub = hub
        self.app: FastAPI | None = None
        self.server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._start_time = time.time()

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            logger.info("Bridge API starting up")
            self.session.start()
            yield
            logger.info("Bridge API shutting down")
            await self.hub.disconnect_all()
            await self.session.stop()

        app = FastAPI(
            title="HC-06 Serial Bridge",
            version=__version__,
            description="Relays one serial link to any number of browser clients",
            lifespan=lifespan,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

        # --- Event channel: WebSocket ---

        @app.websocket("/ws")
        @app.websocket("/socket")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            client = Client(transport="ws")
            await self.hub.attach(client)
            sender = asyncio.create_task(self._forward_to_websocket(websocket, client))
            # Opens in flight for this socket; the hub's connect lock keeps them in order
            connects: set[asyncio.Task] = set()

            try:
                while True:
                    text = await websocket.receive_text()
                    command = self._parse_frame(text)
                    if command is None:
                        await client.send(SERIAL_ERROR, "Malformed message, expected {\"event\": ..., \"data\": ...}")
                        continue
                    if command[0] == CONNECT_PORT:
                        task = asyncio.create_task(self.hub.handle_command(client, *command))
                        connects.add(task)
                        task.add_done_callback(connects.discard)
                        # Let the open begin before this socket's next frame is read
                        await asyncio.sleep(0)
                        continue
                    await self.hub.handle_command(client, *command)
            except WebSocketDisconnect:
                pass
            finally:
                await self.hub.detach(client)
                if connects:
                    await asyncio.gather(*connects, return_exceptions=True)
                sender.cancel()
                try:
                    await sender
                except asyncio.CancelledError:
                    pass

        # --- Event channel: SSE ---

        @app.get("/events")
        async def sse_endpoint(request: Request):
            """
            Server-Sent Events stream.

            The first event is ``hello`` carrying the client id to post
            commands with.
            """
            client = Client(transport="sse")
            await self.hub.attach(client)

            async def event_generator():
                try:
                    yield {
                        "event": "hello",
                        "data": json.dumps({"client_id": client.client_id}),
                    }
                    while client.connected:
                        if await request.is_disconnected():
                            break
                        try:
                            message = await asyncio.wait_for(
                                client.queue.get(), timeout=SSE_KEEPALIVE
                            )
                        except asyncio.TimeoutError:
                            yield {
                                "event": "ping",
                                "data": json.dumps({"timestamp": int(time.time() * 1000)}),
                            }
                            continue
                        yield {
                            "event": message["event"],
                            "data": json.dumps(message["data"]),
                        }
                except asyncio.CancelledError:
                    pass
                finally:
                    await self.hub.detach(client)

            return EventSourceResponse(event_generator())

        @app.post("/api/clients/{client_id}/commands")
        async def post_command(client_id: str, request: CommandRequest):
            """Run a command for an SSE client; the reply arrives on its stream."""
            client = self.hub.get_client(client_id)
            if client is None:
                raise HTTPException(status_code=404, detail=f"Unknown client: {client_id}")
            await self.hub.handle_command(client, request.event, request.data)
            return {"status": "ok"}

        # --- Request/response surface ---

        @app.get("/ports")
        @app.get("/api/ports")
        async def get_ports():
            """List available serial ports"""
            try:
                ports = await self.hub.port_lister()
            except EnumerationError as e:
                return JSONResponse(status_code=500, content={"error": str(e)})
            return [p.to_dict() for p in ports]

        @app.get("/status", response_model=StatusResponse)
        @app.get("/api/status", response_model=StatusResponse)
        async def get_status():
            """Get current serial link status"""
            return StatusResponse(
                connected=self.state.is_connected,
                port=self.state.path if self.state.is_connected else None,
            )

        @app.get("/health")
        async def health_check():
            return {
                "status": "healthy",
                "version": __version__,
                "serial": self.state.snapshot(),
                "clients": self.hub.get_client_count(),
                "uptime_seconds": int(time.time() - self._start_time),
                "timestamp": int(time.time() * 1000),
            }

        self.app = app
        return app

    @staticmethod
    def _parse_frame(text: str) -> tuple[str, Any] | None:
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            return None
        return frame["event"], frame.get("data")

    async def _forward_to_websocket(self, websocket: WebSocket, client: Client) -> None:
        while client.connected:
            message = await client.queue.get()
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug("Stopped forwarding to %s: %s", client.client_id, e)
                return

    # --- Server lifecycle ---

    async def start_server(self) -> None:
        """Start uvicorn in a background task."""
        if self.app is None:
            self.create_app()
        self._start_time = time.time()

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
            access_log=False,
        )
        self.server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._run_server())
        logger.info("Bridge listening on http://%s:%d (ws: /ws, sse: /events)",
                    self.config.host, self.config.port)

    async def _run_server(self) -> None:
        try:
            await self.server.serve()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("HTTP server error: %s", e)

    @property
    def server_task(self) -> asyncio.Task | None:
        return self._server_task

    async def stop_server(self) -> None:
        """Stop uvicorn, which runs the lifespan shutdown."""
        if self.server:
            self.server.should_exit = True
            if self._server_task:
                try:
                    await asyncio.wait_for(self._server_task, timeout=5.0)
                except asyncio.TimeoutError:
                    self._server_task.cancel()
                    try:
                        await self._server_task
                    except asyncio.CancelledError:
                        pass

        await self.hub.disconnect_all()
        logger.info("Bridge server stopped")
