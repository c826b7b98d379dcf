#!/usr/bin/env python3
import argparse
import asyncio
import signal
import sys

from . import __version__
from .config_loader import BAUD_RATE, Config
from .hub import EventHub
from .logging_setup import get_logger, setup_logging
from .router import EventRouter
from .serial_session import SerialSession
from .server import BridgeServer
from .state import SessionState

VERSION = f"v{__version__}"

logger = get_logger(__name__)


def build_bridge(cfg: Config) -> BridgeServer:
    """Wire state, router, session and hub together."""
    state = SessionState()
    router = EventRouter()
    session = SerialSession(state, router)
    hub = EventHub(state, session, router)
    server = BridgeServer(cfg.server, state, session, hub)
    server.create_app()
    return server


async def main(cfg: Config) -> None:
    logger.info("HC-06 serial bridge %s starting (baud %d)", VERSION, BAUD_RATE)

    bridge = build_bridge(cfg)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(signum=None, frame=None):
        if stop_event.is_set():
            return
        logger.info("Shutdown requested (signal %s)", signum)
        loop.call_soon_threadsafe(stop_event.set)

    try:
        loop.add_signal_handler(signal.SIGINT, handle_shutdown, signal.SIGINT)
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown, signal.SIGTERM)
    except (NotImplementedError, RuntimeError) as e:
        logger.warning("Could not set asyncio signal handlers: %s", e)
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

    await bridge.start_server()

    stop_task = asyncio.create_task(stop_event.wait())
    done, _ = await asyncio.wait(
        {stop_task, bridge.server_task}, return_when=asyncio.FIRST_COMPLETED
    )
    if stop_task not in done:
        logger.error("HTTP server exited unexpectedly")
        stop_task.cancel()

    logger.info("Stopping bridge ..")

    try:
        await asyncio.wait_for(bridge.stop_server(), timeout=6.0)
    except asyncio.TimeoutError:
        logger.warning("HTTP server stop timeout")

    try:
        await asyncio.wait_for(bridge.session.stop(), timeout=3.0)
    except asyncio.TimeoutError:
        logger.warning("Serial session stop timeout")

    logger.info("Shutdown complete")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hc06-bridge",
        description="Share one HC-06 serial link with browser clients",
    )
    parser.add_argument("--config", help="path to a JSON config file")
    parser.add_argument("--host", help="listen address (default 0.0.0.0)")
    parser.add_argument("--port", type=int, help="listen port (default 3001, env PORT)")
    parser.add_argument("--log-file", help="also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--version", action="version", version=VERSION)
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    """Entry point for the hc06-bridge CLI."""
    args = parse_args(argv)
    simple_format = not sys.stdout.isatty()

    # Logging first so config loading is visible; redone below with file settings
    setup_logging(verbose=args.verbose, simple_format=simple_format)

    cfg = Config.load(args.config)
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.verbose:
        cfg.logging.verbose = True
    if args.log_file:
        cfg.logging.log_file = args.log_file

    setup_logging(
        verbose=cfg.logging.verbose,
        log_file=cfg.logging.log_file,
        simple_format=simple_format,
    )
    if cfg.logging.verbose:
        logger.info("*** Debug logging enabled ***")

    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        logger.info("Manually stopped with Ctrl+C")
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    run()
