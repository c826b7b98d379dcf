#!/usr/bin/env python3
"""
Centralized configuration for the bridge.

Provides dataclass-based configuration with defaults.
Supports environment variable overrides for deployment flexibility.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .logging_setup import get_logger

logger = get_logger(__name__)

# ── Protocol constants (fixed by the HC-06 module) ────────────────────

BAUD_RATE = 9600                 # HC-06 factory default, not configurable
LINE_DELIMITER = b"\r\n"         # record delimiter on the inbound stream
WRITE_TERMINATOR = "\n"          # appended to every outbound payload
DEFAULT_PORT = 3001              # relay listening port (PORT env overrides)
DEFAULT_HOST = "0.0.0.0"

CONFIG_ENV_VAR = "HC06_BRIDGE_CONFIG"


@dataclass
class ServerConfig:
    """HTTP / event channel configuration."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    """Logging configuration."""

    verbose: bool = False
    log_file: str | None = None


@dataclass
class Config:
    """Main bridge configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Raw config for diagnostics
    _raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """
        Load configuration from an optional JSON file plus environment overrides.

        Args:
            path: Path to config file. If None, ``HC06_BRIDGE_CONFIG`` is used
                  when set, otherwise only defaults and environment apply.

        Returns:
            Config instance with loaded values.
        """
        if path is None:
            path = os.getenv(CONFIG_ENV_VAR)

        if path is None:
            return cls._from_dict({})

        path = Path(path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", path)
            return cls._from_dict({})

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        logger.info("Loaded config from %s", path)
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary (JSON data), applying env overrides."""
        port = os.getenv("PORT", data.get("PORT", DEFAULT_PORT))
        try:
            port = int(port)
        except (TypeError, ValueError):
            logger.warning("Invalid port %r, falling back to %d", port, DEFAULT_PORT)
            port = DEFAULT_PORT

        origins = os.getenv("HC06_BRIDGE_CORS_ORIGINS")
        if origins is not None:
            cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        else:
            cors_origins = list(data.get("CORS_ORIGINS", ["*"]))

        server = ServerConfig(
            host=os.getenv("HC06_BRIDGE_HOST", data.get("HOST", DEFAULT_HOST)),
            port=port,
            cors_origins=cors_origins or ["*"],
        )

        log_cfg = LoggingConfig(
            verbose=os.getenv("HC06_BRIDGE_ENV") == "dev" or bool(data.get("VERBOSE", False)),
            log_file=data.get("LOG_FILE"),
        )

        return cls(server=server, logging=log_cfg, _raw=data)

    def to_dict(self) -> dict[str, Any]:
        """Export config to dictionary for saving."""
        return {
            "HOST": self.server.host,
            "PORT": self.server.port,
            "CORS_ORIGINS": self.server.cors_origins,
            "VERBOSE": self.logging.verbose,
            "LOG_FILE": self.logging.log_file,
        }

    def save(self, path: str | Path) -> None:
        """Save config to file."""
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info("Saved config to %s", path)
