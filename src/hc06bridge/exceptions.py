"""Error taxonomy for the serial bridge."""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class EnumerationError(BridgeError):
    """The OS could not list serial devices."""


class OpenError(BridgeError):
    """A serial device could not be opened (invalid path, busy, permission denied)."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(reason)


class RuntimeLinkError(BridgeError):
    """An open link dropped unexpectedly or hit an I/O fault."""


class WriteError(BridgeError):
    """A write could not be handed to the serial link."""
