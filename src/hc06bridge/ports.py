"""
Serial port enumeration.

Wraps pyserial's ``comports()`` so listing runs off the event loop and never
touches an open session.
"""
import asyncio
from dataclasses import asdict, dataclass

from serial.tools import list_ports as serial_list_ports

from .exceptions import EnumerationError
from .logging_setup import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PortDescriptor:
    """Metadata identifying one enumerable serial device."""
    path: str
    manufacturer: str | None = None
    serial_number: str | None = None
    vendor_id: str | None = None
    product_id: str | None = None
    pnp_id: str | None = None
    location_id: str | None = None

    @classmethod
    def from_list_port_info(cls, info) -> "PortDescriptor":
        """Build a descriptor from a pyserial ``ListPortInfo``."""
        return cls(
            path=info.device,
            manufacturer=info.manufacturer,
            serial_number=info.serial_number,
            vendor_id=f"{info.vid:04x}" if info.vid is not None else None,
            product_id=f"{info.pid:04x}" if info.pid is not None else None,
            pnp_id=info.hwid if info.hwid and info.hwid != "n/a" else None,
            location_id=info.location,
        )

    def to_dict(self) -> dict:
        """JSON form with the camelCase keys browser clients expect."""
        data = asdict(self)
        return {
            "path": data["path"],
            "manufacturer": data["manufacturer"],
            "serialNumber": data["serial_number"],
            "vendorId": data["vendor_id"],
            "productId": data["product_id"],
            "pnpId": data["pnp_id"],
            "locationId": data["location_id"],
        }


def _scan() -> list[PortDescriptor]:
    return [PortDescriptor.from_list_port_info(p) for p in serial_list_ports.comports()]


async def list_ports() -> list[PortDescriptor]:
    """
    List available serial devices.

    Raises:
        EnumerationError: if the OS-level query fails.
    """
    try:
        ports = await asyncio.to_thread(_scan)
    except (OSError, RuntimeError) as e:
        logger.error("Port enumeration failed: %s", e)
        raise EnumerationError(str(e)) from e

    logger.debug("Enumerated %d serial ports", len(ports))
    return ports
