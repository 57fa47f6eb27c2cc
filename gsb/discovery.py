"""
Serial device discovery.

Resolves the device path of the sensor microcontroller. An explicit path
is returned as-is; "auto" scans the enumerated serial ports for USB serial
adapters, since the node (ttyUSB0, ttyUSB1, ttyACM0, ...) can change every
time the board is replugged.
"""

from typing import Callable, List, Optional

from .errors import DeviceNotFoundError
from .interfaces import DeviceResolverInterface, LoggerInterface, PortInfo

AUTO = "auto"

# USB serial identifiers, in priority order
USB_SERIAL_PATTERNS = [
    # Arduino native USB and CH340/FTDI adapters (Linux)
    "ttyusb",
    "ttyacm",
    # macOS
    "usbserial",
    "usbmodem",
    # Adapter chips by description / hwid
    "arduino",
    "ch340",
    "ch341",
    "cp210",
    "ftdi",
    "ft232",
]


class DeviceResolver(DeviceResolverInterface):
    """
    Resolves "auto" or an explicit port to a device path.

    Args:
        port: Explicit device path or "auto".
        list_ports: Callable returning the currently enumerated ports.
        logger: Logger for discovery diagnostics.
    """

    def __init__(
        self,
        port: str,
        list_ports: Callable[[], List[PortInfo]],
        logger: Optional[LoggerInterface] = None,
    ):
        self._port = port
        self._list_ports = list_ports
        self._logger = logger

    def resolve(self) -> str:
        if self._port.lower() != AUTO:
            return self._port

        try:
            ports = self._list_ports()
        except OSError as e:
            raise DeviceNotFoundError(f"Could not enumerate serial ports: {e}") from e
        for pattern in USB_SERIAL_PATTERNS:
            for p in ports:
                device_lower = p.device.lower()
                desc_lower = p.description.lower()
                hwid_lower = p.hwid.lower()

                if (pattern in device_lower or
                        pattern in desc_lower or
                        pattern in hwid_lower):
                    # Skip Bluetooth and debug ports
                    if "bluetooth" in desc_lower or "debug-console" in device_lower:
                        continue
                    if self._logger:
                        self._logger.info(f"Using device {p.device} ({p.description})")
                    return p.device

        available = ", ".join(p.device for p in ports) or "none"
        raise DeviceNotFoundError(f"No USB serial device found (available: {available})")
