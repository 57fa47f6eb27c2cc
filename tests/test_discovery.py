"""Tests for serial device discovery."""

import pytest

from gsb.discovery import DeviceResolver
from gsb.errors import DeviceNotFoundError
from gsb.interfaces import PortInfo
from gsb.mocks import MockLogger


def resolver(port, ports, logger=None):
    return DeviceResolver(port, list_ports=lambda: ports, logger=logger)


def test_explicit_path_returned_unchanged():
    r = resolver("/dev/ttyS3", [])
    assert r.resolve() == "/dev/ttyS3"


def test_auto_prefers_ttyusb_over_ttyacm():
    ports = [
        PortInfo("/dev/ttyACM0", "Arduino Uno", "USB VID:PID=2341:0043"),
        PortInfo("/dev/ttyUSB0", "USB Serial", "USB VID:PID=1A86:7523"),
    ]
    assert resolver("auto", ports).resolve() == "/dev/ttyUSB0"


def test_auto_is_case_insensitive():
    ports = [PortInfo("/dev/ttyACM0", "Arduino Uno", "")]
    assert resolver("AUTO", ports).resolve() == "/dev/ttyACM0"


def test_auto_matches_adapter_hwid():
    ports = [
        PortInfo("/dev/ttyS0", "n/a", "PNP0501"),
        PortInfo("/dev/serial-7", "USB2.0-Serial", "USB VID:PID=1A86:7523 CH340"),
    ]
    assert resolver("auto", ports).resolve() == "/dev/serial-7"


def test_auto_skips_bluetooth_and_debug_console():
    logger = MockLogger()
    ports = [
        PortInfo("/dev/cu.Bluetooth-Incoming-Port", "Bluetooth usbserial", ""),
        PortInfo("/dev/cu.debug-console", "usbmodem debug", ""),
        PortInfo("/dev/cu.usbmodem1101", "IOUSBHostDevice", ""),
    ]
    assert resolver("auto", ports, logger).resolve() == "/dev/cu.usbmodem1101"
    assert logger.contains("Using device /dev/cu.usbmodem1101")


def test_auto_without_usb_device_raises():
    ports = [PortInfo("/dev/ttyS0", "n/a", "PNP0501")]
    with pytest.raises(DeviceNotFoundError, match="available: /dev/ttyS0"):
        resolver("auto", ports).resolve()


def test_auto_rescans_on_every_call():
    ports = []
    r = resolver("auto", ports)
    with pytest.raises(DeviceNotFoundError, match="available: none"):
        r.resolve()

    ports.append(PortInfo("/dev/ttyUSB1", "USB Serial", ""))
    assert r.resolve() == "/dev/ttyUSB1"


def test_enumeration_error_becomes_device_not_found():
    def broken():
        raise PermissionError(13, "Permission denied", "/sys/class/tty")

    r = DeviceResolver("auto", list_ports=broken)
    with pytest.raises(DeviceNotFoundError, match="Could not enumerate serial ports"):
        r.resolve()
