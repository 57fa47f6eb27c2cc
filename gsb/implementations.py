"""
Production implementations of the bridge interfaces.

RealSerialPort talks to the sensor board through pyserial, RealFileSystem
and RealClock use the OS, and ConsoleLogger forwards to the logging module.
"""

from typing import Optional, List
from datetime import datetime
import logging
import os
import time

import serial
import serial.tools.list_ports

from .errors import SerialIOError
from .interfaces import (
    SerialPortInterface, FileSystemInterface, ClockInterface, LoggerInterface,
    PortInfo
)

# Upper bound on a buffered partial line; the board never sends lines this long
MAX_LINE_BYTES = 4096


class RealSerialPort(SerialPortInterface):
    """
    Serial connection to the sensor board using pyserial.

    Bytes are buffered until a full newline-terminated line is available,
    so read_line() never hands out half a line when the board is mid-write.
    """

    def __init__(self):
        self._serial: Optional[serial.Serial] = None
        self._device = ""
        self._buffer = bytearray()

    def open(self, port: str, baud: int, timeout: float = 1.0) -> bool:
        self._buffer.clear()
        try:
            self._serial = serial.Serial(port=port, baudrate=baud, timeout=timeout)
        except (serial.SerialException, OSError, ValueError):
            self._serial = None
            return False
        self._device = port
        return True

    def close(self) -> None:
        conn, self._serial = self._serial, None
        self._buffer.clear()
        if conn is None:
            return
        try:
            conn.close()
        except (serial.SerialException, OSError):
            pass

    def is_open(self) -> bool:
        if self._serial is None or not self._serial.is_open:
            return False
        # Unplugging the board removes its device node
        return os.path.exists(self._device)

    def read_line(self) -> Optional[bytes]:
        if self._serial is None:
            return None

        line = self._take_line()
        if line is not None:
            return line

        try:
            waiting = self._serial.in_waiting
            if waiting:
                self._buffer.extend(self._serial.read(waiting))
        except (serial.SerialException, OSError) as e:
            raise SerialIOError(str(e)) from e

        if len(self._buffer) > MAX_LINE_BYTES and b"\n" not in self._buffer:
            # No terminator in sight; hand the junk over as one line
            junk = bytes(self._buffer)
            self._buffer.clear()
            return junk
        return self._take_line()

    def _take_line(self) -> Optional[bytes]:
        end = self._buffer.find(b"\n")
        if end < 0:
            return None
        line = bytes(self._buffer[:end + 1])
        del self._buffer[:end + 1]
        return line

    def list_ports(self) -> List[PortInfo]:
        return [
            PortInfo(device=p.device, description=p.description or "", hwid=p.hwid or "")
            for p in serial.tools.list_ports.comports()
        ]


class RealFileSystem(FileSystemInterface):
    """Local disk."""

    def read_file(self, path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "a" if append else "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

    def ensure_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)


class RealClock(ClockInterface):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now()

    def timestamp(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class ConsoleLogger(LoggerInterface):
    """
    Logger that forwards to the standard logging module.

    Output format and level come from the handler the daemon configures.
    """

    def __init__(self, name: str = "gsb"):
        self._log = logging.getLogger(name)

    def debug(self, msg: str) -> None:
        self._log.debug(msg)

    def info(self, msg: str) -> None:
        self._log.info(msg)

    def warning(self, msg: str) -> None:
        self._log.warning(msg)

    def error(self, msg: str) -> None:
        self._log.error(msg)
