"""Exceptions raised by Gesture Sensor Bridge components."""


class BridgeError(Exception):
    """Base class for bridge errors."""


class SerialIOError(BridgeError):
    """Raised when an open serial connection fails (read error, unplug)."""


class DeviceNotFoundError(BridgeError):
    """Raised when no candidate device path could be resolved."""


class ConfigError(BridgeError):
    """Raised for invalid or unreadable configuration."""
