"""Exception hierarchy for the LIFX to HomeKit bridge.

Transport adapters translate library errors into these types so the
discovery controller and device bridge only ever handle bridge errors.
"""

from __future__ import annotations

__all__ = [
    "AccessoryTransportError",
    "BridgeError",
    "ColorRangeError",
    "DeviceStateError",
    "DeviceSubscriptionError",
    "InvalidPinError",
    "LightingConnectionError",
]


class BridgeError(Exception):
    """Base class for all bridge errors."""


class LightingConnectionError(BridgeError):
    """Creating the lighting client or its client-level subscription failed.

    Attributes:
        reason: Specific failure reason
        attempts: Number of connection attempts made

    """

    def __init__(self, reason: str, attempts: int = 1) -> None:
        """Initialize connection error with reason and attempt count."""
        self.reason: str = reason
        self.attempts: int = attempts
        super().__init__(f"Lighting connection failed: {reason} after {attempts} attempt(s)")


class DeviceSubscriptionError(BridgeError):
    """Opening a per-device subscription failed. Aborts registration of that device only."""

    def __init__(self, device_id: int, reason: str) -> None:
        """Initialize subscription error."""
        self.device_id: int = device_id
        self.reason: str = reason
        super().__init__(f"Subscription to device {device_id:012x} failed: {reason}")


class DeviceStateError(BridgeError):
    """Reading or writing a device's state failed.

    Attributes:
        device_id: Device identity
        operation: Name of the operation that failed (get_power, set_color, ...)
        reason: Specific failure reason

    """

    def __init__(self, device_id: int, operation: str, reason: str) -> None:
        """Initialize state error."""
        self.device_id: int = device_id
        self.operation: str = operation
        self.reason: str = reason
        super().__init__(f"{operation} on device {device_id:012x} failed: {reason}")


class AccessoryTransportError(BridgeError):
    """The accessory network transport could not be started."""

    def __init__(self, name: str, reason: str) -> None:
        """Initialize transport error."""
        self.name: str = name
        self.reason: str = reason
        super().__init__(f"Accessory transport for '{name}' failed: {reason}")


class InvalidPinError(BridgeError, ValueError):
    """The pairing PIN is not 8 digits."""

    def __init__(self, pin: str) -> None:
        """Initialize PIN error without echoing the whole PIN."""
        self.length: int = len(pin)
        super().__init__(f"PIN must be 8 digits (got {self.length} characters)")


class ColorRangeError(BridgeError, ValueError):
    """A color component is outside its domain."""

    def __init__(self, field: str, value: float, low: float, high: float) -> None:
        """Initialize range error."""
        self.field: str = field
        self.value: float = value
        super().__init__(f"{field}={value} outside [{low}, {high}]")
