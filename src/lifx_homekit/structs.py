"""Core data structures and collaborator protocols for the bridge.

The two transports are supplied from outside the core. The discovery
controller and device bridge only see the protocols declared here; the
``transport`` package provides implementations over ``lifx-async`` and
``HAP-python``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, field_validator

from lifx_homekit.const import (
    DEFAULT_BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_HAP_PORT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STATE_DIR,
)
from lifx_homekit.utils import normalize_pin

if TYPE_CHECKING:
    from lifx_homekit.accessory import LightbulbAccessory
    from lifx_homekit.color import LightingColor
    from lifx_homekit.events import ClientEvent, DeviceEvent

__all__ = [
    "AccessoryServerProtocol",
    "AccessoryTransportProtocol",
    "BridgeEnv",
    "ClientSubscriptionProtocol",
    "DeviceRecord",
    "DeviceSubscriptionProtocol",
    "LightHandleProtocol",
    "LightingClientProtocol",
]


class ClientSubscriptionProtocol(Protocol):
    """Client-level event stream (discovery notifications)."""

    def events(self) -> AsyncIterator[ClientEvent]:
        """Yield events until the subscription is closed."""
        ...


class DeviceSubscriptionProtocol(Protocol):
    """Per-device event stream (state-change notifications)."""

    def events(self) -> AsyncIterator[DeviceEvent]:
        """Yield events until the subscription is closed."""
        ...


class LightHandleProtocol(Protocol):
    """A single light on the lighting network."""

    device_id: int

    async def get_power(self) -> bool:
        """Read the power state."""
        ...

    async def set_power(self, on: bool) -> None:
        """Switch the light on or off."""
        ...

    async def get_color(self) -> LightingColor:
        """Read the current color."""
        ...

    async def set_color(self, color: LightingColor, duration: float) -> None:
        """Fade to a color over ``duration`` seconds."""
        ...

    async def get_label(self) -> str:
        """Read the human-readable label."""
        ...

    async def subscribe(self) -> DeviceSubscriptionProtocol:
        """Open a per-device event subscription."""
        ...

    async def close_subscription(self, subscription: DeviceSubscriptionProtocol) -> None:
        """Close a subscription opened with ``subscribe``."""
        ...


class LightingClientProtocol(Protocol):
    """Client for discovery and control on the lighting network."""

    async def connect(self, *, reliable: bool) -> None:
        """Open the client. Reliable mode waits for acknowledgement of every set."""
        ...

    async def subscribe(self) -> ClientSubscriptionProtocol:
        """Open the client-level event subscription."""
        ...

    async def get_light(self, device_id: int) -> LightHandleProtocol:
        """Resolve a device identity to a light handle."""
        ...

    def set_discovery_interval(self, seconds: float) -> None:
        """Scan the network every ``seconds``."""
        ...

    def set_timeout(self, seconds: float) -> None:
        """Bound every device request to ``seconds``."""
        ...

    async def close_subscription(self, subscription: ClientSubscriptionProtocol) -> None:
        """Close the client-level subscription."""
        ...

    async def close(self) -> None:
        """Close the client and release its resources."""
        ...


class AccessoryTransportProtocol(Protocol):
    """Network transport that makes one accessory visible to HomeKit."""

    async def start(self) -> None:
        """Start advertising and serving the accessory."""
        ...

    async def stop(self) -> None:
        """Stop serving the accessory. Safe to call more than once."""
        ...


class AccessoryServerProtocol(Protocol):
    """Factory side of the automation fabric."""

    def create_accessory(self, name: str, manufacturer: str, serial: str) -> LightbulbAccessory:
        """Build a lightbulb accessory model."""
        ...

    def create_transport(self, accessory: LightbulbAccessory, pin: str) -> AccessoryTransportProtocol:
        """Build the network transport for an accessory."""
        ...

    def on_termination(self, hook: Callable[[], Awaitable[None]]) -> None:
        """Register a hook to run when the process is terminated."""
        ...


@dataclass
class DeviceRecord:
    """Bridge bookkeeping for one light.

    Every task that touches this light's accessory or handle is tracked in
    ``tasks`` so teardown can cancel all of them.
    """

    device_id: int
    light: LightHandleProtocol
    name: str = ""
    accessory: LightbulbAccessory | None = None
    subscription: DeviceSubscriptionProtocol | None = None
    transport: AccessoryTransportProtocol | None = None
    tasks: set[asyncio.Task[Any]] = field(default_factory=set)
    closed: bool = False
    closing: asyncio.Task[None] | None = None
    registered_at: float = field(default_factory=time.time)


class BridgeEnv(BaseModel):
    """Runtime configuration for the bridge.

    Built from environment variables, an optional YAML file and CLI flags by
    ``lifx_homekit.config.load_config``.
    """

    pin: str | None = None
    debug: bool = False
    timeout: float = 0.0
    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS
    hap_port_base: int = DEFAULT_HAP_PORT
    state_dir: str = DEFAULT_STATE_DIR
    metrics_port: int = 0
    fatal_transport_errors: bool = False
    log_format: str = "human"
    log_json_file: str | None = None

    @field_validator("pin")
    @classmethod
    def _validate_pin(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_pin(value)

    @field_validator("timeout", "metrics_port")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            msg = "must be >= 0"
            raise ValueError(msg)
        return value

    @field_validator("discovery_interval", "poll_interval")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            msg = "must be > 0"
            raise ValueError(msg)
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.casefold()
        if value not in ("json", "human", "both"):
            msg = "must be one of json, human, both"
            raise ValueError(msg)
        return value
