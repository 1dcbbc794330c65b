"""Prometheus metrics for the bridge."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

__all__ = [
    "record_client_event",
    "record_command",
    "record_device_event",
    "record_registration",
    "record_relay",
    "record_teardown",
    "set_devices_bridged",
    "start_metrics_server",
]

lifx_homekit_devices_bridged: Final = Gauge(  # type: ignore[assignment]
    "lifx_homekit_devices_bridged",
    "Lights currently bridged into HomeKit",
)

lifx_homekit_registrations_total: Final = Counter(  # type: ignore[assignment]
    "lifx_homekit_registrations_total",
    "Device registration attempts",
    ["outcome"],
)

lifx_homekit_teardowns_total: Final = Counter(  # type: ignore[assignment]
    "lifx_homekit_teardowns_total",
    "Device teardown attempts",
    ["outcome"],
)

lifx_homekit_events_total: Final = Counter(  # type: ignore[assignment]
    "lifx_homekit_events_total",
    "Events received from the lighting network",
    ["source", "kind"],
)

lifx_homekit_commands_total: Final = Counter(  # type: ignore[assignment]
    "lifx_homekit_commands_total",
    "Commands sent to lights",
    ["command", "outcome"],
)

lifx_homekit_relays_total: Final = Counter(  # type: ignore[assignment]
    "lifx_homekit_relays_total",
    "State relayed between the two sides",
    ["direction"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int) -> bool:
    """Start Prometheus HTTP metrics server (idempotent). Returns True if it is running."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True
    return True


def set_devices_bridged(count: int) -> None:
    """Record the current number of bridged lights."""
    lifx_homekit_devices_bridged.set(count)  # type: ignore[no-untyped-call]


def record_registration(outcome: str) -> None:
    """Record a registration attempt."""
    lifx_homekit_registrations_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_teardown(outcome: str) -> None:
    """Record a teardown attempt."""
    lifx_homekit_teardowns_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_client_event(kind: str) -> None:
    """Record a client-level (discovery) event."""
    lifx_homekit_events_total.labels(source="client", kind=kind).inc()  # type: ignore[no-untyped-call]


def record_device_event(kind: str) -> None:
    """Record a per-device event."""
    lifx_homekit_events_total.labels(source="device", kind=kind).inc()  # type: ignore[no-untyped-call]


def record_command(command: str, outcome: str) -> None:
    """Record a command sent to a light."""
    lifx_homekit_commands_total.labels(command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_relay(direction: str) -> None:
    """Record a state relay ("to_accessory" or "to_light")."""
    lifx_homekit_relays_total.labels(direction=direction).inc()  # type: ignore[no-untyped-call]
