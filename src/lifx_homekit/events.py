"""Event types surfaced by the lighting transport.

Two closed families, one per event source:

- ``ClientEvent``: discovery notifications from the client-level subscription
- ``DeviceEvent``: state-change notifications from a per-device subscription

Consumers ``match`` on these exhaustively. The ``Unrecognized*`` arms exist so
that a transport adapter can surface something it could not classify without
raising; consumers log and ignore them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

__all__ = [
    "ClientEvent",
    "ColorUpdated",
    "DeviceAppeared",
    "DeviceDisappeared",
    "DeviceEvent",
    "LabelUpdated",
    "PowerUpdated",
    "UnrecognizedClientEvent",
    "UnrecognizedDeviceEvent",
]


@dataclass(frozen=True, slots=True)
class DeviceAppeared:
    device_id: int


@dataclass(frozen=True, slots=True)
class DeviceDisappeared:
    device_id: int


@dataclass(frozen=True, slots=True)
class UnrecognizedClientEvent:
    payload: Any


@dataclass(frozen=True, slots=True)
class ColorUpdated:
    device_id: int


@dataclass(frozen=True, slots=True)
class PowerUpdated:
    device_id: int


@dataclass(frozen=True, slots=True)
class LabelUpdated:
    device_id: int


@dataclass(frozen=True, slots=True)
class UnrecognizedDeviceEvent:
    device_id: int
    payload: Any


type ClientEvent = DeviceAppeared | DeviceDisappeared | UnrecognizedClientEvent
type DeviceEvent = ColorUpdated | PowerUpdated | LabelUpdated | UnrecognizedDeviceEvent
