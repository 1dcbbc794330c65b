"""Color model conversion between LIFX HSBK and HomeKit Lightbulb values.

LIFX encodes hue, saturation and brightness as unsigned 16-bit integers and
carries a color temperature in Kelvin. HomeKit uses hue in degrees and
saturation/brightness as percentages, with no temperature on this service.

    LIFX                      HomeKit
    hue        0..65535   <-> hue        0..360
    saturation 0..65535   <-> saturation 0..100
    brightness 0..65535   <-> brightness 0..100
    kelvin     2500..9000     (not exposed, always 3500 on the way back)

HomeKit -> LIFX rounds half up so both directions agree across implementations.
LIFX -> HomeKit keeps the exact quotient; the HomeKit transport rounds
brightness to an integer at its own boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from lifx_homekit.const import (
    HAP_HUE_MAX,
    HAP_PERCENT_MAX,
    HSBK_KELVIN_DEFAULT,
    HSBK_KELVIN_MAX,
    HSBK_KELVIN_MIN,
    HSBK_MAX,
)
from lifx_homekit.exceptions import ColorRangeError

__all__ = [
    "AccessoryColor",
    "LightingColor",
    "to_accessory",
    "to_lighting",
    "validate_kelvin",
]


def _check(field: str, value: float, low: float, high: float) -> None:
    if not low <= value <= high:
        raise ColorRangeError(field, value, low, high)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def validate_kelvin(kelvin: int) -> int:
    """Return kelvin if it lies in the LIFX range, else raise ColorRangeError."""
    _check("kelvin", kelvin, HSBK_KELVIN_MIN, HSBK_KELVIN_MAX)
    return kelvin


@dataclass(frozen=True, slots=True)
class LightingColor:
    """Color as the lighting network represents it."""

    hue: int
    saturation: int
    brightness: int
    kelvin: int = HSBK_KELVIN_DEFAULT

    def __post_init__(self) -> None:
        _check("hue", self.hue, 0, HSBK_MAX)
        _check("saturation", self.saturation, 0, HSBK_MAX)
        _check("brightness", self.brightness, 0, HSBK_MAX)
        _ = validate_kelvin(self.kelvin)


@dataclass(frozen=True, slots=True)
class AccessoryColor:
    """Color as the HomeKit Lightbulb service represents it."""

    hue: float
    saturation: float
    brightness: float

    def __post_init__(self) -> None:
        _check("hue", self.hue, 0, HAP_HUE_MAX)
        _check("saturation", self.saturation, 0, HAP_PERCENT_MAX)
        _check("brightness", self.brightness, 0, HAP_PERCENT_MAX)


def to_accessory(color: LightingColor) -> AccessoryColor:
    """Convert a LIFX color to HomeKit units. Kelvin is dropped."""
    return AccessoryColor(
        hue=color.hue * HAP_HUE_MAX / HSBK_MAX,
        saturation=color.saturation * HAP_PERCENT_MAX / HSBK_MAX,
        brightness=color.brightness * HAP_PERCENT_MAX / HSBK_MAX,
    )


def to_lighting(color: AccessoryColor) -> LightingColor:
    """Convert a HomeKit color to LIFX units with the default Kelvin."""
    return LightingColor(
        hue=_round_half_up(HSBK_MAX * color.hue / HAP_HUE_MAX),
        saturation=_round_half_up(HSBK_MAX * color.saturation / HAP_PERCENT_MAX),
        brightness=_round_half_up(HSBK_MAX * color.brightness / HAP_PERCENT_MAX),
        kelvin=HSBK_KELVIN_DEFAULT,
    )
