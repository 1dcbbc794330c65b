"""Lightbulb accessory model.

Holds the HomeKit-side state of one light (On, Hue, Saturation, Brightness)
independently of the network transport that serves it.

Two kinds of writes reach the model:

- ``set_*`` from the bridge (LIFX -> HomeKit). These update the value and
  notify observers (the transport pushes them to paired controllers). They
  never fire the change callbacks.
- ``apply_remote`` from the transport (HomeKit -> LIFX). These update the
  value and fire the change callbacks registered by the bridge.

Writes that do not change a value are dropped, so applying the same state
twice is not observable the second time.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from lifx_homekit.color import AccessoryColor
from lifx_homekit.const import HAP_HUE_MAX, HAP_PERCENT_MAX
from lifx_homekit.logging_abstraction import get_logger

__all__ = [
    "CHAR_BRIGHTNESS",
    "CHAR_HUE",
    "CHAR_ON",
    "CHAR_SATURATION",
    "LightbulbAccessory",
]

logger = get_logger(__name__)

CHAR_ON = "On"
CHAR_HUE = "Hue"
CHAR_SATURATION = "Saturation"
CHAR_BRIGHTNESS = "Brightness"

ChangeCallback = Callable[[Any], None]
Observer = Callable[[str, Any], None]


class LightbulbAccessory:
    """HomeKit lightbulb state plus change and identify callbacks."""

    def __init__(self, name: str, manufacturer: str, serial: str) -> None:
        self.name: str = name
        self.manufacturer: str = manufacturer
        self.serial: str = serial
        self.lp: str = f"Accessory[{name}]:"
        self._values: dict[str, Any] = {
            CHAR_ON: False,
            CHAR_HUE: 0.0,
            CHAR_SATURATION: 0.0,
            CHAR_BRIGHTNESS: 100.0,
        }
        self._callbacks: dict[str, list[ChangeCallback]] = {key: [] for key in self._values}
        self._identify_callbacks: list[Callable[[], None]] = []
        self._observers: list[Observer] = []

    def get_on(self) -> bool:
        return bool(self._values[CHAR_ON])

    def get_hue(self) -> float:
        return float(self._values[CHAR_HUE])

    def get_saturation(self) -> float:
        return float(self._values[CHAR_SATURATION])

    def get_brightness(self) -> float:
        return float(self._values[CHAR_BRIGHTNESS])

    @property
    def color(self) -> AccessoryColor:
        """Snapshot of all three color fields."""
        return AccessoryColor(
            hue=self.get_hue(),
            saturation=self.get_saturation(),
            brightness=self.get_brightness(),
        )

    def set_on(self, value: bool) -> bool:
        return self._set(CHAR_ON, bool(value))

    def set_hue(self, value: float) -> bool:
        return self._set(CHAR_HUE, _clamp(value, HAP_HUE_MAX))

    def set_saturation(self, value: float) -> bool:
        return self._set(CHAR_SATURATION, _clamp(value, HAP_PERCENT_MAX))

    def set_brightness(self, value: float) -> bool:
        return self._set(CHAR_BRIGHTNESS, _clamp(value, HAP_PERCENT_MAX))

    def set_color(self, color: AccessoryColor) -> bool:
        """Apply all three color fields. Returns True if any of them changed."""
        changed = self.set_hue(color.hue)
        changed = self.set_saturation(color.saturation) or changed
        return self.set_brightness(color.brightness) or changed

    def _set(self, char: str, value: Any) -> bool:
        if self._values[char] == value:
            return False
        self._values[char] = value
        for observer in list(self._observers):
            observer(char, value)
        return True

    def apply_remote(self, char: str, value: Any) -> None:
        """Apply a write that came from a HomeKit controller and fire its callbacks."""
        if char not in self._values:
            logger.debug("%s Ignoring write to unknown characteristic", self.lp, extra={"char": char})
            return
        if char == CHAR_ON:
            value = bool(value)
        else:
            value = float(value)
        self._values[char] = value
        for callback in list(self._callbacks[char]):
            callback(value)

    def identify(self) -> None:
        """Fire the identify callbacks."""
        for callback in list(self._identify_callbacks):
            callback()

    def on_power_changed(self, callback: Callable[[bool], None]) -> None:
        self._callbacks[CHAR_ON].append(callback)

    def on_hue_changed(self, callback: Callable[[float], None]) -> None:
        self._callbacks[CHAR_HUE].append(callback)

    def on_saturation_changed(self, callback: Callable[[float], None]) -> None:
        self._callbacks[CHAR_SATURATION].append(callback)

    def on_brightness_changed(self, callback: Callable[[float], None]) -> None:
        self._callbacks[CHAR_BRIGHTNESS].append(callback)

    def on_identify(self, callback: Callable[[], None]) -> None:
        self._identify_callbacks.append(callback)

    def add_observer(self, observer: Observer) -> None:
        """Receive ``(characteristic, value)`` for every bridge-side change."""
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def values(self) -> dict[str, Any]:
        """Copy of the current characteristic values."""
        return dict(self._values)


def _clamp(value: float, high: float) -> float:
    return float(min(max(value, 0.0), high))
