"""Automation transport over ``HAP-python``.

Each light is published as a standalone HomeKit accessory with its own
``AccessoryDriver``, port and pairing state file. The HAP accessory mirrors
a ``LightbulbAccessory`` model: controller writes are applied to the model
on the event loop (firing the bridge callbacks), and model changes made by
the bridge are pushed to the HAP characteristics with ``set_value``, which
notifies paired controllers without calling the setter callbacks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from pathlib import Path
from typing import Any

from pyhap.accessory import Accessory
from pyhap.accessory_driver import AccessoryDriver
from pyhap.const import CATEGORY_LIGHTBULB

from lifx_homekit.accessory import (
    CHAR_BRIGHTNESS,
    CHAR_HUE,
    CHAR_ON,
    CHAR_SATURATION,
    LightbulbAccessory,
)
from lifx_homekit.const import DEFAULT_HAP_PORT, DEFAULT_STATE_DIR
from lifx_homekit.exceptions import AccessoryTransportError, BridgeError
from lifx_homekit.logging_abstraction import get_logger

__all__ = [
    "HapTransport",
    "HomeKitServer",
    "LightbulbHapAccessory",
]

logger = get_logger(__name__)

SERV_LIGHTBULB = "Lightbulb"
SERV_ACCESSORY_INFO = "AccessoryInformation"
CHAR_IDENTIFY = "Identify"
ACCESSORY_MODEL = "Lightbulb"


def _hap_value(char: str, value: Any) -> Any:
    if char == CHAR_ON:
        return bool(value)
    if char == CHAR_BRIGHTNESS:
        return int(round(value))
    return float(value)


class LightbulbHapAccessory(Accessory):
    """HAP-python accessory backed by a ``LightbulbAccessory`` model."""

    category = CATEGORY_LIGHTBULB

    def __init__(self, driver: AccessoryDriver, model: LightbulbAccessory, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(driver, model.name)
        self.model = model
        self._loop = loop
        self.set_info_service(manufacturer=model.manufacturer, model=ACCESSORY_MODEL, serial_number=model.serial)

        serv_light = self.add_preload_service(SERV_LIGHTBULB, chars=[CHAR_ON, CHAR_HUE, CHAR_SATURATION, CHAR_BRIGHTNESS])
        values = model.values()
        self.chars = {
            char: serv_light.configure_char(
                char,
                value=_hap_value(char, values[char]),
                setter_callback=partial(self._remote_write, char),
            )
            for char in (CHAR_ON, CHAR_HUE, CHAR_SATURATION, CHAR_BRIGHTNESS)
        }
        serv_info = self.get_service(SERV_ACCESSORY_INFO)
        serv_info.configure_char(CHAR_IDENTIFY, setter_callback=self._remote_identify)
        model.add_observer(self._push)

    def _remote_write(self, char: str, value: Any) -> None:
        # pyhap may call setters from its executor; the model lives on the loop.
        logger.debug("HAP: %s write", self.model.name, extra={"char": char, "value": value})
        _ = self._loop.call_soon_threadsafe(self.model.apply_remote, char, value)

    def _remote_identify(self, _value: Any) -> None:
        _ = self._loop.call_soon_threadsafe(self.model.identify)

    def _push(self, char: str, value: Any) -> None:
        self.chars[char].set_value(_hap_value(char, value))

    def detach(self) -> None:
        """Stop mirroring the model."""
        self.model.remove_observer(self._push)


class HapTransport:
    """One ``AccessoryDriver`` serving one lightbulb."""

    def __init__(self, accessory: LightbulbAccessory, pin: str, port: int, persist_file: Path) -> None:
        self.accessory = accessory
        self.pin = pin
        self.port = port
        self.persist_file = persist_file
        self.lp: str = f"HapTransport[{accessory.name}]:"
        self._driver: AccessoryDriver | None = None
        self._hap: LightbulbHapAccessory | None = None

    @property
    def running(self) -> bool:
        return self._driver is not None

    async def start(self) -> None:
        if self._driver is not None:
            return
        loop = asyncio.get_running_loop()
        driver: AccessoryDriver | None = None
        hap: LightbulbHapAccessory | None = None
        try:
            driver = AccessoryDriver(
                port=self.port,
                persist_file=str(self.persist_file),
                pincode=self.pin.encode(),
                loop=loop,
            )
            hap = LightbulbHapAccessory(driver, self.accessory, loop)
            driver.add_accessory(accessory=hap)
            await driver.async_start()
        except (OSError, ValueError) as exc:
            await self._discard(driver, hap)
            raise AccessoryTransportError(self.accessory.name, str(exc) or type(exc).__name__) from exc
        self._driver = driver
        self._hap = hap
        logger.info(
            "%s Accessory published",
            self.lp,
            extra={"port": self.port, "serial": self.accessory.serial},
        )

    async def _discard(self, driver: AccessoryDriver | None, hap: LightbulbHapAccessory | None) -> None:
        # Release a driver that failed to start; its advertiser exists from construction.
        if hap is not None:
            hap.detach()
        if driver is None:
            return
        try:
            await driver.async_stop()
        except (OSError, RuntimeError, ValueError) as exc:
            logger.debug("%s Failed driver did not stop cleanly", self.lp, extra={"error": str(exc)})

    async def stop(self) -> None:
        driver, self._driver = self._driver, None
        hap, self._hap = self._hap, None
        if hap is not None:
            hap.detach()
        if driver is None:
            return
        try:
            await driver.async_stop()
        except OSError as exc:
            raise AccessoryTransportError(self.accessory.name, str(exc) or type(exc).__name__) from exc
        logger.debug("%s Accessory unpublished", self.lp, extra={"port": self.port})


class HomeKitServer:
    """Creates accessories and their transports, and runs termination hooks."""

    lp: str = "HomeKitServer:"

    def __init__(self, *, port_base: int = DEFAULT_HAP_PORT, state_dir: str | Path = DEFAULT_STATE_DIR) -> None:
        self.port_base = port_base
        self.state_dir = Path(state_dir).expanduser()
        self._ports: dict[str, int] = {}
        self._hooks: list[Callable[[], Awaitable[None]]] = []
        self._terminated: bool = False

    def create_accessory(self, name: str, manufacturer: str, serial: str) -> LightbulbAccessory:
        return LightbulbAccessory(name, manufacturer, serial)

    def create_transport(self, accessory: LightbulbAccessory, pin: str) -> HapTransport:
        """Build the transport for an accessory. A serial keeps its port for the life of the process."""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AccessoryTransportError(accessory.name, f"state directory unusable: {exc}") from exc
        port = self._ports.get(accessory.serial)
        if port is None:
            port = self.port_base + len(self._ports)
            self._ports[accessory.serial] = port
        return HapTransport(accessory, pin, port, self.state_dir / f"{accessory.serial}.state")

    def on_termination(self, hook: Callable[[], Awaitable[None]]) -> None:
        self._hooks.append(hook)

    async def terminate(self) -> None:
        """Run the termination hooks once, in registration order."""
        if self._terminated:
            return
        self._terminated = True
        for hook in self._hooks:
            try:
                await hook()
            except BridgeError:
                logger.exception("%s Termination hook failed", self.lp)
