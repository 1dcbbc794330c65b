"""Lighting transport over ``lifx-async``.

The library has no push notifications, so both event streams are driven by
polling:

- a scan task runs ``lifx.discover()`` every discovery interval and emits
  ``DeviceAppeared`` for a new serial and ``DeviceDisappeared`` once a serial
  has been missing from consecutive scans
- each device subscription runs a poll task that reads color, power and
  label and emits an event for each value that changed since the last poll

Library and socket errors are translated to bridge exceptions here.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Coroutine
from typing import Any, Generic, TypeVar

from lifx import HSBK, Light, LifxError, discover
from lifx.network.connection import DeviceConnection

from lifx_homekit.color import LightingColor
from lifx_homekit.const import (
    DEFAULT_BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    DISCOVERY_SCAN_TIMEOUT,
    HAP_HUE_MAX,
    HSBK_KELVIN_MAX,
    HSBK_KELVIN_MIN,
    HSBK_MAX,
    MISSED_SCANS_BEFORE_EXPIRY,
)
from lifx_homekit.events import (
    ClientEvent,
    ColorUpdated,
    DeviceAppeared,
    DeviceDisappeared,
    DeviceEvent,
    LabelUpdated,
    PowerUpdated,
)
from lifx_homekit.exceptions import DeviceStateError, LightingConnectionError
from lifx_homekit.instrumentation import timed_async
from lifx_homekit.logging_abstraction import get_logger
from lifx_homekit.utils import format_device_id, parse_serial

__all__ = [
    "LifxClientSubscription",
    "LifxDeviceSubscription",
    "LifxLanClient",
    "LifxLight",
    "from_hsbk",
    "to_hsbk",
]

logger = get_logger(__name__)

E = TypeVar("E")
T = TypeVar("T")

_CLOSED = object()


def from_hsbk(hsbk: HSBK) -> LightingColor:
    """Convert a ``lifx`` HSBK (degrees, 0..1 fractions) to 16-bit fields."""
    return LightingColor(
        hue=min(HSBK_MAX, round(hsbk.hue * HSBK_MAX / HAP_HUE_MAX)),
        saturation=min(HSBK_MAX, round(hsbk.saturation * HSBK_MAX)),
        brightness=min(HSBK_MAX, round(hsbk.brightness * HSBK_MAX)),
        kelvin=min(max(int(hsbk.kelvin), HSBK_KELVIN_MIN), HSBK_KELVIN_MAX),
    )


def to_hsbk(color: LightingColor) -> HSBK:
    """Convert 16-bit fields to a ``lifx`` HSBK."""
    return HSBK(
        hue=color.hue * HAP_HUE_MAX / HSBK_MAX,
        saturation=color.saturation / HSBK_MAX,
        brightness=color.brightness / HSBK_MAX,
        kelvin=color.kelvin,
    )


class _EventStream(Generic[E]):
    """Single-consumer queue of events that ends when closed."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed: bool = False

    def put(self, event: E) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[E]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class LifxClientSubscription(_EventStream[ClientEvent]):
    """Discovery events for the whole network."""


class LifxDeviceSubscription(_EventStream[DeviceEvent]):
    """State-change events for one light."""

    def __init__(self, device_id: int) -> None:
        super().__init__()
        self.device_id: int = device_id
        self.task: asyncio.Task[None] | None = None


class LifxLight:
    """Handle for one discovered light."""

    def __init__(self, client: LifxLanClient, device: Light, device_id: int) -> None:
        self.client = client
        self.device = device
        self.device_id: int = device_id
        self.lp: str = f"LifxLight[{format_device_id(device_id)}]:"
        self._subscriptions: set[LifxDeviceSubscription] = set()

    async def _request(self, operation: str, coro: Coroutine[Any, Any, T]) -> T:
        timeout = self.client.timeout
        try:
            if timeout > 0:
                return await asyncio.wait_for(coro, timeout)
            return await coro
        except (LifxError, OSError, TimeoutError) as exc:
            raise DeviceStateError(self.device_id, operation, str(exc) or type(exc).__name__) from exc

    @timed_async("lifx_get_power")
    async def get_power(self) -> bool:
        return bool(await self._request("get_power", self.device.get_power()))

    @timed_async("lifx_set_power")
    async def set_power(self, on: bool) -> None:
        _ = await self._request("set_power", self.device.set_power(on))

    @timed_async("lifx_get_color")
    async def get_color(self) -> LightingColor:
        hsbk, _power, _label = await self._request("get_color", self.device.get_color())
        return from_hsbk(hsbk)

    @timed_async("lifx_set_color")
    async def set_color(self, color: LightingColor, duration: float) -> None:
        _ = await self._request("set_color", self.device.set_color(to_hsbk(color), duration=duration))

    @timed_async("lifx_get_label")
    async def get_label(self) -> str:
        return str(await self._request("get_label", self.device.get_label()))

    async def subscribe(self) -> LifxDeviceSubscription:
        subscription = LifxDeviceSubscription(self.device_id)
        subscription.task = asyncio.create_task(
            self._poll(subscription),
            name=f"LifxLight_POLL_{format_device_id(self.device_id)}",
        )
        self._subscriptions.add(subscription)
        logger.debug("%s Subscription opened", self.lp, extra={"open": len(self._subscriptions)})
        return subscription

    async def close_subscription(self, subscription: LifxDeviceSubscription) -> None:
        self._subscriptions.discard(subscription)
        subscription.close()
        task = subscription.task
        if task is not None and task is not asyncio.current_task():
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                _ = await asyncio.gather(task, return_exceptions=True)
        logger.debug("%s Subscription closed", self.lp, extra={"open": len(self._subscriptions)})

    async def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            await self.close_subscription(subscription)

    async def _poll(self, subscription: LifxDeviceSubscription) -> None:
        """Emit an event for every field that changed between two polls.

        A poller that dies on an unexpected error closes the subscription, so
        the consumer sees the stream end instead of a light that goes quiet.
        """
        try:
            await self._poll_changes(subscription)
        except Exception as exc:
            logger.exception(
                "%s Polling stopped unexpectedly",
                self.lp,
                extra={"device_id": format_device_id(self.device_id), "error": str(exc) or type(exc).__name__},
            )
            subscription.close()

    async def _poll_changes(self, subscription: LifxDeviceSubscription) -> None:
        last: tuple[LightingColor, bool, str] | None = None
        while not subscription.closed:
            try:
                hsbk, power, label = await self._request("poll", self.device.get_color())
            except DeviceStateError as exc:
                logger.debug("%s Poll failed", self.lp, extra={"error": exc.reason})
            else:
                current = (from_hsbk(hsbk), bool(power), str(label))
                if last is not None:
                    if current[0] != last[0]:
                        subscription.put(ColorUpdated(self.device_id))
                    if current[1] != last[1]:
                        subscription.put(PowerUpdated(self.device_id))
                    if current[2] != last[2]:
                        subscription.put(LabelUpdated(self.device_id))
                last = current
            await asyncio.sleep(self.client.poll_interval)


class LifxLanClient:
    """Lighting client for LIFX lights on the local network."""

    lp: str = "LifxLanClient:"

    def __init__(
        self,
        *,
        broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        scan_timeout: float = DISCOVERY_SCAN_TIMEOUT,
    ) -> None:
        self.broadcast_address = broadcast_address
        self.poll_interval = poll_interval
        self.scan_timeout = scan_timeout
        self.discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
        self.timeout: float = 0.0
        self.reliable: bool = True
        self._devices: dict[int, Light] = {}
        self._lights: dict[int, LifxLight] = {}
        self._missed: dict[int, int] = {}
        self._subscription: LifxClientSubscription | None = None
        self._scan_task: asyncio.Task[None] | None = None

    async def connect(self, *, reliable: bool) -> None:
        """Run a first scan to check the network is usable.

        ``lifx-async`` waits for an acknowledgement on every set, which is
        the reliable mode; unreliable mode is not offered by the library.
        """
        self.reliable = reliable
        found = await self._scan()
        self._merge(found)
        logger.info(
            "%s Connected",
            self.lp,
            extra={"lights": len(found), "broadcast_address": self.broadcast_address},
        )

    def set_discovery_interval(self, seconds: float) -> None:
        self.discovery_interval = seconds

    def set_timeout(self, seconds: float) -> None:
        self.timeout = seconds

    async def subscribe(self) -> LifxClientSubscription:
        """Open the discovery stream. Lights already known are announced first."""
        if self._subscription is not None and not self._subscription.closed:
            return self._subscription
        subscription = LifxClientSubscription()
        for device_id in self._devices:
            subscription.put(DeviceAppeared(device_id))
        self._subscription = subscription
        self._scan_task = asyncio.create_task(self._scan_loop(), name="LifxLanClient_SCAN")
        return subscription

    async def get_light(self, device_id: int) -> LifxLight:
        light = self._lights.get(device_id)
        if light is not None:
            return light
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceStateError(device_id, "get_light", "light has not been discovered")
        light = LifxLight(self, device, device_id)
        self._lights[device_id] = light
        return light

    async def close_subscription(self, subscription: LifxClientSubscription) -> None:
        subscription.close()
        if subscription is self._subscription:
            self._subscription = None
        await self._stop_scanning()

    async def close(self) -> None:
        await self._stop_scanning()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for light in list(self._lights.values()):
            await light.close_all()
        self._lights.clear()
        self._devices.clear()
        await DeviceConnection.close_all_connections()
        logger.debug("%s Closed", self.lp)

    async def _stop_scanning(self) -> None:
        task, self._scan_task = self._scan_task, None
        if task is None or task is asyncio.current_task():
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            _ = await asyncio.gather(task, return_exceptions=True)

    @timed_async("lifx_discover")
    async def _scan(self) -> dict[int, Light]:
        found: dict[int, Light] = {}
        try:
            async for device in discover(timeout=self.scan_timeout, broadcast_address=self.broadcast_address):
                if not isinstance(device, Light):
                    continue
                found[parse_serial(device.serial)] = device
        except (LifxError, OSError) as exc:
            raise LightingConnectionError(str(exc) or type(exc).__name__) from exc
        return found

    def _merge(self, found: dict[int, Light]) -> None:
        """Fold one scan result into the known set and emit discovery events."""
        for device_id, device in found.items():
            self._missed.pop(device_id, None)
            if device_id not in self._devices:
                self._devices[device_id] = device
                logger.debug("%s Light found", self.lp, extra={"device_id": format_device_id(device_id)})
                if self._subscription is not None:
                    self._subscription.put(DeviceAppeared(device_id))

        for device_id in [known for known in self._devices if known not in found]:
            missed = self._missed.get(device_id, 0) + 1
            if missed < MISSED_SCANS_BEFORE_EXPIRY:
                self._missed[device_id] = missed
                continue
            self._missed.pop(device_id, None)
            del self._devices[device_id]
            self._lights.pop(device_id, None)
            logger.debug("%s Light lost", self.lp, extra={"device_id": format_device_id(device_id)})
            if self._subscription is not None:
                self._subscription.put(DeviceDisappeared(device_id))

    async def _scan_loop(self) -> None:
        while True:
            await asyncio.sleep(self.discovery_interval)
            try:
                found = await self._scan()
            except LightingConnectionError as exc:
                logger.warning("%s Discovery scan failed", self.lp, extra={"error": exc.reason})
                continue
            self._merge(found)
