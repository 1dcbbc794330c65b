"""Device bridge: keeps one light's power and color in step across LIFX and HomeKit.

Registration claims the registry slot first and then does its device I/O.
Teardown can run at any point during registration; it marks the record
closed and releases whatever has been opened so far, in a task of its own so
that cancelling the caller does not interrupt it. Registration checks the
flag after every await and releases anything it opens afterwards, so a light
that disappears mid-registration never leaks a subscription or transport.

There is no echo suppression. A HomeKit write is sent to the light, the light
reports the change, and the same value is pushed back to the accessory. The
accessory drops writes that do not change a value, so the loop settles after
one round.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from lifx_homekit.color import to_accessory, to_lighting
from lifx_homekit.const import (
    ACCESSORY_MANUFACTURER,
    COLOR_TRANSITION_SECONDS,
    IDENTIFY_INTERVAL_SECONDS,
    IDENTIFY_TOGGLE_COUNT,
)
from lifx_homekit.correlation import device_correlation_id, get_correlation_id
from lifx_homekit.events import (
    ColorUpdated,
    LabelUpdated,
    PowerUpdated,
    UnrecognizedDeviceEvent,
)
from lifx_homekit.exceptions import AccessoryTransportError, BridgeError
from lifx_homekit.logging_abstraction import get_logger
from lifx_homekit.metrics import (
    record_command,
    record_device_event,
    record_registration,
    record_relay,
    record_teardown,
)
from lifx_homekit.registry import DeviceRegistry
from lifx_homekit.structs import AccessoryServerProtocol, DeviceRecord, LightHandleProtocol
from lifx_homekit.tasks import TaskRunner
from lifx_homekit.utils import format_device_id, send_sigterm

__all__ = ["DeviceBridge"]

logger = get_logger(__name__)


class DeviceBridge:
    """Registers lights as HomeKit lightbulbs and relays state in both directions."""

    lp: str = "DeviceBridge:"

    def __init__(
        self,
        registry: DeviceRegistry,
        runner: TaskRunner,
        server: AccessoryServerProtocol,
        pin: str,
        *,
        fatal_transport_errors: bool = False,
        transition: float = COLOR_TRANSITION_SECONDS,
        identify_interval: float = IDENTIFY_INTERVAL_SECONDS,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.server = server
        self.pin = pin
        self.fatal_transport_errors = fatal_transport_errors
        self.transition = transition
        self.identify_interval = identify_interval

    async def register(self, light: LightHandleProtocol) -> DeviceRecord | None:
        """Bridge a light that has appeared on the network.

        Returns the new record, or None if the light was already bridged, its
        subscription could not be opened, or it was torn down mid-registration.
        """
        lp = f"{self.lp}register:"
        device_id = light.device_id
        dev = format_device_id(device_id)
        record = DeviceRecord(device_id=device_id, light=light)
        if not await self.registry.register(device_id, record):
            record_registration("duplicate")
            return None

        try:
            subscription = await light.subscribe()
        except BridgeError as exc:
            logger.warning(
                "%s Could not subscribe to light, skipping it",
                lp,
                extra={"device_id": dev, "error": str(exc)},
            )
            _ = await self.registry.discard(record)
            record_registration("subscription_failed")
            return None
        record.subscription = subscription
        if record.closed:
            return await self._abandon(record, subscription)

        record.name = await self._read_label(record)
        if record.closed:
            return await self._abandon(record, subscription)
        accessory = self.server.create_accessory(record.name, ACCESSORY_MANUFACTURER, dev)
        record.accessory = accessory
        logger.info(
            "%s Light discovered, creating accessory",
            lp,
            extra={"device_id": dev, "name": record.name},
        )

        await self._push_power(record)
        await self._push_color(record)
        if record.closed:
            return await self._abandon(record, subscription)

        try:
            record.transport = self.server.create_transport(accessory, self.pin)
        except AccessoryTransportError as exc:
            await self._transport_failed(record, exc)
            return None

        self._bind_callbacks(record)
        correlation_id = get_correlation_id() or device_correlation_id(device_id)
        _ = self.runner.spawn(
            self._consume_events(record),
            name=f"DeviceBridge_EVENTS_{dev}",
            owner=record,
            correlation_id=correlation_id,
        )
        _ = self.runner.spawn(
            self._run_transport(record),
            name=f"DeviceBridge_TRANSPORT_{dev}",
            owner=record,
            correlation_id=correlation_id,
        )
        record_registration("registered")
        return record

    async def _abandon(self, record: DeviceRecord, subscription: Any) -> None:
        # Torn down while registering: release what teardown could not see.
        logger.debug(
            "%s Light removed during registration",
            self.lp,
            extra={"device_id": format_device_id(record.device_id)},
        )
        if record.subscription is subscription:
            record.subscription = None
            await self._close_subscription(record, subscription)
        record_registration("cancelled")
        return None

    async def teardown(self, device_id: int) -> bool:
        """Remove a light from HomeKit. Unknown identities are a logged no-op."""
        record = await self.registry.lookup(device_id)
        if record is None:
            logger.debug(
                "%s Cannot remove a light that has not been added",
                self.lp,
                extra={"device_id": format_device_id(device_id)},
            )
            record_teardown("unknown")
            return False
        if record.closing is not None:
            logger.debug("%s Light is already being removed", self.lp, extra={"device_id": format_device_id(device_id)})
            await asyncio.shield(record.closing)
            return False
        await asyncio.shield(self._begin_teardown(record))
        return True

    def _begin_teardown(self, record: DeviceRecord) -> asyncio.Task[None]:
        # Runs in its own task so a cancelled caller cannot leave it half done.
        if record.closing is None:
            record.closed = True
            record.closing = self.runner.spawn(
                self._teardown_record(record),
                name=f"DeviceBridge_TEARDOWN_{format_device_id(record.device_id)}",
                correlation_id=device_correlation_id(record.device_id),
            )
        return record.closing

    async def _teardown_record(self, record: DeviceRecord) -> None:
        dev = format_device_id(record.device_id)
        await self.runner.cancel_owned(record)

        subscription, record.subscription = record.subscription, None
        if subscription is not None:
            await self._close_subscription(record, subscription)

        transport, record.transport = record.transport, None
        if transport is not None:
            try:
                await transport.stop()
            except BridgeError as exc:
                logger.warning(
                    "%s Accessory transport did not stop cleanly",
                    self.lp,
                    extra={"device_id": dev, "error": str(exc)},
                )

        _ = await self.registry.discard(record)
        record_teardown("removed")
        logger.info("%s Light removed", self.lp, extra={"device_id": dev, "name": record.name})

    async def _close_subscription(self, record: DeviceRecord, subscription: Any) -> None:
        try:
            await record.light.close_subscription(subscription)
        except BridgeError as exc:
            logger.warning(
                "%s Failed to close light subscription",
                self.lp,
                extra={"device_id": format_device_id(record.device_id), "error": str(exc)},
            )

    async def _read_label(self, record: DeviceRecord) -> str:
        try:
            label = await record.light.get_label()
        except BridgeError as exc:
            logger.warning(
                "%s Could not read light label",
                self.lp,
                extra={"device_id": format_device_id(record.device_id), "error": str(exc)},
            )
            label = ""
        return label or format_device_id(record.device_id)

    async def _push_power(self, record: DeviceRecord) -> None:
        """Read power from the light and push it to the accessory."""
        try:
            on = await record.light.get_power()
        except BridgeError as exc:
            logger.warning(
                "%s Could not get light power",
                self.lp,
                extra={"device_id": format_device_id(record.device_id), "error": str(exc)},
            )
            return
        if record.closed or record.accessory is None:
            return
        if record.accessory.set_on(on):
            record_relay("to_accessory")
            logger.debug(
                "%s Power pushed to accessory",
                self.lp,
                extra={"device_id": format_device_id(record.device_id), "on": on},
            )

    async def _push_color(self, record: DeviceRecord) -> None:
        """Read color from the light and push it to the accessory."""
        try:
            color = await record.light.get_color()
        except BridgeError as exc:
            logger.warning(
                "%s Could not get light color",
                self.lp,
                extra={"device_id": format_device_id(record.device_id), "error": str(exc)},
            )
            return
        if record.closed or record.accessory is None:
            return
        converted = to_accessory(color)
        if record.accessory.set_color(converted):
            record_relay("to_accessory")
            logger.debug(
                "%s Color pushed to accessory",
                self.lp,
                extra={
                    "device_id": format_device_id(record.device_id),
                    "hue": round(converted.hue, 2),
                    "saturation": round(converted.saturation, 2),
                    "brightness": round(converted.brightness, 2),
                },
            )

    async def _consume_events(self, record: DeviceRecord) -> None:
        """Relay lighting-side events to the accessory, in arrival order."""
        lp = f"{self.lp}events:"
        dev = format_device_id(record.device_id)
        subscription = record.subscription
        if subscription is None:
            return
        try:
            async for event in subscription.events():
                match event:
                    case ColorUpdated():
                        record_device_event("color")
                        await self._push_color(record)
                    case PowerUpdated():
                        record_device_event("power")
                        await self._push_power(record)
                    case LabelUpdated():
                        record_device_event("label")
                        logger.info("%s Light label changed, accessory keeps its name", lp, extra={"device_id": dev})
                    case UnrecognizedDeviceEvent(payload=payload):
                        record_device_event("unrecognized")
                        logger.debug(
                            "%s Ignoring unrecognized event",
                            lp,
                            extra={"device_id": dev, "payload": repr(payload)},
                        )
        except asyncio.CancelledError:
            raise
        except BridgeError:
            logger.exception("%s Light event stream failed", lp, extra={"device_id": dev})
        logger.debug("%s Light event stream ended", lp, extra={"device_id": dev})

    async def _run_transport(self, record: DeviceRecord) -> None:
        transport = record.transport
        if transport is None:
            return
        dev = format_device_id(record.device_id)
        try:
            await transport.start()
        except AccessoryTransportError as exc:
            await self._transport_failed(record, exc)
            return
        logger.info("%s Accessory published", self.lp, extra={"device_id": dev, "name": record.name})

    async def _transport_failed(self, record: DeviceRecord, exc: AccessoryTransportError) -> None:
        """Skip the light, or terminate the process when transport errors are fatal."""
        dev = format_device_id(record.device_id)
        record_registration("transport_failed")
        if self.fatal_transport_errors:
            logger.critical(
                "%s Accessory transport failed to start, terminating",
                self.lp,
                extra={"device_id": dev, "error": str(exc)},
            )
            send_sigterm()
            return
        logger.error(
            "%s Accessory transport failed to start, skipping light",
            self.lp,
            extra={"device_id": dev, "error": str(exc)},
        )
        if not record.closed:
            await asyncio.shield(self._begin_teardown(record))

    def _bind_callbacks(self, record: DeviceRecord) -> None:
        accessory = record.accessory
        if accessory is None:
            return

        def power_changed(on: bool) -> None:
            self._spawn_command(record, "power", self._set_power(record, on))

        def color_changed(_value: float) -> None:
            self._spawn_command(record, "color", self._set_color(record))

        def identify() -> None:
            self._spawn_command(record, "identify", self._identify(record))

        accessory.on_power_changed(power_changed)
        accessory.on_hue_changed(color_changed)
        accessory.on_saturation_changed(color_changed)
        accessory.on_brightness_changed(color_changed)
        accessory.on_identify(identify)

    def _spawn_command(self, record: DeviceRecord, command: str, coro: Coroutine[Any, Any, None]) -> None:
        if record.closed:
            coro.close()
            return
        _ = self.runner.spawn(
            coro,
            name=f"DeviceBridge_{command.upper()}_{format_device_id(record.device_id)}",
            owner=record,
            correlation_id=device_correlation_id(record.device_id),
        )

    async def _set_power(self, record: DeviceRecord, on: bool) -> None:
        dev = format_device_id(record.device_id)
        try:
            await record.light.set_power(on)
        except BridgeError as exc:
            record_command("power", "error")
            logger.warning("%s Could not set light power", self.lp, extra={"device_id": dev, "error": str(exc)})
            return
        record_command("power", "ok")
        record_relay("to_light")
        logger.debug("%s Power sent to light", self.lp, extra={"device_id": dev, "on": on})

    async def _set_color(self, record: DeviceRecord) -> None:
        # The light only accepts a full HSBK, so send all three accessory fields.
        if record.accessory is None:
            return
        dev = format_device_id(record.device_id)
        color = to_lighting(record.accessory.color)
        try:
            await record.light.set_color(color, self.transition)
        except BridgeError as exc:
            record_command("color", "error")
            logger.warning("%s Could not set light color", self.lp, extra={"device_id": dev, "error": str(exc)})
            return
        record_command("color", "ok")
        record_relay("to_light")
        logger.debug(
            "%s Color sent to light",
            self.lp,
            extra={
                "device_id": dev,
                "hue": color.hue,
                "saturation": color.saturation,
                "brightness": color.brightness,
                "kelvin": color.kelvin,
            },
        )

    async def _identify(self, record: DeviceRecord) -> None:
        """Blink the light by toggling its power."""
        dev = format_device_id(record.device_id)
        logger.info("%s Identify requested", self.lp, extra={"device_id": dev})
        try:
            on = await record.light.get_power()
            for _ in range(IDENTIFY_TOGGLE_COUNT):
                on = not on
                await record.light.set_power(on)
                await asyncio.sleep(self.identify_interval)
        except BridgeError as exc:
            record_command("identify", "error")
            logger.warning("%s Identify failed", self.lp, extra={"device_id": dev, "error": str(exc)})
            return
        record_command("identify", "ok")
