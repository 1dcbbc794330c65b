"""In-memory stand-ins for the two transports, so the discovery controller and
device bridge can be driven without a network.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from lifx_homekit.accessory import LightbulbAccessory
from lifx_homekit.color import LightingColor
from lifx_homekit.events import ColorUpdated, PowerUpdated
from lifx_homekit.exceptions import (
    AccessoryTransportError,
    DeviceStateError,
    DeviceSubscriptionError,
    LightingConnectionError,
)

TEST_PIN = "123-45-678"

_CLOSED = object()


async def settle(rounds: int = 10) -> None:
    """Let spawned tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeStream:
    """Event stream that can be fed from the test."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def put(self, event: object) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[Any]:
        while True:
            item = await self.queue.get()
            if item is _CLOSED:
                return
            yield item


class FakeLight:
    """Light handle with in-memory state.

    ``subscribe_gate`` and ``color_gate`` hold ``subscribe`` and ``get_color``
    until the test sets them, to open race windows.
    """

    def __init__(
        self,
        device_id: int,
        *,
        label: str = "Kitchen",
        power: bool = False,
        color: LightingColor | None = None,
    ) -> None:
        self.device_id = device_id
        self.label = label
        self.power = power
        self.color = color or LightingColor(hue=0, saturation=0, brightness=65535)
        self.subscriptions: list[FakeStream] = []
        self.power_calls: list[bool] = []
        self.color_calls: list[tuple[LightingColor, float]] = []
        self.fail_subscribe = False
        self.fail_reads = False
        self.fail_writes = False
        self.emit_on_set = False
        self.subscribe_gate: asyncio.Event | None = None
        self.color_gate: asyncio.Event | None = None

    @property
    def open_subscriptions(self) -> int:
        return sum(1 for stream in self.subscriptions if not stream.closed)

    def emit(self, event: object) -> None:
        for stream in self.subscriptions:
            stream.put(event)

    async def get_power(self) -> bool:
        if self.fail_reads:
            raise DeviceStateError(self.device_id, "get_power", "unreachable")
        return self.power

    async def set_power(self, on: bool) -> None:
        if self.fail_writes:
            raise DeviceStateError(self.device_id, "set_power", "unreachable")
        self.power_calls.append(on)
        self.power = on
        if self.emit_on_set:
            self.emit(PowerUpdated(self.device_id))

    async def get_color(self) -> LightingColor:
        if self.color_gate is not None:
            await self.color_gate.wait()
        if self.fail_reads:
            raise DeviceStateError(self.device_id, "get_color", "unreachable")
        return self.color

    async def set_color(self, color: LightingColor, duration: float) -> None:
        if self.fail_writes:
            raise DeviceStateError(self.device_id, "set_color", "unreachable")
        self.color_calls.append((color, duration))
        self.color = color
        if self.emit_on_set:
            self.emit(ColorUpdated(self.device_id))

    async def get_label(self) -> str:
        if self.fail_reads:
            raise DeviceStateError(self.device_id, "get_label", "unreachable")
        return self.label

    async def subscribe(self) -> FakeStream:
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        if self.fail_subscribe:
            raise DeviceSubscriptionError(self.device_id, "refused")
        stream = FakeStream()
        self.subscriptions.append(stream)
        return stream

    async def close_subscription(self, subscription: FakeStream) -> None:
        subscription.close()


class FakeLightingClient:
    """Lighting client over a dict of ``FakeLight``."""

    def __init__(self, lights: dict[int, FakeLight] | None = None, *, fail_connect: bool = False) -> None:
        self.lights = lights if lights is not None else {}
        self.fail_connect = fail_connect
        self.fail_get_light = False
        self.reliable: bool | None = None
        self.discovery_interval: float | None = None
        self.timeout: float | None = None
        self.stream: FakeStream | None = None
        self.closed_subscriptions: list[FakeStream] = []
        self.close_calls = 0

    async def connect(self, *, reliable: bool) -> None:
        if self.fail_connect:
            raise LightingConnectionError("network unreachable")
        self.reliable = reliable

    async def subscribe(self) -> FakeStream:
        self.stream = FakeStream()
        return self.stream

    async def get_light(self, device_id: int) -> FakeLight:
        if self.fail_get_light or device_id not in self.lights:
            raise DeviceStateError(device_id, "get_light", "not found")
        return self.lights[device_id]

    def set_discovery_interval(self, seconds: float) -> None:
        self.discovery_interval = seconds

    def set_timeout(self, seconds: float) -> None:
        self.timeout = seconds

    async def close_subscription(self, subscription: FakeStream) -> None:
        subscription.close()
        self.closed_subscriptions.append(subscription)

    async def close(self) -> None:
        self.close_calls += 1


class FakeTransport:
    def __init__(self, accessory: LightbulbAccessory, pin: str, *, fail: bool = False) -> None:
        self.accessory = accessory
        self.pin = pin
        self.fail = fail
        self.started = False
        self.stop_calls = 0

    async def start(self) -> None:
        if self.fail:
            raise AccessoryTransportError(self.accessory.name, "address in use")
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.started = False


class FakeAccessoryServer:
    """Accessory server that hands out real accessory models and fake transports."""

    def __init__(self) -> None:
        self.accessories: list[LightbulbAccessory] = []
        self.transports: list[FakeTransport] = []
        self.hooks: list[Callable[[], Awaitable[None]]] = []
        self.fail_transports = False
        self.fail_create = False
        self.terminate_calls = 0

    def create_accessory(self, name: str, manufacturer: str, serial: str) -> LightbulbAccessory:
        accessory = LightbulbAccessory(name, manufacturer, serial)
        self.accessories.append(accessory)
        return accessory

    def create_transport(self, accessory: LightbulbAccessory, pin: str) -> FakeTransport:
        if self.fail_create:
            raise AccessoryTransportError(accessory.name, "state directory unusable")
        transport = FakeTransport(accessory, pin, fail=self.fail_transports)
        self.transports.append(transport)
        return transport

    def on_termination(self, hook: Callable[[], Awaitable[None]]) -> None:
        self.hooks.append(hook)

    async def terminate(self) -> None:
        self.terminate_calls += 1
        for hook in self.hooks:
            await hook()


