"""Tests for the device bridge: registration, teardown and relaying in both directions."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from unittest.mock import patch

import pytest

from lifx_homekit.accessory import CHAR_BRIGHTNESS, CHAR_HUE, CHAR_ON, CHAR_SATURATION
from lifx_homekit.bridge import DeviceBridge
from lifx_homekit.color import LightingColor
from lifx_homekit.events import (
    ColorUpdated,
    LabelUpdated,
    PowerUpdated,
    UnrecognizedDeviceEvent,
)
from lifx_homekit.registry import DeviceRegistry
from lifx_homekit.tasks import TaskRunner

from tests.helpers.fakes import TEST_PIN, FakeAccessoryServer, FakeLight, settle


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_builds_accessory_from_light_state(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(label="Desk", power=True, color=LightingColor(hue=65535, saturation=65535, brightness=0))

        record = await bridge.register(light)
        await settle()

        assert record is not None
        assert await registry.lookup(light.device_id) is record
        assert light.open_subscriptions == 1
        accessory = server.accessories[0]
        assert accessory.name == "Desk"
        assert accessory.manufacturer == "LIFX"
        assert accessory.serial == f"{light.device_id:012x}"
        assert accessory.get_on() is True
        assert accessory.get_hue() == 360.0
        assert accessory.get_saturation() == 100.0
        assert accessory.get_brightness() == 0.0
        assert server.transports[0].started is True
        assert server.transports[0].pin == TEST_PIN

    @pytest.mark.asyncio
    async def test_duplicate_register_is_noop(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        """Test that registering the same identity twice leaves one record and one subscription."""
        light = make_light()

        first = await bridge.register(light)
        second = await bridge.register(light)

        assert first is not None
        assert second is None
        assert len(registry) == 1
        assert light.open_subscriptions == 1
        assert len(server.accessories) == 1

    @pytest.mark.asyncio
    async def test_subscription_failure_aborts_only_that_light(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        make_light: Callable[..., FakeLight],
    ):
        broken = make_light()
        broken.fail_subscribe = True
        healthy = make_light()

        assert await bridge.register(broken) is None
        assert await bridge.register(healthy) is not None

        assert broken.device_id not in registry
        assert healthy.device_id in registry

    @pytest.mark.asyncio
    async def test_state_read_failure_keeps_default_state(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(power=True)
        light.fail_reads = True

        record = await bridge.register(light)

        assert record is not None
        assert light.device_id in registry
        accessory = server.accessories[0]
        assert accessory.name == f"{light.device_id:012x}"
        assert accessory.get_on() is False
        assert accessory.get_brightness() == 100.0


class TestTeardown:
    @pytest.mark.asyncio
    async def test_teardown_unknown_is_noop(self, bridge: DeviceBridge, registry: DeviceRegistry):
        """Test that a disappeared event for an unknown identity changes nothing."""
        assert await bridge.teardown(0xABCDEF) is False
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_teardown_releases_everything(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        runner: TaskRunner,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        record = await bridge.register(light)
        await settle()
        assert record is not None
        assert record.tasks

        assert await bridge.teardown(light.device_id) is True

        assert light.device_id not in registry
        assert light.open_subscriptions == 0
        assert server.transports[0].stop_calls == 1
        assert record.closed
        assert not record.tasks
        assert runner.active == 0

    @pytest.mark.asyncio
    async def test_double_teardown(self, bridge: DeviceBridge, make_light: Callable[..., FakeLight]):
        light = make_light()
        _ = await bridge.register(light)
        assert await bridge.teardown(light.device_id) is True
        assert await bridge.teardown(light.device_id) is False

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_interrupt_teardown(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        _ = await bridge.register(light)
        await settle()

        removing = asyncio.create_task(bridge.teardown(light.device_id))
        await asyncio.sleep(0)
        _ = removing.cancel()
        with pytest.raises(asyncio.CancelledError):
            await removing
        await settle()

        assert light.device_id not in registry
        assert light.open_subscriptions == 0

    @pytest.mark.asyncio
    async def test_disappear_during_initial_read(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        """Test appeared then disappeared before the first state read completes leaves nothing behind."""
        light = make_light()
        light.color_gate = asyncio.Event()

        registering = asyncio.create_task(bridge.register(light))
        await settle()
        assert light.device_id in registry

        assert await bridge.teardown(light.device_id) is True
        light.color_gate.set()
        assert await registering is None

        assert light.device_id not in registry
        assert light.open_subscriptions == 0
        assert server.transports == []

    @pytest.mark.asyncio
    async def test_disappear_while_subscribing(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        light.subscribe_gate = asyncio.Event()

        registering = asyncio.create_task(bridge.register(light))
        await settle()
        assert await bridge.teardown(light.device_id) is True
        light.subscribe_gate.set()
        assert await registering is None

        assert light.device_id not in registry
        assert len(light.subscriptions) == 1
        assert light.open_subscriptions == 0

    @pytest.mark.asyncio
    async def test_subscriptions_match_records(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        make_light: Callable[..., FakeLight],
    ):
        """Test that open subscriptions equal registry records over a random appear/disappear run."""
        lights = [make_light() for _ in range(4)]
        rng = random.Random(1234)

        for _ in range(60):
            light = rng.choice(lights)
            if rng.random() < 0.6:
                _ = await bridge.register(light)
            else:
                _ = await bridge.teardown(light.device_id)
            await settle()
            assert sum(item.open_subscriptions for item in lights) == len(registry)


class TestTransportFailure:
    @pytest.mark.asyncio
    async def test_failed_transport_skips_light(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        server.fail_transports = True
        light = make_light()

        with patch("lifx_homekit.bridge.send_sigterm") as mock_sigterm:
            _ = await bridge.register(light)
            await settle()

        mock_sigterm.assert_not_called()
        assert light.device_id not in registry
        assert light.open_subscriptions == 0

    @pytest.mark.asyncio
    async def test_transport_creation_failure_releases_slot(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        """Test that a light whose transport cannot be built is skipped and can be registered again."""
        server.fail_create = True
        light = make_light()

        with patch("lifx_homekit.bridge.send_sigterm") as mock_sigterm:
            record = await bridge.register(light)
            await settle()

        assert record is None
        mock_sigterm.assert_not_called()
        assert light.device_id not in registry
        assert light.open_subscriptions == 0

        server.fail_create = False
        record = await bridge.register(light)
        await settle()

        assert record is not None
        assert light.device_id in registry
        assert server.transports[0].started

    @pytest.mark.asyncio
    async def test_failed_transport_can_terminate(
        self,
        registry: DeviceRegistry,
        runner: TaskRunner,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        bridge = DeviceBridge(registry, runner, server, TEST_PIN, fatal_transport_errors=True)
        server.fail_transports = True

        with patch("lifx_homekit.bridge.send_sigterm") as mock_sigterm:
            _ = await bridge.register(make_light())
            await settle()

        mock_sigterm.assert_called_once_with()
        await runner.shutdown()


class TestHomeKitToLight:
    @pytest.mark.asyncio
    async def test_color_write_sends_full_tuple(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        """Test that each color write sends hue, saturation and brightness together with 3500K."""
        light = make_light()
        _ = await bridge.register(light)
        accessory = server.accessories[0]

        accessory.apply_remote(CHAR_HUE, 180)
        accessory.apply_remote(CHAR_SATURATION, 50)
        accessory.apply_remote(CHAR_BRIGHTNESS, 75)
        await settle()

        assert len(light.color_calls) == 3
        color, duration = light.color_calls[-1]
        assert color == LightingColor(hue=32768, saturation=32768, brightness=49151, kelvin=3500)
        assert duration == 1.0

    @pytest.mark.asyncio
    async def test_power_write(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(power=False)
        _ = await bridge.register(light)

        server.accessories[0].apply_remote(CHAR_ON, True)
        await settle()

        assert light.power_calls == [True]
        assert light.color_calls == []

    @pytest.mark.asyncio
    async def test_write_failure_is_contained(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        _ = await bridge.register(light)
        light.fail_writes = True

        server.accessories[0].apply_remote(CHAR_ON, True)
        await settle()

        assert light.device_id in registry

    @pytest.mark.asyncio
    async def test_identify_blinks_four_times(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(power=True)
        _ = await bridge.register(light)
        accessory = server.accessories[0]

        accessory.identify()
        await settle(30)

        assert light.power_calls == [False, True, False, True]
        assert accessory.get_on() is True

    @pytest.mark.asyncio
    async def test_writes_after_teardown_are_dropped(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        _ = await bridge.register(light)
        accessory = server.accessories[0]
        _ = await bridge.teardown(light.device_id)

        accessory.apply_remote(CHAR_ON, True)
        await settle()

        assert light.power_calls == []


class TestLightToHomeKit:
    @pytest.mark.asyncio
    async def test_color_event_updates_accessory(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light()
        _ = await bridge.register(light)
        await settle()

        light.color = LightingColor(hue=65535, saturation=32768, brightness=65535)
        light.emit(ColorUpdated(light.device_id))
        await settle()

        accessory = server.accessories[0]
        assert accessory.get_hue() == 360.0
        assert accessory.get_saturation() == pytest.approx(50.0, abs=0.01)

    @pytest.mark.asyncio
    async def test_power_event_updates_accessory(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(power=False)
        _ = await bridge.register(light)
        await settle()

        light.power = True
        light.emit(PowerUpdated(light.device_id))
        await settle()

        assert server.accessories[0].get_on() is True

    @pytest.mark.asyncio
    async def test_label_and_unrecognized_events_are_ignored(
        self,
        bridge: DeviceBridge,
        registry: DeviceRegistry,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        light = make_light(label="Old")
        _ = await bridge.register(light)
        await settle()

        light.label = "New"
        light.emit(LabelUpdated(light.device_id))
        light.emit(UnrecognizedDeviceEvent(light.device_id, payload=b"\x00"))
        await settle()

        assert server.accessories[0].name == "Old"
        assert light.device_id in registry

    @pytest.mark.asyncio
    async def test_echo_settles_after_one_round(
        self,
        bridge: DeviceBridge,
        server: FakeAccessoryServer,
        make_light: Callable[..., FakeLight],
    ):
        """Test that a HomeKit write echoed back by the light does not trigger another write."""
        light = make_light()
        light.emit_on_set = True
        _ = await bridge.register(light)
        await settle()
        accessory = server.accessories[0]

        accessory.apply_remote(CHAR_HUE, 180)
        await settle(30)

        assert len(light.color_calls) == 1
        assert accessory.get_hue() == pytest.approx(180.0, abs=360 / 65535)
