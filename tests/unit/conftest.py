"""Shared fixtures for unit tests.

The bridge is wired to the in-memory transports from ``tests.helpers.fakes``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from lifx_homekit.bridge import DeviceBridge
from lifx_homekit.registry import DeviceRegistry
from lifx_homekit.tasks import TaskRunner
from tests.helpers.fakes import TEST_PIN, FakeAccessoryServer, FakeLight


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry()


@pytest.fixture
def runner() -> TaskRunner:
    return TaskRunner()


@pytest.fixture
def server() -> FakeAccessoryServer:
    return FakeAccessoryServer()


@pytest.fixture
def bridge(registry: DeviceRegistry, runner: TaskRunner, server: FakeAccessoryServer) -> DeviceBridge:
    """Device bridge with a zero identify interval so blink tests do not sleep."""
    return DeviceBridge(registry, runner, server, TEST_PIN, identify_interval=0)


@pytest.fixture
def make_light() -> Callable[..., FakeLight]:
    """Create fake lights with distinct identities."""
    counter = iter(range(1, 1000))

    def _make(device_id: int | None = None, **kwargs: Any) -> FakeLight:
        if device_id is None:
            device_id = 0xD073D5000000 + next(counter)
        return FakeLight(device_id, **kwargs)

    return _make
