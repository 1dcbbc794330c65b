"""Discovery controller: owns the lighting client and turns discovery events into bridge calls."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

from lifx_homekit.bridge import DeviceBridge
from lifx_homekit.const import (
    DEFAULT_DISCOVERY_INTERVAL,
    DISCOVERY_EVENT_TASK_NAME,
    INITIAL_CONNECT_RETRY_DELAY,
)
from lifx_homekit.correlation import device_correlation_id
from lifx_homekit.events import DeviceAppeared, DeviceDisappeared, UnrecognizedClientEvent
from lifx_homekit.exceptions import BridgeError, LightingConnectionError
from lifx_homekit.logging_abstraction import get_logger
from lifx_homekit.metrics import record_client_event
from lifx_homekit.registry import DeviceRegistry
from lifx_homekit.structs import ClientSubscriptionProtocol, LightingClientProtocol
from lifx_homekit.tasks import TaskRunner
from lifx_homekit.utils import format_device_id

__all__ = ["DiscoveryController"]

logger = get_logger(__name__)


class DiscoveryController:
    """Connects to the lighting network and routes appeared/disappeared events.

    Connection is attempted twice, ``retry_delay`` seconds apart. If both
    attempts fail the controller stays unconnected and surfaces no lights
    until the process is restarted.
    """

    lp: str = "DiscoveryController:"

    def __init__(
        self,
        client_factory: Callable[[], LightingClientProtocol],
        registry: DeviceRegistry,
        bridge: DeviceBridge,
        runner: TaskRunner,
        *,
        discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL,
        timeout: float = 0.0,
        retry_delay: float = INITIAL_CONNECT_RETRY_DELAY,
    ) -> None:
        self.client_factory = client_factory
        self.registry = registry
        self.bridge = bridge
        self.runner = runner
        self.discovery_interval = discovery_interval
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.client: LightingClientProtocol | None = None
        self.subscription: ClientSubscriptionProtocol | None = None
        self._event_task: asyncio.Task[None] | None = None
        self._resolving: dict[int, asyncio.Task[None]] = {}
        self._stopped: bool = False

    @property
    def connected(self) -> bool:
        return self.client is not None and self.subscription is not None

    async def start(self) -> bool:
        """Connect and start the event loop. Returns False if both attempts failed."""
        lp = f"{self.lp}start:"
        try:
            await self._connect()
        except LightingConnectionError as exc:
            logger.warning(
                "%s Failed to connect to the lighting network, retrying",
                lp,
                extra={"error": str(exc), "retry_in": self.retry_delay},
            )
            await asyncio.sleep(self.retry_delay)
            try:
                await self._connect()
            except LightingConnectionError as retry_exc:
                logger.error(
                    "%s Failed to connect to the lighting network, continuing without lights",
                    lp,
                    extra={"error": str(retry_exc), "attempts": 2},
                )
                return False

        self._event_task = self.runner.spawn(self._consume_events(), name=DISCOVERY_EVENT_TASK_NAME)
        logger.info(
            "%s Connected to the lighting network",
            lp,
            extra={"discovery_interval": self.discovery_interval, "timeout": self.timeout},
        )
        return True

    async def _connect(self) -> None:
        client = self.client_factory()
        try:
            await client.connect(reliable=True)
            client.set_discovery_interval(self.discovery_interval)
            if self.timeout > 0:
                client.set_timeout(self.timeout)
            subscription = await client.subscribe()
        except LightingConnectionError:
            await self._close_client(client)
            raise
        except BridgeError as exc:
            await self._close_client(client)
            raise LightingConnectionError(str(exc)) from exc
        self.client = client
        self.subscription = subscription

    async def _close_client(self, client: LightingClientProtocol) -> None:
        try:
            await client.close()
        except BridgeError as exc:
            logger.debug("%s Error closing lighting client", self.lp, extra={"error": str(exc)})

    async def _consume_events(self) -> None:
        lp = f"{self.lp}events:"
        if self.subscription is None:
            return
        try:
            async for event in self.subscription.events():
                match event:
                    case DeviceAppeared(device_id=device_id):
                        record_client_event("appeared")
                        self._on_appeared(device_id)
                    case DeviceDisappeared(device_id=device_id):
                        record_client_event("disappeared")
                        await self._on_disappeared(device_id)
                    case UnrecognizedClientEvent(payload=payload):
                        record_client_event("unrecognized")
                        logger.debug("%s Ignoring unrecognized event", lp, extra={"payload": repr(payload)})
        except asyncio.CancelledError:
            raise
        except BridgeError:
            logger.exception("%s Discovery event stream failed", lp)
        logger.debug("%s Discovery event stream ended", lp)

    def _on_appeared(self, device_id: int) -> None:
        if device_id in self._resolving:
            return
        dev = format_device_id(device_id)
        logger.debug("%s Light appeared", self.lp, extra={"device_id": dev})
        task = self.runner.spawn(
            self._register(device_id),
            name=f"DiscoveryController_APPEARED_{dev}",
            correlation_id=device_correlation_id(device_id),
        )
        self._resolving[device_id] = task

    async def _register(self, device_id: int) -> None:
        client = self.client
        if client is None:
            return
        try:
            light = await client.get_light(device_id)
        except BridgeError as exc:
            logger.warning(
                "%s Could not resolve light, dropping appeared event",
                self.lp,
                extra={"device_id": format_device_id(device_id), "error": str(exc)},
            )
            return
        finally:
            if self._resolving.get(device_id) is asyncio.current_task():
                del self._resolving[device_id]
        _ = await self.bridge.register(light)

    async def _on_disappeared(self, device_id: int) -> None:
        logger.debug("%s Light disappeared", self.lp, extra={"device_id": format_device_id(device_id)})
        resolving = self._resolving.pop(device_id, None)
        if resolving is not None:
            _ = resolving.cancel()
        _ = await self.bridge.teardown(device_id)

    async def stop(self) -> None:
        """Tear down every bridged light, then close the subscription and client. Safe to call twice."""
        lp = f"{self.lp}stop:"
        if self._stopped:
            logger.debug("%s Already stopped", lp)
            return
        self._stopped = True
        logger.info("%s Stopping discovery", lp, extra={"lights": len(self.registry)})

        if self._event_task is not None and self._event_task is not asyncio.current_task():
            _ = self._event_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                _ = await asyncio.gather(self._event_task, return_exceptions=True)
        for task in list(self._resolving.values()):
            _ = task.cancel()
        self._resolving.clear()

        for record in await self.registry.all():
            _ = await self.bridge.teardown(record.device_id)

        client, self.client = self.client, None
        subscription, self.subscription = self.subscription, None
        if client is None:
            return
        if subscription is not None:
            try:
                await client.close_subscription(subscription)
            except BridgeError as exc:
                logger.warning("%s Failed to close discovery subscription", lp, extra={"error": str(exc)})
        await self._close_client(client)
        logger.info("%s Discovery stopped", lp)
