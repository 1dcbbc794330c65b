"""Main entrypoint and lifecycle management for the LIFX HomeKit bridge."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Sequence
from functools import partial

import uvloop

from lifx_homekit.bridge import DeviceBridge
from lifx_homekit.config import parse_cli
from lifx_homekit.const import BRIDGE_VERSION, SHUTDOWN_GRACE_SECONDS, TERMINATED_EXIT_CODE
from lifx_homekit.correlation import correlation_context, ensure_correlation_id
from lifx_homekit.discovery import DiscoveryController
from lifx_homekit.logging_abstraction import configure_logging, get_logger
from lifx_homekit.metrics import start_metrics_server
from lifx_homekit.registry import DeviceRegistry
from lifx_homekit.structs import BridgeEnv, LightingClientProtocol
from lifx_homekit.tasks import TaskRunner
from lifx_homekit.transport.homekit import HomeKitServer
from lifx_homekit.transport.lifx import LifxLanClient
from lifx_homekit.utils import install_signal_handlers

__all__ = ["LifxHomeKitBridge", "main"]

logger = get_logger(__name__)


class LifxHomeKitBridge:
    """Wires the registry, bridge, discovery controller and both transports together."""

    lp: str = "LifxHomeKitBridge:"

    def __init__(
        self,
        config: BridgeEnv,
        *,
        client_factory: Callable[[], LightingClientProtocol] | None = None,
        server: HomeKitServer | None = None,
    ) -> None:
        if config.pin is None:
            msg = "a pairing PIN is required"
            raise ValueError(msg)
        self.config = config
        self.exit_code: int | None = None
        self.registry = DeviceRegistry()
        self.runner = TaskRunner()
        self.server = server or HomeKitServer(port_base=config.hap_port_base, state_dir=config.state_dir)
        self.bridge = DeviceBridge(
            self.registry,
            self.runner,
            self.server,
            config.pin,
            fatal_transport_errors=config.fatal_transport_errors,
        )
        if client_factory is None:
            client_factory = partial(
                LifxLanClient,
                broadcast_address=config.broadcast_address,
                poll_interval=config.poll_interval,
            )
        self.discovery = DiscoveryController(
            client_factory,
            self.registry,
            self.bridge,
            self.runner,
            discovery_interval=config.discovery_interval,
            timeout=config.timeout,
        )
        self.server.on_termination(self.discovery.stop)
        self._done: asyncio.Event | None = None

    async def start(self) -> int:
        """Run until terminated. Returns the process exit status."""
        _ = ensure_correlation_id()
        self._done = asyncio.Event()
        loop = asyncio.get_running_loop()
        install_signal_handlers(loop, self._on_signal)

        if self.config.metrics_port:
            try:
                _ = start_metrics_server(self.config.metrics_port)
            except OSError as exc:
                logger.error(
                    "%s Metrics server failed to start",
                    self.lp,
                    extra={"port": self.config.metrics_port, "error": str(exc)},
                )
            else:
                logger.info("%s Metrics server started", self.lp, extra={"port": self.config.metrics_port})

        logger.info(
            "%s Starting bridge",
            self.lp,
            extra={"version": BRIDGE_VERSION, "hap_port_base": self.config.hap_port_base},
        )
        _ = await self.discovery.start()
        _ = await self._done.wait()
        return self.exit_code if self.exit_code is not None else TERMINATED_EXIT_CODE

    async def _on_signal(self, _signum: int) -> None:
        await self.terminate()

    async def terminate(self) -> None:
        """Run the termination hooks, wait out the grace period and stop."""
        logger.info("%s Shutting down", self.lp)
        await self.server.terminate()
        await asyncio.sleep(SHUTDOWN_GRACE_SECONDS)
        await self.runner.shutdown()
        self.exit_code = TERMINATED_EXIT_CODE
        if self._done is not None:
            self._done.set()


def main(argv: Sequence[str] | None = None) -> None:
    """Run the LIFX HomeKit bridge entry point."""
    with correlation_context():
        config = parse_cli(argv)
        configure_logging(
            debug=config.debug,
            log_format=config.log_format,
            json_file=config.log_json_file,
        )
        if config.debug:
            logger.info("Debug logging enabled")
        logger.info("Starting LIFX HomeKit bridge", extra={"version": BRIDGE_VERSION})

        bridge = LifxHomeKitBridge(config)
        try:
            exit_code = uvloop.run(bridge.start())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            exit_code = TERMINATED_EXIT_CODE
        logger.info("LIFX HomeKit bridge shutdown complete", extra={"exit_code": exit_code})
    sys.exit(exit_code)
