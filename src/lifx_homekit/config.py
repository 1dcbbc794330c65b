"""Configuration loading for the bridge.

Later sources win: defaults, then ``LIFX_HOMEKIT_*`` environment variables
(optionally loaded from a ``.env`` file first), then a YAML file, then
command-line flags.
"""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, cast

import dotenv
import yaml
from pydantic import ValidationError

from lifx_homekit.const import BRIDGE_VERSION, ENV_PREFIX
from lifx_homekit.exceptions import InvalidPinError
from lifx_homekit.logging_abstraction import get_logger
from lifx_homekit.structs import BridgeEnv
from lifx_homekit.utils import normalize_pin

__all__ = [
    "build_parser",
    "env_overrides",
    "load_config",
    "load_env_file",
    "load_yaml",
    "parse_cli",
]

logger = get_logger(__name__)

ENV_FIELDS: dict[str, str] = {
    f"{ENV_PREFIX}PIN": "pin",
    f"{ENV_PREFIX}DEBUG": "debug",
    f"{ENV_PREFIX}TIMEOUT": "timeout",
    f"{ENV_PREFIX}DISCOVERY_INTERVAL": "discovery_interval",
    f"{ENV_PREFIX}POLL_INTERVAL": "poll_interval",
    f"{ENV_PREFIX}BROADCAST": "broadcast_address",
    f"{ENV_PREFIX}HAP_PORT": "hap_port_base",
    f"{ENV_PREFIX}STATE_DIR": "state_dir",
    f"{ENV_PREFIX}METRICS_PORT": "metrics_port",
    f"{ENV_PREFIX}FATAL_TRANSPORT_ERRORS": "fatal_transport_errors",
    f"{ENV_PREFIX}LOG_FORMAT": "log_format",
    f"{ENV_PREFIX}LOG_JSON_FILE": "log_json_file",
}
CONFIG_FILE_ENV = f"{ENV_PREFIX}CONFIG_FILE"

# argparse dest -> BridgeEnv field
CLI_FIELDS: dict[str, str] = {
    "pin": "pin",
    "debug": "debug",
    "timeout": "timeout",
    "discovery_interval": "discovery_interval",
    "hap_port": "hap_port_base",
    "state_dir": "state_dir",
    "metrics_port": "metrics_port",
}


def _pin_arg(value: str) -> str:
    try:
        return normalize_pin(value)
    except InvalidPinError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lifx-homekit",
        description="Bridge LIFX lights on the local network into Apple HomeKit",
    )
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {BRIDGE_VERSION}")
    _ = parser.add_argument("--pin", type=_pin_arg, default=None, help="HomeKit pairing PIN (8 digits)")
    _ = parser.add_argument("-D", "--debug", action="store_true", default=None, help="Enable debug mode")
    _ = parser.add_argument("--timeout", type=float, default=None, help="Timeout for LIFX requests in seconds (0 = none)")
    _ = parser.add_argument(
        "--discovery-interval",
        type=float,
        default=None,
        help="Seconds between LIFX discovery scans",
    )
    _ = parser.add_argument("--hap-port", type=int, default=None, help="First TCP port used for HomeKit accessories")
    _ = parser.add_argument("--state-dir", default=None, help="Directory for HomeKit pairing state")
    _ = parser.add_argument("--metrics-port", type=int, default=None, help="Prometheus metrics port (0 = off)")
    _ = parser.add_argument("--config", type=Path, default=None, help="Path to a YAML configuration file")
    _ = parser.add_argument("--env", type=Path, default=None, help="Path to the environment file")
    return parser


def load_env_file(path: Path) -> bool:
    """Load a ``.env`` file into the process environment. Returns True if anything was loaded."""
    env_path = path.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    loaded_any = dotenv.load_dotenv(env_path, override=True)
    if loaded_any:
        logger.info("Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return loaded_any


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect the ``LIFX_HOMEKIT_*`` variables that are set, keyed by field name."""
    return {field: environ[name] for name, field in ENV_FIELDS.items() if environ.get(name, "") != ""}


def load_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping of field names to values. Unknown keys are logged and ignored."""
    logger.debug("Parsing config file: %s", path)
    with path.expanduser().open() as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Invalid config structure: expected mapping at root", extra={"path": str(path)})
        return {}
    known = set(BridgeEnv.model_fields)
    values: dict[str, Any] = {}
    for key, value in cast("Mapping[str, Any]", raw).items():
        if key in known:
            values[key] = value
        else:
            logger.warning("Ignoring unknown config key", extra={"key": str(key), "path": str(path)})
    return values


def load_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> BridgeEnv:
    """Merge every configuration source into a validated ``BridgeEnv``."""
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = env_overrides(environ)

    config_file: Path | None = args.config
    if config_file is None and environ.get(CONFIG_FILE_ENV):
        config_file = Path(environ[CONFIG_FILE_ENV])
    if config_file is not None:
        values.update(load_yaml(config_file))

    for dest, field in CLI_FIELDS.items():
        value = getattr(args, dest, None)
        if value is not None:
            values[field] = value
    return BridgeEnv(**values)


def parse_cli(argv: Sequence[str] | None = None) -> BridgeEnv:
    """Parse the command line and load configuration. Exits with status 2 on bad input."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.env is not None:
        _ = load_env_file(args.env)
    try:
        config = load_config(args)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors(include_input=False)
        )
        parser.error(f"invalid configuration: {problems}")
    except (OSError, yaml.YAMLError) as exc:
        parser.error(f"could not read configuration file: {exc}")
    if config.pin is None:
        parser.error(f"a pairing PIN is required (--pin or {ENV_PREFIX}PIN)")
    return config
