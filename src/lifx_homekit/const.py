import os

from lifx_homekit import __version__

__all__ = [
    "ACCESSORY_MANUFACTURER",
    "BRIDGE_VERSION",
    "COLOR_TRANSITION_SECONDS",
    "DEFAULT_BROADCAST_ADDRESS",
    "DEFAULT_DISCOVERY_INTERVAL",
    "DEFAULT_HAP_PORT",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_STATE_DIR",
    "DISCOVERY_EVENT_TASK_NAME",
    "DISCOVERY_SCAN_TIMEOUT",
    "ENV_PREFIX",
    "HAP_HUE_MAX",
    "HAP_PERCENT_MAX",
    "HSBK_KELVIN_DEFAULT",
    "HSBK_KELVIN_MAX",
    "HSBK_KELVIN_MIN",
    "HSBK_MAX",
    "IDENTIFY_INTERVAL_SECONDS",
    "IDENTIFY_TOGGLE_COUNT",
    "INITIAL_CONNECT_RETRY_DELAY",
    "MISSED_SCANS_BEFORE_EXPIRY",
    "PERF_THRESHOLD_MS",
    "PERF_TRACKING",
    "SHUTDOWN_GRACE_SECONDS",
    "TERMINATED_EXIT_CODE",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on")
BRIDGE_VERSION: str = __version__
ENV_PREFIX: str = "LIFX_HOMEKIT_"

# LIFX HSBK encoding, see LFXHSBKColor.h in LIFXKit
HSBK_MAX: int = 0xFFFF
HSBK_KELVIN_DEFAULT: int = 3500
HSBK_KELVIN_MIN: int = 2500
HSBK_KELVIN_MAX: int = 9000

# HomeKit Lightbulb characteristic ranges
HAP_HUE_MAX: float = 360.0
HAP_PERCENT_MAX: float = 100.0

ACCESSORY_MANUFACTURER: str = "LIFX"
COLOR_TRANSITION_SECONDS: float = 1.0
IDENTIFY_TOGGLE_COUNT: int = 4
IDENTIFY_INTERVAL_SECONDS: float = 1.0

INITIAL_CONNECT_RETRY_DELAY: float = 2.0
DEFAULT_DISCOVERY_INTERVAL: float = 30.0
DEFAULT_POLL_INTERVAL: float = 5.0
DISCOVERY_SCAN_TIMEOUT: float = 3.0
MISSED_SCANS_BEFORE_EXPIRY: int = 2
DEFAULT_BROADCAST_ADDRESS: str = "255.255.255.255"

DEFAULT_HAP_PORT: int = 51826
DEFAULT_STATE_DIR: str = "~/.lifx-homekit"

SHUTDOWN_GRACE_SECONDS: float = 0.1
# the bridge only stops when signalled, so exit reports "terminated"
TERMINATED_EXIT_CODE: int = 1

DISCOVERY_EVENT_TASK_NAME = "DiscoveryController_EVENTS"

# Performance instrumentation of lighting-network requests
PERF_TRACKING: bool = os.environ.get(f"{ENV_PREFIX}PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get(f"{ENV_PREFIX}PERF_THRESHOLD_MS", "500")
PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold.isdigit() else 500
