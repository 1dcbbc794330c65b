"""Transport adapters for the two device ecosystems.

``lifx`` talks to lights on the LAN through ``lifx-async``; ``homekit``
publishes accessories through ``HAP-python``.
"""

from lifx_homekit.transport.homekit import HapTransport, HomeKitServer
from lifx_homekit.transport.lifx import LifxLanClient, LifxLight

__all__ = [
    "HapTransport",
    "HomeKitServer",
    "LifxLanClient",
    "LifxLight",
]
