"""Bridge LIFX lights on the local network into HomeKit."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

try:
    __version__ = get_version("lifx-homekit")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]
