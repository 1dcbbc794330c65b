from __future__ import annotations

import asyncio
import os
import re
import signal
from collections.abc import Awaitable, Callable

from lifx_homekit.exceptions import InvalidPinError
from lifx_homekit.logging_abstraction import get_logger

logger = get_logger(__name__)

_PIN_DIGITS = re.compile(r"^\d{8}$")
_PIN_GROUPED = re.compile(r"^\d{3}-\d{2}-\d{3}$")

# Signal tasks are only referenced by the loop weakly; hold them until done.
_signal_tasks: set[asyncio.Task[None]] = set()


def normalize_pin(pin: str) -> str:
    """Return the HomeKit setup code form (``123-45-678``) of an 8 digit PIN.

    Accepts ``12345678`` or the already grouped form; anything else raises
    InvalidPinError.
    """
    pin = pin.strip()
    if _PIN_GROUPED.match(pin):
        return pin
    if not _PIN_DIGITS.match(pin):
        raise InvalidPinError(pin)
    return f"{pin[:3]}-{pin[3:5]}-{pin[5:]}"


def format_device_id(device_id: int) -> str:
    """Render a device identity as the 12 hex digit LIFX serial."""
    return f"{device_id:012x}"


def parse_serial(serial: str) -> int:
    """Convert a LIFX serial (``d073d5123456``) to its 64-bit device identity."""
    return int(serial.replace(":", ""), 16)


def send_signal(signal_num: int):
    """Send a signal to the current process.

    Args:
        signal_num (int): The signal number to send.

    """
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm():
    """Send a SIGTERM signal to the current process.
    This is used to request termination of the bridge from inside a task.
    """
    send_signal(signal.SIGTERM)


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    on_signal: Callable[[int], Awaitable[None]],
) -> None:
    """Run ``on_signal`` as a task on the loop when SIGINT or SIGTERM arrives."""

    def _handler(signum: int) -> None:
        logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
        task = loop.create_task(on_signal(signum), name=f"signal-{signum}")
        _signal_tasks.add(task)
        task.add_done_callback(_signal_tasks.discard)

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _handler, signum)
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")
