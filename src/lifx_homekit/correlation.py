"""Correlation IDs for log lines.

The current ID lives in a ``contextvars.ContextVar``, so every task started
by ``TaskRunner.spawn`` keeps its own. Work for one light uses an ID that
starts with the light's serial, which makes ``grep <serial>`` follow a light
from the LIFX side through the bridge to HomeKit and back.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "device_correlation_id",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_current: contextvars.ContextVar[str | None] = contextvars.ContextVar("lifx_homekit_correlation_id", default=None)


def generate_correlation_id() -> str:
    """Random ID, 32 hex characters."""
    return uuid.uuid4().hex


def device_correlation_id(device_id: int) -> str:
    """ID for work belonging to one light: its 12 digit serial plus 8 random hex characters."""
    return f"{device_id:012x}{uuid.uuid4().hex[:8]}"


def get_correlation_id() -> str | None:
    return _current.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _ = _current.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """Use ``correlation_id`` (or a fresh one) inside the block, then put the old one back.

    Example:
        with correlation_context() as corr_id:
            logger.info("Starting bridge")
    """
    if correlation_id is None:
        correlation_id = generate_correlation_id()
    token = _current.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _current.reset(token)


def ensure_correlation_id() -> str:
    """Return the current ID, setting a fresh one first if there is none."""
    current = _current.get()
    if current is None:
        current = generate_correlation_id()
        _ = _current.set(current)
    return current
