"""Device registry: the set of lights currently bridged into HomeKit.

All mutation and iteration goes through one ``asyncio.Lock``. The lock is
never held across device I/O; callers do their network work first and then
take the lock only to insert, remove or snapshot.
"""

from __future__ import annotations

import asyncio

from lifx_homekit.logging_abstraction import get_logger
from lifx_homekit.metrics import set_devices_bridged
from lifx_homekit.structs import DeviceRecord
from lifx_homekit.utils import format_device_id

__all__ = ["DeviceRegistry"]

logger = get_logger(__name__)


class DeviceRegistry:
    """Authoritative mapping from device identity to its ``DeviceRecord``."""

    lp: str = "DeviceRegistry:"

    def __init__(self) -> None:
        self._records: dict[int, DeviceRecord] = {}
        self._lock = asyncio.Lock()

    async def register(self, device_id: int, record: DeviceRecord) -> bool:
        """Insert a record. Returns False (and changes nothing) if the identity is already present."""
        async with self._lock:
            if device_id in self._records:
                logger.debug(
                    "%s Light has already been added",
                    self.lp,
                    extra={"device_id": format_device_id(device_id)},
                )
                return False
            self._records[device_id] = record
            set_devices_bridged(len(self._records))
        logger.debug(
            "%s Light registered",
            self.lp,
            extra={"device_id": format_device_id(device_id), "total": len(self._records)},
        )
        return True

    async def unregister(self, device_id: int) -> DeviceRecord | None:
        """Remove and return a record, or None if no record exists."""
        async with self._lock:
            record = self._records.pop(device_id, None)
            set_devices_bridged(len(self._records))
        if record is None:
            logger.debug(
                "%s Cannot remove a light that has not been added",
                self.lp,
                extra={"device_id": format_device_id(device_id)},
            )
        return record

    async def discard(self, record: DeviceRecord) -> bool:
        """Remove ``record`` only if it is still the one registered for its identity."""
        async with self._lock:
            if self._records.get(record.device_id) is not record:
                return False
            del self._records[record.device_id]
            set_devices_bridged(len(self._records))
        return True

    async def lookup(self, device_id: int) -> DeviceRecord | None:
        """Return the record for an identity, if any."""
        async with self._lock:
            return self._records.get(device_id)

    async def all(self) -> list[DeviceRecord]:
        """Consistent snapshot of all records, safe to iterate while others mutate."""
        async with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._records
