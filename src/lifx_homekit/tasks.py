"""Task executor for the bridge.

Every concurrent unit of work (the discovery event loop, each light's event
loop, each accessory transport, each HomeKit callback) is started through a
``TaskRunner`` so it is named, tracked and cancelled on shutdown. Tasks that
belong to one light are also recorded on that light's ``DeviceRecord``:
a light's tasks only ever touch that light's handle and accessory, and
teardown cancels exactly that set.
"""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any, TypeVar

from lifx_homekit.correlation import set_correlation_id
from lifx_homekit.logging_abstraction import get_logger

if TYPE_CHECKING:
    from lifx_homekit.structs import DeviceRecord

__all__ = ["TaskRunner"]

logger = get_logger(__name__)
T = TypeVar("T")


class TaskRunner:
    """Spawns and tracks named asyncio tasks."""

    lp: str = "TaskRunner:"

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active(self) -> int:
        """Number of tasks still running."""
        return sum(1 for task in self._tasks if not task.done())

    def spawn(
        self,
        coro: Coroutine[Any, Any, T],
        *,
        name: str,
        owner: DeviceRecord | None = None,
        correlation_id: str | None = None,
    ) -> asyncio.Task[T]:
        """Start ``coro`` as a task.

        Args:
            coro: Coroutine to run
            name: Task name, shown in logs and asyncio debug output
            owner: Record of the light this task belongs to, if any
            correlation_id: Correlation ID for log lines emitted by the task

        """
        task = asyncio.create_task(self._run(coro, correlation_id), name=name)
        self._tasks.add(task)
        if owner is not None:
            owner.tasks.add(task)
            task.add_done_callback(owner.tasks.discard)
        task.add_done_callback(self._on_done)
        return task

    @staticmethod
    async def _run(coro: Coroutine[Any, Any, T], correlation_id: str | None) -> T:
        if correlation_id is not None:
            set_correlation_id(correlation_id)
        return await coro

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "%s Task failed",
                self.lp,
                extra={
                    "task": task.get_name(),
                    "error": repr(exc),
                    "traceback": "".join(traceback.format_exception(exc)),
                },
            )

    async def cancel_owned(self, owner: DeviceRecord) -> None:
        """Cancel and await every task belonging to one light, except the caller's own task."""
        current = asyncio.current_task()
        tasks = [task for task in owner.tasks if task is not current and not task.done()]
        for task in tasks:
            _ = task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel and await every tracked task except the caller's own task."""
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current and not task.done()]
        if tasks:
            logger.debug("%s Cancelling tasks", self.lp, extra={"count": len(tasks)})
        for task in tasks:
            _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            _ = await asyncio.gather(*tasks, return_exceptions=True)
