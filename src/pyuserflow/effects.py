"""Single-flight effect slots.

An :class:`EffectRunner` owns at most one in-flight asyncio task per
:class:`Slot`.  Starting an operation in an occupied slot cancels the
previous one first.  Completion callbacks are only delivered while the
handle is still the current occupant of its slot, so a superseded
operation can never report after its successor has started.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

T = TypeVar("T")


class Slot(StrEnum):
    MUTATION = "mutation"
    CHANGE_LISTENER = "change_listener"


@dataclass(slots=True, eq=False)
class EffectHandle:
    """Cancellable token for one operation started by :class:`EffectRunner`."""

    slot: Slot
    label: str = ""
    task: asyncio.Task[Any] | None = None

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    @property
    def cancelled(self) -> bool:
        return self.task is not None and self.task.cancelled()

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()

    def __repr__(self) -> str:
        return f"EffectHandle(slot={self.slot.value}, label={self.label!r}, done={self.done})"


class EffectRunner:
    """Runs async operations with at most one in flight per slot."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._handles: dict[Slot, EffectHandle] = {}

    def current(self, slot: Slot) -> EffectHandle | None:
        return self._handles.get(slot)

    def is_busy(self, slot: Slot) -> bool:
        return slot in self._handles

    def run(
        self,
        slot: Slot,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "",
        on_result: Callable[[T], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> EffectHandle:
        """Start *operation* in *slot*, cancelling whatever occupied it.

        *operation* is a zero-argument factory so that nothing is created
        for an operation that gets superseded before it starts.
        """
        previous = self._handles.pop(slot, None)
        if previous is not None and not previous.done:
            self._logger.debug("Cancelling %r superseded by %r", previous, label)
            previous.cancel()

        handle = EffectHandle(slot=slot, label=label)
        loop = asyncio.get_running_loop()
        handle.task = loop.create_task(
            self._drive(handle, operation, on_result, on_error),
            name=f"pyuserflow:{slot.value}:{label}",
        )
        # A task cancelled before its first step never reaches _drive.
        handle.task.add_done_callback(lambda _task: self._release(handle))
        self._handles[slot] = handle
        return handle

    def cancel(self, slot: Slot) -> EffectHandle | None:
        handle = self._handles.pop(slot, None)
        if handle is not None:
            handle.cancel()
        return handle

    def cancel_all(self) -> list[EffectHandle]:
        handles: list[EffectHandle] = []
        for slot in list(self._handles):
            handle = self.cancel(slot)
            if handle is not None:
                handles.append(handle)
        return handles

    async def wait_idle(self) -> None:
        """Wait until every slot is empty (including effects started meanwhile)."""
        while self._handles:
            tasks = [handle.task for handle in self._handles.values() if handle.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel every slot and wait for the cancelled tasks to unwind."""
        tasks = [handle.task for handle in self.cancel_all() if handle.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _is_current(self, handle: EffectHandle) -> bool:
        return self._handles.get(handle.slot) is handle

    def _release(self, handle: EffectHandle) -> bool:
        if not self._is_current(handle):
            return False
        del self._handles[handle.slot]
        return True

    async def _drive(
        self,
        handle: EffectHandle,
        operation: Callable[[], Awaitable[T]],
        on_result: Callable[[T], None] | None,
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._logger.debug("Effect %r cancelled", handle)
            self._release(handle)
            raise
        except Exception as exc:
            if self._release(handle):
                self._invoke(on_error, exc, handle)
            else:
                self._logger.debug("Dropping failure of superseded effect %r", handle, exc_info=True)
            return

        if self._release(handle):
            self._invoke(on_result, result, handle)
        else:
            self._logger.debug("Dropping result of superseded effect %r", handle)

    def _invoke(self, callback: Callable[[Any], None] | None, value: Any, handle: EffectHandle) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            self._logger.warning("Completion callback for %r raised", handle, exc_info=True)
