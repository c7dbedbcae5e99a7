"""Re-targetable change subscription.

A :class:`KeySwitcher` watches the provider's change stream for one key at
a time.  Pushing a new key tears down the stream bound to the previous key
and subscribes to the new one; every state emitted by the live stream is
dispatched as a ``StateChanged`` action.

States: Idle, Subscribed(key).  A stream failure or a normal end of stream
returns the switcher to Idle; it stays there until the next ``push``.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable

from pyuserflow.effects import EffectHandle, EffectRunner, Slot
from pyuserflow.models.actions import Action, StateChanged
from pyuserflow.providers.base import UserStorage


class KeySwitcher:
    def __init__(
        self,
        provider: UserStorage,
        runner: EffectRunner,
        emit: Callable[[Action], None],
        *,
        on_failure: Callable[[str, Exception], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._provider = provider
        self._runner = runner
        self._emit = emit
        self._on_failure = on_failure
        self._logger = logger or logging.getLogger(__name__)
        self._key: str | None = None
        self._generation = 0

    @property
    def key(self) -> str | None:
        """Key of the live subscription, ``None`` while idle."""
        return self._key

    @property
    def is_subscribed(self) -> bool:
        return self._key is not None

    def push(self, key: str) -> EffectHandle:
        """Re-target the change listener at *key*."""
        self._generation += 1
        generation = self._generation
        self._logger.debug("Switching change listener from %s to %s", self._key, key)
        self._key = key
        return self._runner.run(
            Slot.CHANGE_LISTENER,
            lambda: self._listen(key, generation),
            label=key,
            on_result=lambda _none: self._stream_ended(key, generation),
            on_error=lambda exc: self._stream_failed(key, generation, exc),
        )

    def reset(self) -> None:
        """Drop the live subscription and return to Idle."""
        self._generation += 1
        self._key = None
        self._runner.cancel(Slot.CHANGE_LISTENER)

    async def _listen(self, key: str, generation: int) -> None:
        async with contextlib.aclosing(self._provider.change_listener(key)) as stream:
            async for state in stream:
                if generation != self._generation:
                    return
                self._logger.debug("State change receiving value for user %s", key)
                self._emit(StateChanged(state=state))

    def _stream_ended(self, key: str, generation: int) -> None:
        if generation != self._generation:
            return
        self._logger.debug("State change stream for %s completed", key)
        self._key = None

    def _stream_failed(self, key: str, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        self._key = None
        if self._on_failure is not None:
            self._on_failure(key, exc)
        else:
            self._logger.warning("State change stream for %s failed: %s", key, exc)
