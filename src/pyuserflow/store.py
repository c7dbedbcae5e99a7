"""Minimal single-tree store hosting a :class:`UserMiddleware`.

The store owns the current :class:`UserState`, runs the injected reducer
and honours the middleware contract: ``handle`` before the reducer,
``after_commit`` after the new state is committed.  Actions dispatched
while another action is being processed (for instance by a failure
report) are queued and processed in FIFO order.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from pyuserflow.middleware import UserMiddleware
from pyuserflow.models.actions import Action
from pyuserflow.models.user import EMPTY_USER_STATE, UserState

Reducer = Callable[[UserState, Action], UserState]

_logger = logging.getLogger(__name__)


class Store:
    def __init__(
        self,
        reducer: Reducer,
        middleware: UserMiddleware,
        *,
        initial_state: UserState = EMPTY_USER_STATE,
    ) -> None:
        self._reducer = reducer
        self._middleware = middleware
        self._state = initial_state
        self._pending: deque[Action] = deque()
        self._dispatching = False
        self._listeners: list[Callable[[UserState], None]] = []
        middleware.attach(self.get_state, self.dispatch)

    @property
    def state(self) -> UserState:
        return self._state

    def get_state(self) -> UserState:
        return self._state

    def subscribe(self, listener: Callable[[UserState], None]) -> Callable[[], None]:
        """Call *listener* with every newly committed state.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> None:
        self._pending.append(action)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                self._process(self._pending.popleft())
        finally:
            self._dispatching = False

    def close(self) -> None:
        self._pending.clear()
        self._middleware.close()

    def _process(self, action: Action) -> None:
        _logger.debug("Dispatching %s", action.describe())
        result = self._middleware.handle(action)
        new_state = self._reducer(self._state, action)
        if new_state is not self._state:
            self._state = new_state
            for listener in list(self._listeners):
                listener(new_state)
        result.after_commit()
