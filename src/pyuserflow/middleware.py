"""Action middleware bridging the store to the user storage provider.

The store calls :meth:`UserMiddleware.handle` once per dispatched action,
before its reducer runs.  ``handle`` performs any pre-commit effect and
returns a :class:`HandleResult` whose ``after_commit`` continuation the
store must call once the reducer's output has been committed.  The
continuation reads the committed state and starts the matching provider
operation.

Provider failures never propagate into the dispatch path.  They are
logged, handed to the optional error sink and, when
``UserflowConfig.emit_failure_actions`` is set, dispatched as
``OperationFailed`` actions.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pyuserflow._redact import redact_for_log
from pyuserflow.config import UserflowConfig
from pyuserflow.effects import EffectHandle, EffectRunner, Slot
from pyuserflow.exceptions import UserflowStateError
from pyuserflow.models.actions import (
    Action,
    Create,
    Delete,
    Failure,
    OperationFailed,
    OperationKind,
    Read,
    Register,
    Start,
    Update,
)
from pyuserflow.models.user import UserInfoPatch, UserState
from pyuserflow.providers.base import UserStorage
from pyuserflow.switcher import KeySwitcher

StateReader = Callable[[], UserState | None]
ActionEmitter = Callable[[Action], None]
ErrorSink = Callable[[OperationKind, BaseException], None]

FIELD_PATH_SEPARATOR = "/"


def flatten_fields(
    fields: UserInfoPatch | Mapping[str, Any],
    *,
    separator: str = FIELD_PATH_SEPARATOR,
) -> dict[str, Any]:
    """Flatten a field set into ``{"path/to/field": value}`` pairs.

    Nested mappings become slash-separated paths so that an update only
    touches the leaves it names (``{"families": {"f1": True}}`` becomes
    ``{"families/f1": True}``).  An empty nested mapping is kept as a
    value, since it means "clear this field".
    """
    if isinstance(fields, UserInfoPatch):
        fields = fields.model_dump(by_alias=True, exclude_unset=True)

    flat: dict[str, Any] = {}

    def _walk(prefix: str, mapping: Mapping[str, Any]) -> None:
        for name, value in mapping.items():
            path = f"{prefix}{separator}{name}" if prefix else str(name)
            if isinstance(value, Mapping) and value:
                _walk(path, value)
            else:
                flat[path] = dict(value) if isinstance(value, Mapping) else value

    _walk("", fields)
    return flat


@dataclass(frozen=True, slots=True)
class HandleResult:
    """What :meth:`UserMiddleware.handle` hands back to the store.

    ``immediate`` is the effect started before the reducer ran, if any.
    ``after_commit`` must be called after the new state is committed.
    """

    immediate: EffectHandle | None
    after_commit: Callable[[], None]


class UserMiddleware:
    """The only component allowed to talk to the user storage provider.

    Usage::

        middleware = UserMiddleware(provider, logger=logging.getLogger("app.user"))
        middleware.attach(store.get_state, store.dispatch)
        result = middleware.handle(action)
        ...  # reduce and commit
        result.after_commit()
    """

    def __init__(
        self,
        provider: UserStorage,
        *,
        config: UserflowConfig | None = None,
        logger: logging.Logger | None = None,
        error_sink: ErrorSink | None = None,
    ) -> None:
        self._provider = provider
        self._config = config or UserflowConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._error_sink = error_sink
        self._get_state: StateReader | None = None
        self._output: ActionEmitter | None = None
        self._runner: EffectRunner | None = None
        self._switcher: KeySwitcher | None = None
        self._attachment = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_attached(self) -> bool:
        return self._get_state is not None

    @property
    def runner(self) -> EffectRunner:
        return self._require_attached()[0]

    @property
    def switcher(self) -> KeySwitcher:
        return self._require_attached()[1]

    def attach(self, state_reader: StateReader, action_emitter: ActionEmitter) -> None:
        """Wire the middleware to its store.

        Must be called exactly once before the first action, and not again
        until :meth:`close` has been called.
        """
        if self._get_state is not None:
            raise UserflowStateError("UserMiddleware is already attached; call close() first")
        self._logger.debug("Receiving context...")
        self._attachment += 1
        self._get_state = state_reader
        self._output = action_emitter
        self._runner = EffectRunner(logger=self._logger)
        self._switcher = KeySwitcher(
            self._provider,
            self._runner,
            self._dispatch,
            on_failure=lambda key, exc: self._report(OperationKind.CHANGE_LISTENER, exc, key=key),
            logger=self._logger,
        )

    def close(self) -> None:
        """Cancel every in-flight effect and detach from the store."""
        if self._switcher is not None:
            self._switcher.reset()
        if self._runner is not None:
            self._runner.cancel_all()
        self._get_state = None
        self._output = None
        self._runner = None
        self._switcher = None
        self._logger.debug("Detached")

    async def aclose(self) -> None:
        """Like :meth:`close`, but also wait for cancelled effects to unwind."""
        if self._runner is not None:
            await self._runner.aclose()
        self.close()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, action: Action) -> HandleResult:
        """Run the pre-commit effect for *action* and return its continuation."""
        self._require_attached()
        immediate = self._before_commit(action)
        return HandleResult(immediate=immediate, after_commit=self._continuation(action))

    def _before_commit(self, action: Action) -> EffectHandle | None:
        runner, _switcher = self._require_attached()
        match action:
            case Register(id=key):
                self._logger.debug("Registering user with key %s", key)
                try:
                    self._provider.register(key)
                except Exception as exc:
                    self._report(OperationKind.REGISTER, exc, key=key)
                return None
            case Read(id=key):
                self._logger.debug("Reading user with key %s", key)
                return runner.run(
                    Slot.MUTATION,
                    lambda: self._provider.read(key),
                    label=f"{OperationKind.READ}:{key}",
                    on_result=lambda document: self._logger.debug(
                        "User read for %s received %d bytes", key, len(document)
                    ),
                    on_error=lambda exc: self._report(OperationKind.READ, exc, key=key),
                )
            case _:
                self._logger.debug("Not handling %s before commit", action.describe())
                return None

    def _continuation(self, action: Action) -> Callable[[], None]:
        fired = False
        attachment = self._attachment

        def after_commit() -> None:
            nonlocal fired
            if fired:
                self._logger.debug("after_commit for %s already ran", action.describe())
                return
            if attachment != self._attachment or not self.is_attached:
                self._logger.debug("Dropping after_commit for %s from a previous attachment", action.describe())
                return
            fired = True
            self._after_commit(action)

        return after_commit

    def _after_commit(self, action: Action) -> None:
        get_state = self._get_state
        if get_state is None:
            self._logger.debug("Detached before commit of %s; skipping", action.describe())
            return
        state = get_state()
        if state is None:
            self._logger.debug("No committed state after %s", action.describe())
            return

        self._logger.debug("Calling after_commit for %s...", action.describe())
        match action:
            case Create():
                info = state.value
                self._start_mutation(OperationKind.CREATE, state.key, lambda key: self._provider.create(key, info))
            case Delete():
                self._start_mutation(OperationKind.DELETE, state.key, self._provider.delete)
            case Update(fields=fields):
                flat = flatten_fields(fields)
                self._logger.debug("Update fields: %s", redact_for_log(flat))
                self._start_mutation(OperationKind.UPDATE, state.key, lambda key: self._provider.update(key, flat))
            case Start() | Register():
                if not state.key:
                    self._logger.debug("No key to listen on after %s", action.describe())
                    return
                self._require_attached()[1].push(state.key)
            case _:
                self._logger.debug("Not handling %s after commit", action.describe())

    def _start_mutation(
        self,
        kind: OperationKind,
        key: str | None,
        call: Callable[[str], Awaitable[Any]],
    ) -> EffectHandle | None:
        if not key:
            self._logger.warning("Skipping user %s: committed state has no key", kind.value)
            return None
        runner, _switcher = self._require_attached()
        return runner.run(
            Slot.MUTATION,
            lambda: call(key),
            label=f"{kind}:{key}",
            on_result=lambda _ack: self._logger.debug("User %s for %s received ack", kind.value, key),
            on_error=lambda exc: self._report(kind, exc, key=key),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_attached(self) -> tuple[EffectRunner, KeySwitcher]:
        if self._runner is None or self._switcher is None:
            raise UserflowStateError("UserMiddleware is not attached. Call attach(state_reader, action_emitter)")
        return self._runner, self._switcher

    def _dispatch(self, action: Action) -> None:
        output = self._output
        if output is None:
            self._logger.debug("Dropping %s: middleware detached", action.describe())
            return
        output(action)

    def _report(self, kind: OperationKind, exc: BaseException, *, key: str | None = None) -> None:
        self._logger.warning("User %s failed for %s: %s", kind.value, key, exc, exc_info=exc)
        if self._error_sink is not None:
            try:
                self._error_sink(kind, exc)
            except Exception:
                self._logger.warning("Error sink raised while reporting %s", kind.value, exc_info=True)
        if self._config.emit_failure_actions:
            failure = Failure(kind=kind, message=str(exc) or type(exc).__name__, key=key)
            self._dispatch(OperationFailed(failure=failure))
