"""In-memory user storage.

Keeps records in a dict (in wire form, camelCase keys) and fans every
change out to the per-key change listeners.  Used by the test-suite and
handy for local development without a record service.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections.abc import AsyncGenerator, Mapping
from typing import Any

from pydantic import ValidationError

from pyuserflow._redact import redact_for_log
from pyuserflow.exceptions import UserEncodingError, UserNotFoundError
from pyuserflow.models.actions import OperationKind
from pyuserflow.models.user import UserInfo, UserState
from pyuserflow.providers.base import BeaconIdStrategy, assign_beacon_id, random_beacon_id


def apply_field_paths(record: dict[str, Any], fields: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *record* with slash-separated *fields* applied.

    ``None`` removes the addressed key, mirroring a JSON merge patch.
    """
    result = copy.deepcopy(record)
    for path, value in fields.items():
        parts = [part for part in path.split("/") if part]
        if not parts:
            continue
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        if value is None:
            target.pop(parts[-1], None)
        else:
            target[parts[-1]] = copy.deepcopy(value)
    return result


class InMemoryUserStorage:
    """Dict-backed :class:`~pyuserflow.providers.base.UserStorage`."""

    def __init__(
        self,
        *,
        beacon_id_strategy: BeaconIdStrategy = random_beacon_id,
        latency: float = 0.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._beacon_id_strategy = beacon_id_strategy
        self._latency = latency
        self._logger = logger or logging.getLogger(__name__)
        self._records: dict[str, dict[str, Any]] = {}
        self._subscribers: dict[str, list[asyncio.Queue[UserState | BaseException]]] = {}
        self._failures: dict[OperationKind, BaseException] = {}
        self.registered: list[str] = []
        self.calls: list[tuple[OperationKind, str]] = []

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail_next(self, kind: OperationKind, error: BaseException) -> None:
        """Make the next *kind* operation raise *error*."""
        self._failures[kind] = error

    def fail_stream(self, key: str, error: BaseException) -> None:
        """Terminate every open change listener for *key* with *error*."""
        for queue in list(self._subscribers.get(key, [])):
            queue.put_nowait(error)

    def listener_count(self, key: str) -> int:
        return len(self._subscribers.get(key, []))

    def get(self, key: str) -> UserInfo | None:
        record = self._records.get(key)
        if record is None:
            return None
        return UserInfo.model_validate(record)

    def seed(self, key: str, info: UserInfo) -> None:
        """Store *info* without going through ``create`` (no notification)."""
        self._records[key] = info.model_dump(by_alias=True, mode="json")

    # ------------------------------------------------------------------
    # UserStorage
    # ------------------------------------------------------------------

    def register(self, key: str) -> None:
        self.calls.append((OperationKind.REGISTER, key))
        self._raise_injected(OperationKind.REGISTER)
        self.registered.append(key)
        self._logger.debug("Registered key %s", key)

    async def create(self, key: str, info: UserInfo) -> None:
        self.calls.append((OperationKind.CREATE, key))
        await self._suspend()
        self._raise_injected(OperationKind.CREATE)
        info = assign_beacon_id(info, self._beacon_id_strategy)
        record = info.model_dump(by_alias=True, mode="json")
        self._records[key] = record
        self._logger.debug("Created %s: %s", key, redact_for_log(record))
        self._notify(key, record)

    async def update(self, key: str, fields: Mapping[str, Any]) -> None:
        self.calls.append((OperationKind.UPDATE, key))
        await self._suspend()
        self._raise_injected(OperationKind.UPDATE)
        current = self._records.get(key)
        if current is None:
            raise UserNotFoundError(f"No user record at {key}", key=key)
        record = apply_field_paths(current, fields)
        try:
            UserInfo.model_validate(record)
        except ValidationError as exc:
            raise UserEncodingError(f"Update for {key} produces an invalid record: {exc}", key=key) from exc
        self._records[key] = record
        self._logger.debug("Updated %s: %s", key, redact_for_log(dict(fields)))
        self._notify(key, record)

    async def delete(self, key: str) -> None:
        self.calls.append((OperationKind.DELETE, key))
        await self._suspend()
        self._raise_injected(OperationKind.DELETE)
        if self._records.pop(key, None) is None:
            raise UserNotFoundError(f"No user record at {key}", key=key)
        self._logger.debug("Deleted %s", key)

    async def read(self, key: str) -> str:
        self.calls.append((OperationKind.READ, key))
        await self._suspend()
        self._raise_injected(OperationKind.READ)
        record = self._records.get(key)
        if record is None:
            raise UserNotFoundError(f"No user record at {key}", key=key)
        return json.dumps(record, separators=(",", ":"))

    async def change_listener(self, key: str) -> AsyncGenerator[UserState, None]:
        self.calls.append((OperationKind.CHANGE_LISTENER, key))
        self._raise_injected(OperationKind.CHANGE_LISTENER)
        queue: asyncio.Queue[UserState | BaseException] = asyncio.Queue()
        subscribers = self._subscribers.setdefault(key, [])
        subscribers.append(queue)
        try:
            current = self._records.get(key)
            if current is not None:
                yield UserState(key=key, value=UserInfo.model_validate(current))
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            subscribers.remove(queue)
            if not subscribers and self._subscribers.get(key) is subscribers:
                self._subscribers.pop(key, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _suspend(self) -> None:
        await asyncio.sleep(self._latency)

    def _raise_injected(self, kind: OperationKind) -> None:
        error = self._failures.pop(kind, None)
        if error is not None:
            raise error

    def _notify(self, key: str, record: dict[str, Any]) -> None:
        subscribers = self._subscribers.get(key)
        if not subscribers:
            return
        state = UserState(key=key, value=UserInfo.model_validate(record))
        for queue in subscribers:
            queue.put_nowait(state)

