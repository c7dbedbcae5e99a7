"""User storage provider contract.

The middleware only ever talks to a provider through :class:`UserStorage`.
Having a protocol here makes it easy to pass test doubles while keeping the
production providers (`RestUserStorage`, `InMemoryUserStorage`) concrete.
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator, Callable, Mapping
from typing import Any, Protocol

from pyuserflow.models.user import UserInfo, UserState

BeaconIdStrategy = Callable[[], int | None]
"""Produces the beacon id for a record that is created without one."""


def random_beacon_id() -> int:
    """Random 16 bit beacon identifier."""
    return secrets.randbelow(0x10000)


def no_beacon_id() -> None:
    """Leave ``beaconid`` unset."""
    return None


def assign_beacon_id(info: UserInfo, strategy: BeaconIdStrategy) -> UserInfo:
    """Return *info* with a beacon id from *strategy* if it has none."""
    if info.beaconid is not None:
        return info
    beaconid = strategy()
    if beaconid is None:
        return info
    return info.model_copy(update={"beaconid": beaconid})


class UserStorage(Protocol):
    """Structural interface of a user record provider."""

    def register(self, key: str) -> None:
        """Announce *key* as the current user's key.  Fire-and-forget."""
        ...

    async def create(self, key: str, info: UserInfo) -> None: ...

    async def update(self, key: str, fields: Mapping[str, Any]) -> None:
        """Apply a flat field mapping.  Nested paths use ``/`` separators."""
        ...

    async def delete(self, key: str) -> None: ...

    async def read(self, key: str) -> str:
        """Return the stored record as a JSON document."""
        ...

    def change_listener(self, key: str) -> AsyncGenerator[UserState, None]:
        """Stream every state stored at *key* until cancelled or failed."""
        ...
