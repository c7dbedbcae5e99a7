"""User storage providers."""

from pyuserflow.providers.base import (
    BeaconIdStrategy,
    UserStorage,
    assign_beacon_id,
    no_beacon_id,
    random_beacon_id,
)
from pyuserflow.providers.memory import InMemoryUserStorage
from pyuserflow.providers.rest import RestUserStorage

__all__ = [
    "BeaconIdStrategy",
    "InMemoryUserStorage",
    "RestUserStorage",
    "UserStorage",
    "assign_beacon_id",
    "no_beacon_id",
    "random_beacon_id",
]
