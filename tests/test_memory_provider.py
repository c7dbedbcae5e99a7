from __future__ import annotations

import asyncio
import json

import pytest

from pyuserflow.exceptions import UserEncodingError, UserNotFoundError
from pyuserflow.models.actions import OperationKind
from pyuserflow.models.user import UserInfo, UserState
from pyuserflow.providers.base import assign_beacon_id, no_beacon_id, random_beacon_id
from pyuserflow.providers.memory import InMemoryUserStorage, apply_field_paths


def test_apply_field_paths_sets_nested_leaves() -> None:
    record = {"email": "a@b.com", "families": {"f1": True}}
    result = apply_field_paths(record, {"families/f2": False, "givenName": "Ada"})

    assert result == {"email": "a@b.com", "families": {"f1": True, "f2": False}, "givenName": "Ada"}
    assert record == {"email": "a@b.com", "families": {"f1": True}}


def test_apply_field_paths_none_removes_key() -> None:
    result = apply_field_paths({"families": {"f1": True, "f2": True}}, {"families/f1": None})
    assert result == {"families": {"f2": True}}


def test_apply_field_paths_replaces_with_empty_mapping() -> None:
    assert apply_field_paths({"families": {"f1": True}}, {"families": {}}) == {"families": {}}


def test_assign_beacon_id_keeps_existing() -> None:
    info = UserInfo(beaconid=5)
    assert assign_beacon_id(info, lambda: 42) is info


def test_assign_beacon_id_strategies() -> None:
    assert assign_beacon_id(UserInfo(), lambda: 42).beaconid == 42
    assert assign_beacon_id(UserInfo(), no_beacon_id).beaconid is None
    assert 0 <= random_beacon_id() <= 0xFFFF


@pytest.mark.asyncio
async def test_create_read_update_delete() -> None:
    storage = InMemoryUserStorage(beacon_id_strategy=lambda: 7)

    await storage.create("k1", UserInfo(email="a@b.com", given_name="Ada"))
    document = json.loads(await storage.read("k1"))
    assert document["givenName"] == "Ada"
    assert document["beaconid"] == 7

    await storage.update("k1", {"families/fam": True, "tracking": False})
    stored = storage.get("k1")
    assert stored is not None
    assert stored.families == {"fam": True}
    assert stored.tracking is False

    await storage.delete("k1")
    assert storage.get("k1") is None
    assert [kind for kind, _key in storage.calls] == [
        OperationKind.CREATE,
        OperationKind.READ,
        OperationKind.UPDATE,
        OperationKind.DELETE,
    ]


@pytest.mark.asyncio
async def test_missing_record_errors() -> None:
    storage = InMemoryUserStorage()

    with pytest.raises(UserNotFoundError):
        await storage.read("nope")
    with pytest.raises(UserNotFoundError):
        await storage.update("nope", {"email": "a@b.com"})
    with pytest.raises(UserNotFoundError):
        await storage.delete("nope")


@pytest.mark.asyncio
async def test_update_rejects_invalid_record() -> None:
    storage = InMemoryUserStorage()
    storage.seed("k1", UserInfo())

    with pytest.raises(UserEncodingError):
        await storage.update("k1", {"beaconid": 0x10000})
    assert storage.get("k1") == UserInfo()


def test_fail_next_is_one_shot() -> None:
    storage = InMemoryUserStorage()
    storage.fail_next(OperationKind.REGISTER, RuntimeError("offline"))

    with pytest.raises(RuntimeError):
        storage.register("k1")
    storage.register("k1")

    assert storage.registered == ["k1"]


@pytest.mark.asyncio
async def test_change_listener_yields_current_then_changes() -> None:
    storage = InMemoryUserStorage(beacon_id_strategy=no_beacon_id)
    storage.seed("k1", UserInfo(email="a@b.com"))

    listener = storage.change_listener("k1")
    first = await anext(listener)
    assert first == UserState(key="k1", value=UserInfo(email="a@b.com"))
    assert storage.listener_count("k1") == 1

    pending = asyncio.ensure_future(anext(listener))
    await storage.update("k1", {"givenName": "Ada"})
    second = await asyncio.wait_for(pending, 1)
    assert second.value.given_name == "Ada"

    await listener.aclose()
    assert storage.listener_count("k1") == 0


@pytest.mark.asyncio
async def test_fail_stream_terminates_listener() -> None:
    storage = InMemoryUserStorage()
    listener = storage.change_listener("k1")
    pending = asyncio.ensure_future(anext(listener))
    await asyncio.sleep(0)

    error = UserNotFoundError("gone", key="k1")
    storage.fail_stream("k1", error)

    with pytest.raises(UserNotFoundError):
        await asyncio.wait_for(pending, 1)
    assert storage.listener_count("k1") == 0
