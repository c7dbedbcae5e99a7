"""RestUserStorage against a local aiohttp record service."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from pyuserflow.config import UserflowConfig
from pyuserflow.exceptions import (
    ProviderError,
    ProviderTransportError,
    UserCreationError,
    UserDecodingError,
    UserNotFoundError,
    UserUpdateError,
)
from pyuserflow.models.user import UserInfo
from pyuserflow.providers.rest import RestUserStorage


class _RecordService:
    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responses: dict[str, tuple[int, str]] = {}

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.text()
        self.requests.append(
            {
                "method": request.method,
                "key": request.match_info["key"],
                "authorization": request.headers.get("Authorization"),
                "body": json.loads(body) if body else None,
            }
        )
        status, text = self.responses.get(request.method, (200, body or "null"))
        return web.Response(status=status, text=text, content_type="application/json")


@pytest_asyncio.fixture
async def service() -> AsyncIterator[tuple[_RecordService, RestUserStorage]]:
    records = _RecordService()
    app = web.Application()
    app.router.add_route("*", "/users/{key}.json", records.handle)
    async with test_utils.TestServer(app) as server, aiohttp.ClientSession() as http:
        config = UserflowConfig(base_url=str(server.make_url("/")), auth_token="tok", display_name_separator="")
        yield records, RestUserStorage(config, http, beacon_id_strategy=lambda: 99)


@pytest.mark.asyncio
async def test_create_puts_record_with_display_name(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service

    await storage.create("k1", UserInfo(email="a@b.com", given_name="Ada", family_name="Lovelace"))

    request = records.requests[0]
    assert request["method"] == "PUT"
    assert request["key"] == "k1"
    assert request["authorization"] == "Bearer tok"
    assert request["body"]["displayName"] == "AdaLovelace"
    assert request["body"]["givenName"] == "Ada"
    assert request["body"]["beaconid"] == 99
    assert "families" not in request["body"]


@pytest.mark.asyncio
async def test_update_patches_flat_fields(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service

    await storage.update("k1", {"families/fam": True})

    assert records.requests[0]["method"] == "PATCH"
    assert records.requests[0]["body"] == {"families/fam": True}


@pytest.mark.asyncio
async def test_delete_sends_delete(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service

    await storage.delete("k1")

    assert records.requests[0]["method"] == "DELETE"
    assert records.requests[0]["body"] is None


@pytest.mark.asyncio
async def test_read_returns_document(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service
    records.responses["GET"] = (200, '{"email":"a@b.com"}')

    assert json.loads(await storage.read("k1")) == {"email": "a@b.com"}


@pytest.mark.asyncio
async def test_read_of_null_is_not_found(service: tuple[_RecordService, RestUserStorage]) -> None:
    _records, storage = service

    with pytest.raises(UserNotFoundError):
        await storage.read("k1")


@pytest.mark.asyncio
async def test_read_of_invalid_json_fails_decoding(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service
    records.responses["GET"] = (200, "<html>")

    with pytest.raises(UserDecodingError):
        await storage.read("k1")


@pytest.mark.asyncio
async def test_status_mapping(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service
    records.responses["PUT"] = (500, '{"error":"boom"}')
    records.responses["PATCH"] = (404, "null")
    records.responses["GET"] = (503, "")

    with pytest.raises(UserCreationError):
        await storage.create("k1", UserInfo())
    with pytest.raises(UserNotFoundError):
        await storage.update("k1", {"email": "a@b.com"})
    with pytest.raises(ProviderTransportError) as excinfo:
        await storage.read("k1")
    assert excinfo.value.status_code == 503
    assert excinfo.value.endpoint == "/users/k1.json"


@pytest.mark.asyncio
async def test_unencodable_update_is_not_sent(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service

    with pytest.raises(ProviderError):
        await storage.update("k1", {"when": object()})
    assert records.requests == []


def test_register_rejects_empty_key() -> None:
    storage = RestUserStorage(UserflowConfig(), None)  # type: ignore[arg-type]

    with pytest.raises(ProviderError):
        storage.register(" ")
    storage.register("k1")
    assert storage.registered_key == "k1"


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error() -> None:
    async with aiohttp.ClientSession() as http:
        storage = RestUserStorage(UserflowConfig(base_url="http://127.0.0.1:1", request_timeout=2.0), http)
        with pytest.raises(ProviderTransportError):
            await storage.delete("k1")


@pytest.mark.asyncio
async def test_update_failure_class(service: tuple[_RecordService, RestUserStorage]) -> None:
    records, storage = service
    records.responses["PATCH"] = (400, '{"error":"bad path"}')

    with pytest.raises(UserUpdateError):
        await storage.update("k1", {"": 1})
