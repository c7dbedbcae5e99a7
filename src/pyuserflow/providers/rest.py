"""User storage backed by a JSON record service and an MQTT change feed.

Records live under ``{base_url}/users/{key}.json``:

* ``PUT`` writes a whole record (create)
* ``PATCH`` merges slash-separated field paths (update)
* ``DELETE`` removes it
* ``GET`` returns it (``null`` when absent)

Change notifications come from :class:`~pyuserflow._mqtt.MqttChangeStream`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, Mapping
from typing import Any
from urllib.parse import quote

import aiohttp

from pyuserflow._mqtt import MqttChangeStream
from pyuserflow._redact import redact_for_log
from pyuserflow.config import UserflowConfig
from pyuserflow.exceptions import (
    ProviderError,
    ProviderTransportError,
    UserCreationError,
    UserDecodingError,
    UserDeletionError,
    UserEncodingError,
    UserNotFoundError,
    UserUpdateError,
)
from pyuserflow.models.user import UserInfo, UserState
from pyuserflow.providers.base import BeaconIdStrategy, assign_beacon_id, random_beacon_id

_logger = logging.getLogger(__name__)


def _endpoint(key: str) -> str:
    return f"/users/{quote(key, safe='')}.json"


class RestUserStorage:
    """:class:`~pyuserflow.providers.base.UserStorage` over HTTP + MQTT."""

    def __init__(
        self,
        config: UserflowConfig,
        http_session: aiohttp.ClientSession,
        *,
        beacon_id_strategy: BeaconIdStrategy = random_beacon_id,
        change_stream: MqttChangeStream | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._beacon_id_strategy = beacon_id_strategy
        self._change_stream = change_stream or MqttChangeStream(config)
        self._registered_key: str | None = None

    @property
    def registered_key(self) -> str | None:
        return self._registered_key

    def register(self, key: str) -> None:
        # The record service has no registration endpoint; the key scopes
        # every later request and change subscription.
        if not key.strip():
            raise ProviderError("Cannot register an empty key", key=key)
        self._registered_key = key
        _logger.debug("Registered key %s", key)

    async def create(self, key: str, info: UserInfo) -> None:
        info = assign_beacon_id(info, self._beacon_id_strategy)
        body: dict[str, Any] = info.model_dump(by_alias=True, mode="json", exclude_none=True)
        body["displayName"] = info.format_display_name(self._config.display_name_separator)
        await self._request("PUT", key, payload=body, failure=UserCreationError)

    async def update(self, key: str, fields: Mapping[str, Any]) -> None:
        await self._request("PATCH", key, payload=dict(fields), failure=UserUpdateError)

    async def delete(self, key: str) -> None:
        await self._request("DELETE", key, failure=UserDeletionError)

    async def read(self, key: str) -> str:
        text = await self._request("GET", key)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise UserDecodingError(f"Record {key} is not JSON: {text[:64]}", key=key) from exc
        if document is None:
            raise UserNotFoundError(f"No user record at {key}", key=key)
        return text

    def change_listener(self, key: str) -> AsyncGenerator[UserState, None]:
        return self._change_stream.listen(key)

    async def _request(
        self,
        method: str,
        key: str,
        *,
        payload: Mapping[str, Any] | None = None,
        failure: type[ProviderError] | None = None,
    ) -> str:
        endpoint = _endpoint(key)
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"

        headers: dict[str, str] = {"accept": "application/json"}
        if self._config.auth_token:
            headers["authorization"] = f"Bearer {self._config.auth_token}"

        body: str | None = None
        if payload is not None:
            try:
                body = json.dumps(payload, separators=(",", ":"))
            except (TypeError, ValueError) as exc:
                raise UserEncodingError(f"Cannot encode {method} body for {key}: {exc}", key=key) from exc
            headers["content-type"] = "application/json; charset=UTF-8"

        _logger.debug("%s %s %s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
            ) as resp:
                text = await resp.text()
                if resp.status == 404:
                    raise UserNotFoundError(f"No user record at {key}", key=key)
                if resp.status >= 400:
                    message = f"HTTP {resp.status} from {method} {endpoint}: {text[:200]}"
                    if failure is not None:
                        raise failure(message, key=key)
                    raise ProviderTransportError(message, key=key, status_code=resp.status, endpoint=endpoint)
        except ProviderError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ProviderTransportError(
                f"{method} {endpoint} failed: {exc}",
                key=key,
                endpoint=endpoint,
            ) from exc

        return text
