"""Internal MQTT runtime and change stream.

Change notifications for a user key are published as JSON on
``{mqtt_topic_prefix}/{key}``.  A payload is either a full user state
(``{"key": ..., "value": {...}}``) or a bare user record; ``null`` means
the record was removed and is skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from pyuserflow.config import UserflowConfig
from pyuserflow.exceptions import ProviderTransportError, UserDecodingError
from pyuserflow.models.user import UserInfo, UserState

ClientFactory = Callable[[str], mqtt.Client]


@dataclass(frozen=True)
class MqttTarget:
    """Broker details and topic for one subscription."""

    broker_host: str
    broker_port: int
    topic: str
    client_id: str
    username: str | None = None
    password: str | None = None
    tls: bool = False


def topic_for(config: UserflowConfig, key: str) -> str:
    return f"{config.mqtt_topic_prefix.strip('/')}/{key}"


def decode_user_state(payload: bytes, key: str) -> UserState | None:
    """Decode a change notification for *key*.

    Returns ``None`` for a ``null`` payload (record removed).
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise UserDecodingError(f"Change notification for {key} is not JSON: {exc}", key=key) from exc

    if parsed is None:
        return None
    if not isinstance(parsed, dict):
        raise UserDecodingError(f"Change notification for {key} is not an object", key=key)

    try:
        if "value" in parsed:
            state = UserState.model_validate(parsed)
        else:
            state = UserState(key=key, value=UserInfo.model_validate(parsed))
    except ValidationError as exc:
        raise UserDecodingError(f"Invalid change notification for {key}: {exc}", key=key) from exc

    if state.key is None:
        return state.model_copy(update={"key": key})
    if state.key != key:
        raise UserDecodingError(f"Change notification for {key} carries key {state.key}", key=key)
    return state


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv5,
    )


class MqttRuntime:
    """Threaded paho-mqtt runtime that hands raw payloads to an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_payload: Callable[[bytes], None],
        on_failure: Callable[[Exception], None],
        keepalive: int = 120,
        client_factory: ClientFactory = _default_client_factory,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_payload = on_payload
        self._on_failure = on_failure
        self._keepalive = keepalive
        self._client_factory = client_factory
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, target: MqttTarget) -> None:
        """Connect and subscribe.  Blocking; run it in an executor."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            target.broker_host,
            target.broker_port,
            target.topic,
            target.client_id,
        )

        client = self._client_factory(target.client_id)
        client.enable_logger(self._logger)
        if target.username is not None:
            client.username_pw_set(target.username, target.password)
        if target.tls:
            client.tls_set()

        self._topic = target.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                failure = ProviderTransportError(
                    f"MQTT connect refused: {reason_code}",
                    endpoint=f"{target.broker_host}:{target.broker_port}",
                )
                self._loop.call_soon_threadsafe(self._on_failure, failure)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            if self._topic:
                self._logger.debug("MQTT subscribing topic=%s", self._topic)
                c.subscribe(self._topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._logger.debug("Received PUBLISH topic=%s bytes=%d", msg.topic, len(msg.payload))
            self._loop.call_soon_threadsafe(self._on_payload, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(target.broker_host, target.broker_port, keepalive=self._keepalive)
        except OSError as exc:
            raise ProviderTransportError(
                f"MQTT connect to {target.broker_host}:{target.broker_port} failed: {exc}",
                endpoint=f"{target.broker_host}:{target.broker_port}",
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Unsubscribe, disconnect and stop the network loop."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        topic = self._topic
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                if topic:
                    client.unsubscribe(topic)
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class MqttChangeStream:
    """Per-key user change stream over MQTT."""

    def __init__(
        self,
        config: UserflowConfig,
        *,
        client_factory: ClientFactory = _default_client_factory,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._logger = logger or logging.getLogger(__name__)

    def _target(self, key: str) -> MqttTarget:
        return MqttTarget(
            broker_host=self._config.mqtt_host,
            broker_port=self._config.mqtt_port,
            topic=topic_for(self._config, key),
            client_id=f"pyuserflow_{secrets.token_hex(8)}",
            username=self._config.mqtt_username,
            password=self._config.mqtt_password,
            tls=self._config.mqtt_tls,
        )

    async def listen(self, key: str) -> AsyncGenerator[UserState, None]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[UserState | Exception] = asyncio.Queue()

        def on_payload(payload: bytes) -> None:
            try:
                state = decode_user_state(payload, key)
            except UserDecodingError as exc:
                queue.put_nowait(exc)
                return
            if state is None:
                self._logger.debug("Record %s removed; nothing to emit", key)
                return
            queue.put_nowait(state)

        runtime = MqttRuntime(
            loop=loop,
            on_payload=on_payload,
            on_failure=queue.put_nowait,
            keepalive=self._config.mqtt_keepalive,
            client_factory=self._client_factory,
            logger=self._logger,
        )
        # Cancelling the await does not stop the worker thread, so the start
        # future is shielded and must settle before the runtime is stopped.
        starting = loop.run_in_executor(None, runtime.start, self._target(key))
        try:
            await asyncio.shield(starting)
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            if not starting.done():
                self._logger.debug("Waiting for MQTT start of %s before stopping", key)
                try:
                    await asyncio.shield(starting)
                except Exception:
                    self._logger.debug("MQTT start of %s failed after cancel", key, exc_info=True)
            await loop.run_in_executor(None, runtime.stop)
