"""Configuration for pyuserflow."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyuserflow.exceptions import UserflowConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class UserflowConfig:
    """Middleware and provider configuration.

    Parameters
    ----------
    base_url : str
        Root URL of the JSON record service used by ``RestUserStorage``.
        Records live under ``{base_url}/users/{key}.json``.
    auth_token : str or None
        Bearer token sent with every REST request, if set.
    request_timeout : float
        Total timeout in seconds for a single REST request.
    mqtt_host : str
        Broker host for the change stream.
    mqtt_port : int
        Broker port.
    mqtt_topic_prefix : str
        Change notifications for key ``k`` arrive on ``{prefix}/{k}``.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Enable TLS on the broker connection.
    mqtt_username : str or None
        Broker username, if the broker requires authentication.
    mqtt_password : str or None
        Broker password.
    display_name_separator : str
        Separator placed between given and family name when a display
        name is built.  Older records were written with ``""``.
    emit_failure_actions : bool
        When enabled, every failure reported by the middleware is also
        dispatched as an ``OperationFailed`` action.  Disabled by default:
        failures are logged and handed to the error sink only.
    """

    base_url: str = "http://localhost:9000"
    auth_token: str | None = None
    request_timeout: float = 30.0
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic_prefix: str = "users"
    mqtt_keepalive: int = 120
    mqtt_tls: bool = False
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    display_name_separator: str = " "
    emit_failure_actions: bool = False

    def __post_init__(self) -> None:
        if not self.base_url.strip():
            raise UserflowConfigError("base_url must be non-empty")
        if self.request_timeout <= 0:
            raise UserflowConfigError("request_timeout must be positive")
        if not 0 < self.mqtt_port < 65536:
            raise UserflowConfigError(f"mqtt_port out of range: {self.mqtt_port}")
        if not self.mqtt_topic_prefix.strip("/"):
            raise UserflowConfigError("mqtt_topic_prefix must be non-empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> UserflowConfig:
        """Create configuration from ``USERFLOW_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "USERFLOW_BASE_URL": "base_url",
            "USERFLOW_AUTH_TOKEN": "auth_token",
            "USERFLOW_MQTT_HOST": "mqtt_host",
            "USERFLOW_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
            "USERFLOW_MQTT_USERNAME": "mqtt_username",
            "USERFLOW_MQTT_PASSWORD": "mqtt_password",
            "USERFLOW_DISPLAY_NAME_SEPARATOR": "display_name_separator",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            timeout_env = env.get("USERFLOW_REQUEST_TIMEOUT")
            if timeout_env is not None and "request_timeout" not in overrides:
                config_kwargs["request_timeout"] = float(timeout_env)

            port_env = env.get("USERFLOW_MQTT_PORT")
            if port_env is not None and "mqtt_port" not in overrides:
                config_kwargs["mqtt_port"] = int(port_env)

            keepalive_env = env.get("USERFLOW_MQTT_KEEPALIVE")
            if keepalive_env is not None and "mqtt_keepalive" not in overrides:
                config_kwargs["mqtt_keepalive"] = int(keepalive_env)
        except ValueError as exc:
            raise UserflowConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("USERFLOW_MQTT_TLS"), False)

        if "emit_failure_actions" not in overrides:
            config_kwargs["emit_failure_actions"] = _env_bool(
                env.get("USERFLOW_EMIT_FAILURE_ACTIONS"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
