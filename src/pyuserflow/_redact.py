"""Helpers for safe debug logging.

User records carry personal data (e-mail addresses, names) and the REST
provider carries a bearer token.  This module scrubs those values before
they are emitted in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "authtoken",
        "auth_token",
        "authorization",
        "cookie",
    }
)

# Personal fields are masked rather than dropped so logs stay comparable.
_PERSONAL_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "email",
        "givenname",
        "given_name",
        "familyname",
        "family_name",
    }
)


def mask_email(value: str) -> str:
    """Keep the first character of the local part and the domain."""
    local, sep, domain = value.partition("@")
    if not sep:
        return "<redacted>"
    head = local[:1]
    return f"{head}***@{domain}"


def _mask_personal(key: str, value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return value
    if "email" in key:
        return mask_email(value)
    return f"{value[:1]}***"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if hasattr(value, "model_dump"):
        value = value.model_dump(by_alias=True)

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            elif lowered in _PERSONAL_VALUE_KEYS:
                redacted[key] = _mask_personal(lowered, v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
