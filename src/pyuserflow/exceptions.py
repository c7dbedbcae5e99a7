"""Custom exception hierarchy for pyuserflow."""

from __future__ import annotations


class UserflowError(Exception):
    """Base exception for all pyuserflow errors."""


class UserflowConfigError(UserflowError):
    """Invalid or missing configuration."""


class UserflowStateError(UserflowError):
    """Middleware used outside its lifecycle (e.g. attached twice)."""


class ProviderError(UserflowError):
    """A user storage provider operation failed.

    Provider errors are terminal for the single operation that raised
    them.  The middleware never retries; it reports them to its error
    sink and carries on with the next action.
    """

    def __init__(self, message: str, *, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)


class UserDecodingError(ProviderError):
    """A stored record or change notification could not be decoded."""


class UserEncodingError(ProviderError):
    """A record or field set could not be encoded for the provider."""


class UserNotFoundError(ProviderError):
    """No record exists for the requested key."""


class UserCreationError(ProviderError):
    """The provider rejected a create."""


class UserUpdateError(ProviderError):
    """The provider rejected an update."""


class UserDeletionError(ProviderError):
    """The provider rejected a delete."""


class ProviderTransportError(ProviderError):
    """HTTP-level failure (network, unexpected status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message, key=key)
