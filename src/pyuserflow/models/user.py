"""User record models."""

from __future__ import annotations

from pydantic import ConfigDict, Field

from pyuserflow.models._base import UserflowBaseModel

DEFAULT_DISPLAY_NAME_SEPARATOR = " "


class UserInfo(UserflowBaseModel):
    """The stored user record.

    Every field has a default so that :data:`EMPTY_USER_INFO` can stand in
    before any record has been loaded.
    """

    beaconid: int | None = Field(default=None, ge=0, le=0xFFFF)
    """Numeric beacon identifier (16 bit).  Assigned by the provider."""
    email: str = ""
    given_name: str = ""
    family_name: str = ""
    families: dict[str, bool] | None = None
    """Family membership flags keyed by family id."""
    tracking: bool | None = True

    def format_display_name(self, separator: str = DEFAULT_DISPLAY_NAME_SEPARATOR) -> str:
        """Join given and family name with *separator*, skipping empty parts."""
        return separator.join(part for part in (self.given_name, self.family_name) if part)

    @property
    def display_name(self) -> str:
        return self.format_display_name()

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_USER_INFO


class UserState(UserflowBaseModel):
    """Snapshot of the record currently tracked by the store."""

    key: str | None = None
    """Record key; ``None`` until the user has registered."""
    value: UserInfo = Field(default_factory=UserInfo)


class UserInfoPatch(UserflowBaseModel):
    """Field set carried by an ``Update`` action.

    Only explicitly set fields are sent to the provider, so a patch built
    with ``UserInfoPatch(email="a@b.com")`` touches ``email`` alone.
    Unknown fields are rejected rather than written to the record.
    """

    model_config = ConfigDict(extra="forbid")

    beaconid: int | None = Field(default=None, ge=0, le=0xFFFF)
    email: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    families: dict[str, bool] | None = None
    tracking: bool | None = None


EMPTY_USER_INFO = UserInfo()
EMPTY_USER_STATE = UserState()
