"""Pydantic models for user records and middleware actions."""

from pyuserflow.models.actions import (
    Action,
    Create,
    Delete,
    Failure,
    OperationFailed,
    OperationKind,
    Read,
    Register,
    Start,
    StateChanged,
    Update,
)
from pyuserflow.models.user import (
    DEFAULT_DISPLAY_NAME_SEPARATOR,
    EMPTY_USER_INFO,
    EMPTY_USER_STATE,
    UserInfo,
    UserInfoPatch,
    UserState,
)

__all__ = [
    "DEFAULT_DISPLAY_NAME_SEPARATOR",
    "EMPTY_USER_INFO",
    "EMPTY_USER_STATE",
    "Action",
    "Create",
    "Delete",
    "Failure",
    "OperationFailed",
    "OperationKind",
    "Read",
    "Register",
    "Start",
    "StateChanged",
    "Update",
    "UserInfo",
    "UserInfoPatch",
    "UserState",
]
