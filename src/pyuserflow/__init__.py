"""pyuserflow - store middleware for asynchronous user record effects."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyuserflow")
except PackageNotFoundError:
    __version__ = "0+local"

from pyuserflow.config import UserflowConfig
from pyuserflow.effects import EffectHandle, EffectRunner, Slot
from pyuserflow.exceptions import (
    ProviderError,
    ProviderTransportError,
    UserCreationError,
    UserDecodingError,
    UserDeletionError,
    UserEncodingError,
    UserflowConfigError,
    UserflowError,
    UserflowStateError,
    UserNotFoundError,
    UserUpdateError,
)
from pyuserflow.middleware import ErrorSink, HandleResult, UserMiddleware, flatten_fields
from pyuserflow.models import (
    EMPTY_USER_INFO,
    EMPTY_USER_STATE,
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
    UserInfo,
    UserInfoPatch,
    UserState,
)
from pyuserflow.providers import (
    InMemoryUserStorage,
    RestUserStorage,
    UserStorage,
    no_beacon_id,
    random_beacon_id,
)
from pyuserflow.store import Reducer, Store
from pyuserflow.switcher import KeySwitcher

__all__ = [
    "__version__",
    "EMPTY_USER_INFO",
    "EMPTY_USER_STATE",
    "Action",
    "Create",
    "Delete",
    "EffectHandle",
    "EffectRunner",
    "ErrorSink",
    "Failure",
    "HandleResult",
    "InMemoryUserStorage",
    "KeySwitcher",
    "OperationFailed",
    "OperationKind",
    "ProviderError",
    "ProviderTransportError",
    "Read",
    "Reducer",
    "Register",
    "RestUserStorage",
    "Slot",
    "Start",
    "StateChanged",
    "Store",
    "Update",
    "UserCreationError",
    "UserDecodingError",
    "UserDeletionError",
    "UserEncodingError",
    "UserInfo",
    "UserInfoPatch",
    "UserMiddleware",
    "UserNotFoundError",
    "UserState",
    "UserStorage",
    "UserUpdateError",
    "UserflowConfig",
    "UserflowConfigError",
    "UserflowError",
    "UserflowStateError",
    "flatten_fields",
    "no_beacon_id",
    "random_beacon_id",
]
