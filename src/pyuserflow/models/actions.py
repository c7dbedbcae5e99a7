"""Actions consumed and emitted by the user middleware.

``Action`` is a closed set of variants.  Each variant is a frozen
pydantic model with zero or one payload field; its ``tag`` is derived
from the class name (``StateChanged`` -> ``"state_changed"``).

Variant accessors are generated once, when a variant class is defined:

* ``action.is_<tag>`` is ``True`` when *action* is that variant.
* ``action.as_<tag>()`` returns the action narrowed to that variant, or
  ``None``.

``match`` statements on the variant classes work as well::

    match action:
        case Update(fields=fields):
            ...
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyuserflow.models.user import UserInfoPatch, UserState

_VARIANTS: dict[str, type[Action]] = {}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _tag_for(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _nest_paths(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Turn ``{"families/f1": True}`` into ``{"families": {"f1": True}}``."""
    nested: dict[str, Any] = {}
    for path, value in fields.items():
        head, sep, rest = str(path).partition("/")
        if not sep:
            nested[head] = value
            continue
        current = nested.get(head)
        child = dict(current) if isinstance(current, Mapping) else {}
        child[rest] = value
        nested[head] = child
    return nested


class OperationKind(StrEnum):
    REGISTER = "register"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CHANGE_LISTENER = "change_listener"


class Action(BaseModel):
    """Base of all action variants."""

    model_config = ConfigDict(frozen=True)

    tag: ClassVar[str] = ""
    payload_field: ClassVar[str | None] = None

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        fields = list(cls.model_fields)
        if len(fields) > 1:
            raise TypeError(f"Action variant {cls.__name__} carries more than one payload: {fields}")
        tag = _tag_for(cls.__name__)
        if tag in _VARIANTS:
            raise TypeError(f"Duplicate action tag {tag!r}")
        cls.tag = tag
        cls.payload_field = fields[0] if fields else None
        _VARIANTS[tag] = cls

        def _is(self: Action, _variant: type[Action] = cls) -> bool:
            return isinstance(self, _variant)

        def _as(self: Action, _variant: type[Action] = cls) -> Action | None:
            return self if isinstance(self, _variant) else None

        _as.__name__ = f"as_{tag}"
        setattr(Action, f"is_{tag}", property(_is))
        setattr(Action, f"as_{tag}", _as)

    @classmethod
    def variants(cls) -> dict[str, type[Action]]:
        """Registered variants keyed by tag."""
        return dict(_VARIANTS)

    @property
    def payload(self) -> Any:
        """The variant's single payload, or ``None`` for bare variants."""
        if self.payload_field is None:
            return None
        return getattr(self, self.payload_field)

    def describe(self) -> str:
        if self.payload_field is None:
            return self.tag
        return f"{self.tag}({self.payload_field}=...)"


class Start(Action):
    """Application start: begin listening on the stored key, if any."""


class Create(Action):
    """Create the record described by the committed state."""


class Delete(Action):
    """Delete the record at the committed state's key."""


class Update(Action):
    """Write the given fields to the record at the committed state's key."""

    fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("fields", mode="before")
    @classmethod
    def _dump_patch(cls, value: Any) -> Any:
        # Plain mappings may use field names or wire names; both end up as wire names.
        if isinstance(value, Mapping):
            value = UserInfoPatch.model_validate(_nest_paths(value))
        if isinstance(value, UserInfoPatch):
            return value.model_dump(by_alias=True, exclude_unset=True)
        return value


class Read(Action):
    """Request the record stored at ``id``."""

    id: str


class Register(Action):
    """Register ``id`` as the current user's key."""

    id: str


class StateChanged(Action):
    """The provider reported a new state for the watched key."""

    state: UserState


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    message: str
    key: str | None = None


class OperationFailed(Action):
    """A provider operation failed (only emitted when enabled in config)."""

    failure: Failure
