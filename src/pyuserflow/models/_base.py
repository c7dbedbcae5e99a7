"""Base model for user records.

Every record model inherits from :class:`UserflowBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase wire keys (``givenName``)
  map automatically to snake_case fields (``given_name``).
* ``frozen=True``: records are replaced, never edited in place.
* ``extra="ignore"`` so unknown keys written by other clients do not
  break decoding.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserflowBaseModel(BaseModel):
    """Base for user record models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
