"""Tests for the user record models and the action variants."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pyuserflow.models.actions import (
    Action,
    Create,
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
    EMPTY_USER_INFO,
    EMPTY_USER_STATE,
    UserInfo,
    UserInfoPatch,
    UserState,
)

# ------------------------------------------------------------------
# UserInfo / UserState
# ------------------------------------------------------------------


class TestUserInfo:
    def test_parses_wire_names(self) -> None:
        info = UserInfo.model_validate(
            {
                "beaconid": 513,
                "email": "ada@example.com",
                "givenName": "Ada",
                "familyName": "Lovelace",
                "families": {"fam1": True},
                "tracking": False,
                "somethingNew": 1,
            }
        )
        assert info.beaconid == 513
        assert info.given_name == "Ada"
        assert info.family_name == "Lovelace"
        assert info.families == {"fam1": True}
        assert info.tracking is False

    def test_dumps_wire_names(self) -> None:
        dumped = UserInfo(given_name="Ada", family_name="Lovelace").model_dump(by_alias=True)
        assert dumped["givenName"] == "Ada"
        assert dumped["familyName"] == "Lovelace"

    def test_beaconid_is_16_bit(self) -> None:
        UserInfo(beaconid=0xFFFF)
        with pytest.raises(ValidationError):
            UserInfo(beaconid=0x10000)
        with pytest.raises(ValidationError):
            UserInfo(beaconid=-1)

    def test_frozen(self) -> None:
        info = UserInfo(email="a@b.com")
        with pytest.raises(ValidationError):
            info.email = "c@d.com"  # type: ignore[misc]

    def test_display_name_default_separator(self) -> None:
        assert UserInfo(given_name="Ada", family_name="Lovelace").display_name == "Ada Lovelace"

    def test_display_name_custom_separator(self) -> None:
        info = UserInfo(given_name="Ada", family_name="Lovelace")
        assert info.format_display_name("") == "AdaLovelace"

    def test_display_name_skips_missing_parts(self) -> None:
        assert UserInfo(family_name="Lovelace").display_name == "Lovelace"
        assert UserInfo().display_name == ""

    def test_empty_constants(self) -> None:
        assert EMPTY_USER_INFO.is_empty
        assert EMPTY_USER_INFO.tracking is True
        assert EMPTY_USER_INFO.beaconid is None
        assert EMPTY_USER_STATE.key is None
        assert EMPTY_USER_STATE.value == EMPTY_USER_INFO
        assert not UserInfo(email="a@b.com").is_empty

    def test_state_defaults_value(self) -> None:
        state = UserState(key="k1")
        assert state.value == EMPTY_USER_INFO


class TestUserInfoPatch:
    def test_only_set_fields_are_dumped(self) -> None:
        patch = UserInfoPatch(given_name="Grace", tracking=None)
        assert patch.model_dump(by_alias=True, exclude_unset=True) == {"givenName": "Grace", "tracking": None}


# ------------------------------------------------------------------
# Actions
# ------------------------------------------------------------------


class TestActions:
    def test_tags_are_snake_case(self) -> None:
        assert Start.tag == "start"
        assert StateChanged.tag == "state_changed"
        assert OperationFailed.tag == "operation_failed"

    def test_variants_registry(self) -> None:
        variants = Action.variants()
        assert variants["register"] is Register
        assert variants["update"] is Update
        assert set(variants) >= {"start", "create", "delete", "update", "read", "register", "state_changed"}

    def test_is_and_as_accessors(self) -> None:
        action = Register(id="abc")
        assert action.is_register
        assert not action.is_read
        assert action.as_register() is action
        assert action.as_read() is None

    def test_payload(self) -> None:
        state = UserState(key="k1")
        assert Start().payload is None
        assert Read(id="abc").payload == "abc"
        assert StateChanged(state=state).payload is state

    def test_update_accepts_patch(self) -> None:
        action = Update(fields=UserInfoPatch(email="a@b.com", families={"f": True}))
        assert action.fields == {"email": "a@b.com", "families": {"f": True}}

    def test_update_normalises_plain_mapping_to_wire_names(self) -> None:
        action = Update(fields={"given_name": "Grace", "familyName": "Hopper", "families/fam": True})
        assert action.fields == {"givenName": "Grace", "familyName": "Hopper", "families": {"fam": True}}

    def test_update_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            Update(fields={"nickname": "Amazing Grace"})

    def test_update_defaults_to_empty_fields(self) -> None:
        assert Update().fields == {}

    def test_describe_hides_payload(self) -> None:
        assert Create().describe() == "create"
        assert Register(id="secret-key").describe() == "register(id=...)"

    def test_match_on_variant(self) -> None:
        action: Action = Read(id="abc")
        match action:
            case Read(id=key):
                matched = key
            case _:
                matched = None
        assert matched == "abc"

    def test_operation_failed_carries_failure(self) -> None:
        failed = OperationFailed(failure=Failure(kind=OperationKind.CREATE, message="boom", key="k1"))
        assert failed.payload.kind is OperationKind.CREATE
        assert failed.payload.key == "k1"

    def test_duplicate_tag_rejected(self) -> None:
        with pytest.raises(TypeError):

            class Start(Action):  # noqa: F811
                pass

    def test_more_than_one_payload_rejected(self) -> None:
        with pytest.raises(TypeError):

            class Rename(Action):
                old: str
                new: str
