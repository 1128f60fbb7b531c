import itertools

import pytest

from auth.roles import Principal, Role, can_access, has_any_role, has_role


def _principal(role):
    return Principal(id="p-1", email="p@example.com", role=role)


class TestHasRole:
    @pytest.mark.parametrize("lower,higher", [
        (a, b) for a, b in itertools.product(Role, Role) if a <= b
    ])
    def test_hierarchy_is_a_minimum_bar(self, lower, higher):
        assert has_role(higher, lower)
        assert has_role(lower, higher) is (lower == higher)

    def test_ranks(self):
        assert [r.value for r in Role] == [1, 2, 3]
        assert [r.label for r in Role] == ["user", "manager", "admin"]


class TestHasAnyRole:
    def test_allow_list_ignores_hierarchy(self):
        assert not has_any_role(Role.ADMIN, [Role.MANAGER])
        assert has_any_role(Role.MANAGER, [Role.MANAGER, Role.ADMIN])
        assert not has_any_role(Role.USER, [Role.MANAGER, Role.ADMIN])

    def test_empty_allow_list(self):
        assert not has_any_role(Role.ADMIN, [])


class TestCanAccess:
    @pytest.mark.parametrize("requirement", [Role.USER, Role.ADMIN, [Role.USER], [], [Role.MANAGER, Role.ADMIN]])
    def test_no_principal_never_passes(self, requirement):
        assert can_access(None, requirement) is False

    def test_unresolved_role_never_passes(self):
        assert can_access(_principal(None), Role.USER) is False
        assert can_access(_principal(None), [Role.USER]) is False

    def test_single_role_is_hierarchical(self):
        assert can_access(_principal(Role.ADMIN), Role.MANAGER)
        assert not can_access(_principal(Role.USER), Role.MANAGER)

    def test_collection_is_allow_list(self):
        assert not can_access(_principal(Role.ADMIN), [Role.MANAGER])
        assert can_access(_principal(Role.ADMIN), (Role.MANAGER, Role.ADMIN))
        assert can_access(_principal(Role.MANAGER), {Role.MANAGER})


class TestRoleParse:
    def test_known_names(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse(" Manager ") is Role.MANAGER

    def test_unknown_names(self):
        assert Role.parse("superuser") is None
        assert Role.parse(None) is None


def test_principal_to_dict_uses_role_label():
    data = Principal(id="1", email="a@b.co", first_name="Ada", last_name="L", role=Role.MANAGER).to_dict()
    assert data["role"] == "manager"
    assert Principal(id="1", email="a@b.co").display_name == "1"
