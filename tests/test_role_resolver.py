from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import Identity, Profile, RoleRecord
from auth.role_resolver import assign_role, get_principal, load_principal, resolve_role
from auth.roles import Role
from core.errors import NotFoundError


def _add_principal(session, email, role_name=None, first_name="Ada"):
    identity = Identity(email=email, password_hash="x")
    session.add(identity)
    session.flush()

    role_id = None
    if role_name is not None:
        record = session.query(RoleRecord).filter_by(name=role_name).first()
        if record is None:
            record = RoleRecord(name=role_name)
            session.add(record)
            session.flush()
        role_id = record.id

    session.add(Profile(id=identity.id, first_name=first_name, last_name="Lovelace", role_id=role_id))
    session.commit()
    return identity.id


class TestResolveRole:
    def test_stored_role(self, db_session):
        user_id = _add_principal(db_session, "m@example.com", "manager")
        assert resolve_role(db_session, user_id) is Role.MANAGER

    def test_unset_role_defaults_to_user(self, db_session):
        user_id = _add_principal(db_session, "u@example.com", None)
        assert resolve_role(db_session, user_id) is Role.USER

    def test_missing_profile_fails_closed(self, db_session):
        assert resolve_role(db_session, "does-not-exist") is None

    def test_unknown_role_name_fails_closed(self, db_session):
        user_id = _add_principal(db_session, "x@example.com", "superuser")
        assert resolve_role(db_session, user_id) is None

    def test_database_error_fails_closed(self, db_session):
        with mock.patch.object(db_session, "query", side_effect=OperationalError("SELECT", {}, Exception("down"))):
            assert resolve_role(db_session, "anyone") is None


class TestLoadPrincipal:
    def test_inactive_identity_is_not_a_principal(self, db_session):
        user_id = _add_principal(db_session, "gone@example.com", "admin")
        db_session.query(Identity).filter_by(id=user_id).update({"is_active": False})
        db_session.commit()

        assert load_principal(db_session, user_id) is None

    def test_role_is_left_for_resolution(self, db_session):
        user_id = _add_principal(db_session, "a@example.com", "admin")
        principal = load_principal(db_session, user_id)
        assert principal.email == "a@example.com"
        assert principal.role is None


class TestAssignRole:
    def test_assign_and_read_back(self, db_session):
        user_id = _add_principal(db_session, "p@example.com", "user")
        principal = assign_role(db_session, user_id, Role.ADMIN)
        db_session.commit()

        assert principal.role is Role.ADMIN
        assert get_principal(db_session, user_id).role is Role.ADMIN

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            assign_role(db_session, "nobody", Role.ADMIN)
