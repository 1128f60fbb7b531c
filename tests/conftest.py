"""Global test fixtures."""

import os

# Auth settings are read when the AuthManager is first built,
# so they must be in place before any test module imports the app
os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-at-least-32-bytes")
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("SEARCH_FAILURE_POLICY", None)

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from apps.api.main import create_app
from auth.cache_manager import cache_manager
from auth.role_resolver import assign_role
from auth.roles import Role
from storage.object_store.buckets import StorageConfig
from storage.relational.database import DatabaseConfig

PASSWORD = "Passw0rd!"


@dataclass
class PortalUser:
    id: str
    email: str
    token: str

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(autouse=True)
def clear_token_blacklist():
    cache_manager.clear()
    yield
    cache_manager.clear()


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    config = StorageConfig()
    config.backend = "local"
    config.root = str(tmp_path / "storage")
    config.bucket = "user-files"
    config.public_base_url = "http://testserver"
    return config


@pytest.fixture
def app(storage_config):
    return create_app(db_config=DatabaseConfig("sqlite://"), storage_config=storage_config)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session(app, client):
    """A separate session on the app's database, for arranging and checking rows."""
    session = app.state.db.new_session()
    yield session
    session.close()


def register(client: TestClient, email: str, first_name: str = "Test", last_name: str = "User",
             password: str = PASSWORD) -> str:
    response = client.post("/auth/register", json={
        "email": email,
        "password": password,
        "confirm_password": password,
        "first_name": first_name,
        "last_name": last_name,
    })
    assert response.status_code == 200, response.text
    return response.json()["user_id"]


def login(client: TestClient, email: str, password: str = PASSWORD) -> str:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    # Tests authenticate explicitly with the bearer header
    client.cookies.clear()
    return response.json()["access_token"]


@pytest.fixture
def make_user(app, client):
    """Register, optionally promote, and log in a user."""
    counter = {"n": 0}

    def _make_user(role: Role = Role.USER, first_name: str = "Test", last_name: str = "User",
                   email: str = None) -> PortalUser:
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user_id = register(client, email, first_name, last_name)

        if role is not Role.USER:
            session = app.state.db.new_session()
            try:
                assign_role(session, user_id, role)
                session.commit()
            finally:
                session.close()

        return PortalUser(id=user_id, email=email, token=login(client, email))

    return _make_user
