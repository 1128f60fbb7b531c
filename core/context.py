"""
Per-request context.

One RequestContext is built per request: it owns the request's database
session, a lazily built object store, and the caller's bearer token. The
principal and role are looked up at most once per request.
"""

from typing import Callable, Generator, Optional

from fastapi import Depends, Request
from loguru import logger
from sqlalchemy.orm import Session

from auth.auth_manager import AuthManager, get_auth_manager
from auth.role_resolver import load_principal, resolve_role
from auth.roles import Principal, Role
from storage.object_store.buckets import ObjectStore, create_object_store

ACCESS_TOKEN_COOKIE = "access_token"

_UNSET = object()


def extract_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, falling back to the session cookie."""
    authorization = request.headers.get("authorization")
    if authorization and authorization.startswith("Bearer "):
        return authorization.replace("Bearer ", "").strip() or None
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestContext:
    """Everything a handler needs to act on behalf of the caller."""

    def __init__(self, session: Session, store_factory: Callable[[], ObjectStore],
                 token: Optional[str] = None, auth: Optional[AuthManager] = None,
                 client_ip: Optional[str] = None):
        self.session = session
        self.token = token
        self.client_ip = client_ip
        self._store_factory = store_factory
        self._auth = auth
        self._store = None
        self._principal = _UNSET

    @property
    def auth(self) -> AuthManager:
        if self._auth is None:
            self._auth = get_auth_manager()
        return self._auth

    @property
    def store(self) -> ObjectStore:
        if self._store is None:
            self._store = self._store_factory()
        return self._store

    def principal(self) -> Optional[Principal]:
        """
        The authenticated principal with its resolved role, or None.

        `principal.role` is None when the role lookup failed; such a principal
        fails every authorization check.
        """
        if self._principal is _UNSET:
            self._principal = self._load_principal()
        return self._principal

    def role(self) -> Optional[Role]:
        principal = self.principal()
        return principal.role if principal else None

    def _load_principal(self) -> Optional[Principal]:
        if not self.token:
            return None

        payload = self.auth.verify_token(self.token)
        if not payload:
            return None

        principal = load_principal(self.session, payload["sub"])
        if principal is None:
            logger.warning(f"[CONTEXT] Token subject {payload['sub']} has no active identity")
            return None

        principal.role = resolve_role(self.session, principal.id)
        return principal


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency: the request's session from the app's DatabaseManager."""
    yield from request.app.state.db.session_scope()


def get_request_context(request: Request, session: Session = Depends(get_db_session)) -> RequestContext:
    storage_config = request.app.state.storage_config
    return RequestContext(
        session=session,
        store_factory=lambda: create_object_store(storage_config),
        token=extract_token(request),
        client_ip=get_client_ip(request),
    )
