"""
Authentication manager: bcrypt password hashing, JWT access tokens,
registration, login, logout and password changes.

Every method that touches the database receives the request's session.
"""

import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import bcrypt
import dotenv
import jwt
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth.cache_manager import cache_manager
from auth.models import ActivityLog, Identity, Profile
from auth.role_resolver import role_record
from auth.roles import Role
from core.errors import AuthorizationError, ConflictError, UpstreamError, ValidationError

dotenv.load_dotenv()

MIN_PASSWORD_LENGTH = 8


def log_activity(session: Session, user_id: Optional[str], action: str,
                 details: dict = None, ip_address: str = None):
    """Record an activity row in the caller's transaction. A failed insert is logged, not raised."""
    try:
        session.add(ActivityLog(
            user_id=user_id,
            action=action,
            details=details or {},
            ip_address=ip_address,
        ))
        session.flush()
        logger.info(f"[AUDIT] {action} for user {user_id}")
    except SQLAlchemyError as e:
        logger.error(f"[AUDIT] Error logging activity {action}: {type(e).__name__}: {e}")


def log_failed_activity(session: Session, user_id: Optional[str], action: str,
                        details: dict = None, ip_address: str = None):
    """
    Record a failure event so that it survives the caller's error.

    Pending work in the session is discarded first; the request that failed
    has nothing worth keeping.
    """
    try:
        session.rollback()
        log_activity(session, user_id, action, details, ip_address)
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"[AUDIT] Error committing failure event {action}: {type(e).__name__}: {e}")
        session.rollback()


def check_password_strength(password: str, confirm_password: str):
    if password != confirm_password:
        raise ValidationError("Passwords do not match", field="confirm_password")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 8 characters", field="password")

    if not (re.search(r"[A-Z]", password) and re.search(r"[a-z]", password) and re.search(r"[0-9]", password)):
        raise ValidationError("Password must contain uppercase, lowercase, and numbers", field="password")


class AuthManager:
    """Authentication manager"""

    def __init__(self, jwt_secret: str = None, jwt_expiry: int = None, environment: str = None):
        self.jwt_secret = jwt_secret or os.getenv("JWT_SECRET")
        if not self.jwt_secret:
            raise ValueError("JWT_SECRET environment variable not set. Cannot initialize auth system.")
        if len(self.jwt_secret) < 32:
            logger.warning("JWT_SECRET is less than 32 bytes - use a stronger secret!")
        self.jwt_expiry = jwt_expiry or int(os.getenv("JWT_EXPIRY_SECONDS", "3600"))
        self.password_reset_expiry = 1 * 3600
        self.bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "12"))
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        logger.info("AuthManager initialized")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # ==================== PASSWORD HASHING ====================

    def _hash_password(self, password: str) -> str:
        """Hash password using bcrypt"""
        password_bytes = password.encode('utf-8')[:72]
        return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode('utf-8')

    def _verify_password(self, password: str, password_hash: str) -> bool:
        """Verify password against hash"""
        if not password_hash:
            logger.error("[VERIFY] Password hash is None or empty")
            return False

        try:
            return bcrypt.checkpw(password.encode('utf-8')[:72], password_hash.encode('utf-8'))
        except ValueError as e:
            logger.error(f"[VERIFY] Malformed password hash: {e}")
            return False

    # ==================== TOKENS ====================

    def _encode(self, claims: dict, expiry_seconds: int) -> str:
        payload = {
            **claims,
            "jti": str(uuid.uuid4()),
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expiry_seconds),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def issue_access_token(self, identity: Identity) -> str:
        return self._encode({"sub": identity.id, "email": identity.email, "type": "access"}, self.jwt_expiry)

    def verify_token(self, token: str, token_type: str = "access") -> Optional[dict]:
        """Verify JWT token and return payload"""
        if not token:
            return None

        if cache_manager.is_token_blacklisted(token):
            logger.warning("[TOKEN_VERIFY] Token has been revoked")
            return None

        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            logger.warning("[TOKEN_VERIFY] Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"[TOKEN_VERIFY] Invalid token: {e}")
            return None

        if payload.get("type") != token_type:
            logger.warning(f"[TOKEN_VERIFY] Unexpected token type: {payload.get('type')}")
            return None

        return payload

    def remaining_lifetime(self, payload: dict) -> int:
        exp = payload.get("exp")
        if exp is None:
            return self.jwt_expiry
        return max(int(exp - datetime.now(timezone.utc).timestamp()), 1)

    # ==================== REGISTRATION ====================

    def register(self, session: Session, email: str, password: str, confirm_password: str,
                 first_name: str, last_name: str, ip_address: str = None) -> Identity:
        """Create identity + profile with the `user` role"""
        email = (email or "").strip().lower()
        if not email or not password or not first_name or not last_name:
            raise ValidationError("All fields are required")

        check_password_strength(password, confirm_password)

        logger.info(f"[REGISTER] Starting registration for email: {email}")
        try:
            if session.query(Identity).filter_by(email=email).first():
                logger.warning(f"[REGISTER] Email already exists: {email}")
                log_failed_activity(session, None, "SIGNUP_FAILED", {"email": email, "reason": "email_taken"}, ip_address)
                raise ConflictError("Email already registered")

            identity = Identity(email=email, password_hash=self._hash_password(password))
            session.add(identity)
            session.flush()

            session.add(Profile(
                id=identity.id,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                role_id=role_record(session, Role.USER).id,
                is_active=True,
                email_verified=False,
            ))
            session.flush()
        except IntegrityError as e:
            logger.warning(f"[REGISTER] Integrity error for {email}: {e}")
            raise ConflictError("Email already registered")
        except SQLAlchemyError as e:
            logger.error(f"[REGISTER] Registration error: {type(e).__name__}: {e}")
            raise UpstreamError("Registration failed", cause=e)

        log_activity(session, identity.id, "SIGNUP_SUCCESS", {"email": email}, ip_address)
        logger.info(f"[REGISTER] User registered successfully: {email}")
        return identity

    # ==================== LOGIN / LOGOUT ====================

    def login(self, session: Session, email: str, password: str, ip_address: str = None) -> dict:
        """Check credentials and issue an access token"""
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required")

        try:
            identity = session.query(Identity).filter_by(email=email).first()
        except SQLAlchemyError as e:
            raise UpstreamError("Login failed", cause=e)

        if identity is None or not self._verify_password(password, identity.password_hash):
            logger.warning(f"[LOGIN] Invalid credentials for: {email}")
            log_failed_activity(session, None, "LOGIN_FAILED", {"email": email, "reason": "invalid_credentials"}, ip_address)
            raise AuthorizationError("Invalid email or password", code="invalid_credentials")

        if not identity.is_active:
            logger.warning(f"[LOGIN] Account is disabled for: {email}")
            log_failed_activity(session, identity.id, "LOGIN_FAILED", {"email": email, "reason": "disabled"}, ip_address)
            raise AuthorizationError("Account is disabled", code="account_disabled")

        identity.last_login = datetime.utcnow()
        access_token = self.issue_access_token(identity)
        log_activity(session, identity.id, "LOGIN_SUCCESS", {"email": email}, ip_address)
        logger.info(f"[LOGIN] User logged in successfully: {email}")

        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.jwt_expiry,
            "user_id": identity.id,
            "email": identity.email,
        }

    def logout(self, session: Session, token: str, ip_address: str = None) -> bool:
        """Revoke the access token until it would have expired"""
        payload = self.verify_token(token)
        if not payload:
            return False

        cache_manager.blacklist_token(token, ttl=self.remaining_lifetime(payload))
        log_activity(session, payload["sub"], "LOGOUT", {}, ip_address)
        logger.info(f"[LOGOUT] User logged out: {payload['sub']}")
        return True

    # ==================== PASSWORDS ====================

    def change_password(self, session: Session, principal_id: str, current_password: str,
                        new_password: str, confirm_password: str, ip_address: str = None):
        if not current_password or not new_password or not confirm_password:
            raise ValidationError("All fields are required")

        check_password_strength(new_password, confirm_password)

        identity = session.query(Identity).filter_by(id=principal_id).first()
        if identity is None:
            raise AuthorizationError("You must be logged in", code="missing_token")

        if not self._verify_password(current_password, identity.password_hash):
            raise ValidationError("Current password is incorrect", field="current_password")

        identity.password_hash = self._hash_password(new_password)
        log_activity(session, principal_id, "PASSWORD_CHANGED", {}, ip_address)
        logger.info(f"[PASSWORD] Password changed for user: {principal_id}")

    def request_password_reset(self, session: Session, email: str, ip_address: str = None) -> Optional[str]:
        """
        Issue a reset token for `email`.

        Returns the token, or None when the email is unknown. Callers must
        answer identically in both cases.
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required")

        log_activity(session, None, "PASSWORD_RESET_REQUESTED", {"email": email}, ip_address)

        identity = session.query(Identity).filter_by(email=email).first()
        if identity is None or not identity.is_active:
            logger.warning(f"[PASSWORD_RESET] No active account for: {email}")
            return None

        token = self._encode({"sub": identity.id, "type": "password_reset"}, self.password_reset_expiry)
        # Email delivery is handled outside this service
        logger.info(f"[PASSWORD_RESET] Reset token issued for user: {identity.id}")
        return token

    def reset_password(self, session: Session, token: str, password: str,
                       confirm_password: str, ip_address: str = None):
        if not password or not confirm_password:
            raise ValidationError("All fields are required")

        check_password_strength(password, confirm_password)

        payload = self.verify_token(token, token_type="password_reset")
        if not payload:
            raise ValidationError("Invalid or expired reset token", field="token")

        identity = session.query(Identity).filter_by(id=payload["sub"]).first()
        if identity is None or not identity.is_active:
            raise ValidationError("Invalid or expired reset token", field="token")

        identity.password_hash = self._hash_password(password)
        # one reset per token
        cache_manager.blacklist_token(token, ttl=self.remaining_lifetime(payload))
        log_activity(session, identity.id, "PASSWORD_RESET_SUCCESS", {}, ip_address)
        logger.info(f"[RESET_PWD] Password reset successful for: {identity.email}")


@lru_cache(maxsize=1)
def get_auth_manager() -> AuthManager:
    """Process-wide AuthManager; it holds configuration only."""
    return AuthManager()
