"""
Security middleware for FastAPI:
- Response hardening headers (CSP, frame and sniffing protection, HSTS in production)
- Early rejection of revoked tokens on API calls
- Access logging for the auth endpoints and the privileged sections
"""

import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from auth.cache_manager import cache_manager
from core.context import extract_token, get_client_ip

logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "img-src 'self' data: https:",
    "connect-src 'self'",
    "frame-ancestors 'none'",
    "base-uri 'self'",
    "form-action 'self'",
])

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=()",
}

HSTS = "max-age=31536000; includeSubDomains"

PRIVILEGED_PREFIXES = ("/admin", "/api/admin", "/manager", "/api/manager")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp SECURITY_HEADERS on every response. HSTS is only sent in production."""

    def __init__(self, app, production: bool = None):
        super().__init__(app)
        if production is None:
            production = os.getenv("ENVIRONMENT", "development") == "production"
        self.headers = dict(SECURITY_HEADERS)
        if production:
            self.headers["Strict-Transport-Security"] = HSTS

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response


class TokenBlacklistMiddleware(BaseHTTPMiddleware):
    """
    Reject revoked tokens on API calls before they reach a handler.

    Page routes are left alone: a revoked token there is treated as no
    session and the page guard redirects to login.
    """

    def __init__(self, app, protected_prefixes: tuple = ("/api/",)):
        super().__init__(app)
        self.protected_prefixes = protected_prefixes

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.protected_prefixes):
            token = extract_token(request)
            if token and cache_manager.is_token_blacklisted(token):
                logger.warning(f"Revoked token used on {request.method} {request.url.path}")
                return JSONResponse(status_code=401, content={"detail": "Token has been revoked"})

        return await call_next(request)


class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """Access log for auth and privileged-section requests"""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/auth") and not path.startswith(PRIVILEGED_PREFIXES):
            return await call_next(request)

        client_ip = get_client_ip(request)
        response = await call_next(request)

        if path.startswith("/auth"):
            user_agent = request.headers.get("user-agent", "unknown")
            logger.info(f"Auth request: {request.method} {path} -> {response.status_code} from {client_ip} - {user_agent}")
        else:
            logger.info(f"Privileged section access: {request.method} {path} -> {response.status_code} from {client_ip}")

        return response
