"""
Error taxonomy for the portal.

- ValidationError: malformed input (400), never retried
- AuthorizationError: caller lacks the required role (403)
- NotFoundError / ConflictError: resource state problems (404 / 409)
- UpstreamError: datastore, object store or network failure (500, generic message)

Routes convert these with `to_http_exception`. Vendor exceptions are wrapped
into UpstreamError at the data-layer boundary and never reach the caller.
"""

from typing import Optional

from fastapi import HTTPException


class PortalError(Exception):
    """Base class for all portal errors."""

    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(message)


class ValidationError(PortalError):
    """Input validation failed."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class AuthorizationError(PortalError):
    """Caller is not allowed to perform this operation."""

    status_code = 403


class NotFoundError(PortalError):
    status_code = 404


class ConflictError(PortalError):
    status_code = 409


class UpstreamError(PortalError):
    """Datastore / object store / network failure."""

    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, code="UPSTREAM_ERROR")
        self.cause = cause


# Upstream failures surface with this text only
GENERIC_FAILURE_MESSAGE = "Internal server error"


def to_http_exception(error: PortalError) -> HTTPException:
    """Map a portal error to an HTTPException."""
    if isinstance(error, UpstreamError):
        return HTTPException(status_code=500, detail=GENERIC_FAILURE_MESSAGE)

    if isinstance(error, AuthorizationError):
        # Do not echo which role was missing
        return HTTPException(status_code=403, detail="Forbidden")

    return HTTPException(status_code=error.status_code, detail=error.message)
