"""
Role-Based Access Control (RBAC) dependencies for FastAPI.

Two kinds of protection:
  - Page guard: decides whether a page may render, and where to send the
    caller otherwise (login page or landing page).
  - Action guards: `require_role` / `require_any_role` for JSON endpoints,
    answering 401 / 403.
"""

from dataclasses import dataclass, replace
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, HTTPException, Request
from loguru import logger

from auth.roles import (
    LANDING_PAGE,
    LOGIN_PAGE,
    Principal,
    Role,
    RoleRequirement,
    can_access,
)
from core.context import RequestContext, get_request_context

# ==================== PAGE GUARD ====================


@dataclass
class GuardDecision:
    """Outcome of a page guard: render with `principal`, or redirect."""

    allowed: bool
    principal: Optional[Principal] = None
    redirect_to: Optional[str] = None


def login_redirect(path: str) -> str:
    return f"{LOGIN_PAGE}?redirect={quote(path, safe='/')}"


def guard_page(principal: Optional[Principal], path: str,
               requirement: Optional[RoleRequirement] = None) -> GuardDecision:
    """
    Decide whether `principal` may render the page at `path`.

    No principal -> login page with a return path. Requirement not met ->
    landing page. A principal whose role could not be resolved renders
    only pages without a requirement, as a `user`.
    """
    if principal is None:
        return GuardDecision(allowed=False, redirect_to=login_redirect(path))

    if principal.role is None:
        logger.warning(f"[GUARD] Role unresolved for {principal.id}; treating as user for rendering")

    if requirement is not None and not can_access(principal, requirement):
        logger.warning(f"[GUARD] {principal.id} denied page {path}")
        return GuardDecision(allowed=False, principal=principal, redirect_to=LANDING_PAGE)

    if principal.role is None:
        # render with a copy; the caller's principal keeps its unresolved role
        principal = replace(principal, role=Role.USER)

    return GuardDecision(allowed=True, principal=principal)


class GuardRedirect(Exception):
    """Raised by page dependencies; the app turns it into a redirect response."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


def page_guard(requirement: Optional[RoleRequirement] = None):
    """
    Dependency factory for page routes. Returns the principal to render for,
    raises GuardRedirect otherwise.
    """
    def _page_guard(request: Request, ctx: RequestContext = Depends(get_request_context)) -> Principal:
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        decision = guard_page(ctx.principal(), path, requirement)
        if not decision.allowed:
            raise GuardRedirect(decision.redirect_to)
        return decision.principal

    return _page_guard


# ==================== ACTION GUARDS ====================


def get_optional_principal(ctx: RequestContext = Depends(get_request_context)) -> Optional[Principal]:
    """Optional dependency: the principal if authenticated, otherwise None."""
    return ctx.principal()


def get_current_principal(ctx: RequestContext = Depends(get_request_context)) -> Principal:
    """Dependency: authenticated principal, 401 otherwise."""
    principal = ctx.principal()
    if principal is None:
        raise HTTPException(status_code=401, detail="You must be logged in")
    return principal


def require_role(required_role: Role):
    """
    Dependency factory: require `required_role` or any role above it.
    """
    def _require_role(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not can_access(principal, required_role):
            logger.warning(
                f"User {principal.id} attempted to access {required_role.label} "
                f"endpoint without required role"
            )
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _require_role


def require_any_role(required_roles: list):
    """
    Dependency factory: require one of the listed roles exactly.
    """
    allowed = frozenset(required_roles)

    def _require_any_role(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not can_access(principal, allowed):
            logger.warning(
                f"User {principal.id} attempted to access endpoint requiring "
                f"one of {sorted(r.label for r in allowed)}"
            )
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _require_any_role


# ==================== COMMONLY USED DEPENDENCIES ====================

require_admin = require_role(Role.ADMIN)
require_manager_or_admin = require_any_role([Role.MANAGER, Role.ADMIN])
