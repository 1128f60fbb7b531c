"""
Guarded pages. Each page returns the data it renders as JSON; a caller that
may not see the page is redirected instead (login page when anonymous,
landing page when under-privileged).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from admin.service import ActivityService, ContactService, UserAdminService, admin_overview, manager_overview
from auth.rbac_dependencies import get_optional_principal, page_guard
from auth.role_resolver import get_principal
from auth.roles import LANDING_PAGE, Principal, Role
from core.context import RequestContext, get_request_context
from core.errors import PortalError, to_http_exception
from storage.object_store.buckets import EMPTY_FOLDER_PLACEHOLDER

router = APIRouter(tags=["pages"])

MANAGER_SECTION = [Role.MANAGER, Role.ADMIN]


def _page(name: str, principal: Principal, **data) -> dict:
    return {"page": name, "user": principal.to_dict(), **data}

# ==================== AUTH PAGES ====================


@router.get("/auth/login")
async def login_page(
    redirect: Optional[str] = Query(None),
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    if principal is not None:
        return RedirectResponse(LANDING_PAGE)
    return {"page": "login", "redirect": redirect}


@router.get("/auth/sign-up")
async def sign_up_page(principal: Optional[Principal] = Depends(get_optional_principal)):
    if principal is not None:
        return RedirectResponse(LANDING_PAGE)
    return {"page": "sign-up"}

# ==================== DASHBOARD (any signed-in user) ====================


@router.get("/dashboard")
async def dashboard(principal: Principal = Depends(page_guard())):
    return _page("dashboard", principal)


@router.get("/dashboard/files")
async def dashboard_files(
    principal: Principal = Depends(page_guard()),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        objects = ctx.store.list(f"{principal.id}/", limit=100)
    except PortalError as e:
        raise to_http_exception(e)

    files = [
        {**obj.to_dict(), "url": ctx.store.public_url(obj.key)}
        for obj in objects
        if obj.name != EMPTY_FOLDER_PLACEHOLDER
    ]
    return _page("dashboard/files", principal, files=files)


@router.get("/dashboard/profile")
async def dashboard_profile(principal: Principal = Depends(page_guard())):
    return _page("dashboard/profile", principal)

# ==================== ADMIN ====================


@router.get("/admin")
async def admin_home(
    principal: Principal = Depends(page_guard(Role.ADMIN)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        stats = admin_overview(ctx.session)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("admin", principal, stats=stats)


@router.get("/admin/users")
async def admin_users(
    principal: Principal = Depends(page_guard(Role.ADMIN)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        users = UserAdminService.list_users(ctx.session)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("admin/users", principal, users=users)


@router.get("/admin/users/{user_id}")
async def admin_user_detail(
    user_id: str,
    principal: Principal = Depends(page_guard(Role.ADMIN)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        target = get_principal(ctx.session, user_id)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("admin/users/detail", principal, target=target.to_dict())


@router.get("/admin/activity")
async def admin_activity_page(
    principal: Principal = Depends(page_guard(Role.ADMIN)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        logs = ActivityService.recent(ctx.session, limit=500)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("admin/activity", principal, logs=logs)

# ==================== MANAGER (manager or admin) ====================


@router.get("/manager")
async def manager_home(
    principal: Principal = Depends(page_guard(MANAGER_SECTION)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        stats = manager_overview(ctx.session)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("manager", principal, stats=stats)


@router.get("/manager/activity")
async def manager_activity_page(
    principal: Principal = Depends(page_guard(MANAGER_SECTION)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        logs = ActivityService.recent(ctx.session, limit=100)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("manager/activity", principal, logs=logs)


@router.get("/manager/messages")
async def manager_messages_page(
    principal: Principal = Depends(page_guard(MANAGER_SECTION)),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        messages = ContactService.list_messages(ctx.session)
    except PortalError as e:
        raise to_http_exception(e)
    return _page("manager/messages", principal, messages=messages)
