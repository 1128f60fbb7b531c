"""
JSON action endpoints for the admin and manager panels, the caller's
profile and the public contact form.

Exposed endpoints:
- GET    /api/admin/users              - List users with roles (admin)
- PUT    /api/admin/users/{id}/role    - Change a user's role (admin)
- PATCH  /api/admin/users/{id}         - Edit name / role (admin)
- DELETE /api/admin/users/{id}         - Delete a user (admin)
- GET    /api/admin/activity           - Activity log (admin)
- GET    /api/manager/messages         - Contact messages (manager, admin)
- PATCH  /api/manager/messages/{id}    - Change message status (manager, admin)
- PATCH  /api/profile                  - Edit own name (any user)
- POST   /api/contact                  - Submit the contact form (public)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, EmailStr

from admin.service import ActivityService, ContactService, ProfileService, UserAdminService
from auth.rbac_dependencies import get_current_principal, require_admin, require_manager_or_admin
from auth.roles import Principal
from core.context import RequestContext, get_request_context
from core.errors import PortalError, to_http_exception

admin_router = APIRouter(prefix="/api/admin", tags=["admin"])
manager_router = APIRouter(prefix="/api/manager", tags=["manager"])
router = APIRouter(prefix="/api", tags=["portal"])

# ==================== REQUEST MODELS ====================


class RoleChangeRequest(BaseModel):
    role: str


class UserUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None


class MessageStatusRequest(BaseModel):
    status: str


class ProfileUpdateRequest(BaseModel):
    first_name: str = ""
    last_name: str = ""


class ContactRequest(BaseModel):
    name: str = ""
    email: EmailStr = ""
    subject: str = ""
    message: str = ""

# ==================== ADMIN ====================


@admin_router.get("/users")
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role name"),
    admin: Principal = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        users = UserAdminService.list_users(ctx.session, role)
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "users": users, "count": len(users)}


@admin_router.put("/users/{user_id}/role")
async def change_role(
    user_id: str,
    data: RoleChangeRequest,
    admin: Principal = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    """Assign a role to a user (admin only)."""
    try:
        user = UserAdminService.change_role(ctx.session, admin, user_id, data.role, ctx.client_ip)
    except PortalError as e:
        raise to_http_exception(e)

    logger.info(f"Role {data.role} assigned to user {user_id} by {admin.id}")
    return {"success": True, "user": user.to_dict()}


@admin_router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdateRequest,
    admin: Principal = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        user = UserAdminService.update_user(
            ctx.session, admin, user_id,
            first_name=data.first_name,
            last_name=data.last_name,
            role_name=data.role,
            ip_address=ctx.client_ip,
        )
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "User updated successfully", "user": user.to_dict()}


@admin_router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: Principal = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        UserAdminService.delete_user(ctx.session, admin, user_id, ctx.client_ip)
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "User deleted successfully"}


@admin_router.get("/activity")
async def admin_activity(
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = Query(None),
    admin: Principal = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        logs = ActivityService.recent(ctx.session, limit=limit, action=action)
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "logs": logs, "count": len(logs)}

# ==================== MANAGER ====================


@manager_router.get("/messages")
async def list_messages(
    status: Optional[str] = Query(None, description="pending, read, replied or archived"),
    manager: Principal = Depends(require_manager_or_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        messages = ContactService.list_messages(ctx.session, status)
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "messages": messages, "count": len(messages)}


@manager_router.patch("/messages/{message_id}")
async def update_message_status(
    message_id: str,
    data: MessageStatusRequest,
    manager: Principal = Depends(require_manager_or_admin),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        message = ContactService.update_status(ctx.session, manager, message_id, data.status, ctx.client_ip)
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "message": message}

# ==================== PROFILE / CONTACT ====================


@router.patch("/profile")
async def update_profile(
    data: ProfileUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        user = ProfileService.update_own_profile(
            ctx.session, principal, data.first_name, data.last_name, ctx.client_ip
        )
    except PortalError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Profile updated successfully", "user": user.to_dict()}


@router.post("/contact")
async def submit_contact(data: ContactRequest, ctx: RequestContext = Depends(get_request_context)):
    """Public contact form."""
    try:
        submission = ContactService.submit(
            ctx.session, data.name, data.email, data.subject, data.message, ctx.client_ip
        )
    except PortalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"[CONTACT] Unexpected error: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message")

    return {
        "success": True,
        "message": "Thank you for your message. We'll get back to you soon.",
        "id": submission["id"],
    }
