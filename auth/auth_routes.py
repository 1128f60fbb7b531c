"""
FastAPI authentication endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, EmailStr

from auth.rbac_dependencies import get_current_principal
from auth.roles import LANDING_PAGE, Principal
from core.context import ACCESS_TOKEN_COOKIE, RequestContext, get_request_context
from core.errors import AuthorizationError, PortalError, to_http_exception

router = APIRouter(prefix="/auth", tags=["auth"])

# ==================== REQUEST MODELS ====================
# Fields default to "" so that missing values get the same 400 as empty ones


class RegisterRequest(BaseModel):
    email: EmailStr = ""
    password: str = ""
    confirm_password: str = ""
    first_name: str = ""
    last_name: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    redirect: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr = ""


class ResetPasswordRequest(BaseModel):
    token: str = ""
    password: str = ""
    confirm_password: str = ""


class ChangePasswordRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""
    confirm_password: str = ""

# ==================== HELPER FUNCTIONS ====================


def safe_redirect(target: Optional[str]) -> str:
    """Only same-site absolute paths are followed after login."""
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return LANDING_PAGE


def _fail(error: PortalError) -> HTTPException:
    return to_http_exception(error)

# ==================== REGISTRATION ====================


@router.post("/register")
async def register(data: RegisterRequest, ctx: RequestContext = Depends(get_request_context)):
    """Register a new account with the `user` role."""
    try:
        identity = ctx.auth.register(
            ctx.session,
            email=data.email,
            password=data.password,
            confirm_password=data.confirm_password,
            first_name=data.first_name,
            last_name=data.last_name,
            ip_address=ctx.client_ip,
        )

        return {
            "success": True,
            "message": "Account created successfully. You can now sign in.",
            "user_id": identity.id,
            "email": identity.email,
        }

    except PortalError as e:
        raise _fail(e)
    except Exception as e:
        logger.error(f"Registration error: {e}")
        raise HTTPException(status_code=500, detail="Registration failed")

# ==================== LOGIN / LOGOUT ====================


@router.post("/login")
async def login(data: LoginRequest, ctx: RequestContext = Depends(get_request_context)):
    """Authenticate and set the session cookie."""
    try:
        result = ctx.auth.login(ctx.session, data.email, data.password, ip_address=ctx.client_ip)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=e.message)
    except PortalError as e:
        raise _fail(e)
    except Exception as e:
        logger.error(f"Login error: {e}")
        raise HTTPException(status_code=500, detail="Login failed")

    response = JSONResponse(content={
        "success": True,
        **result,
        "redirect_to": safe_redirect(data.redirect),
    })
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=result["access_token"],
        max_age=result["expires_in"],
        httponly=True,
        secure=ctx.auth.is_production,
        samesite="lax",
    )
    return response


@router.post("/logout")
async def logout(ctx: RequestContext = Depends(get_request_context)):
    """Revoke the current token and clear the cookie."""
    if ctx.token:
        ctx.auth.logout(ctx.session, ctx.token, ip_address=ctx.client_ip)

    response = JSONResponse(content={"success": True, "message": "Logged out successfully"})
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return response

# ==================== PASSWORDS ====================


@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordRequest, ctx: RequestContext = Depends(get_request_context)):
    """
    Start a password reset. The answer is the same whether or not the email
    has an account.
    """
    try:
        token = ctx.auth.request_password_reset(ctx.session, data.email, ip_address=ctx.client_ip)
    except PortalError as e:
        raise _fail(e)

    content = {
        "success": True,
        "message": "If an account exists with that email, a password reset link has been sent.",
    }
    if token and not ctx.auth.is_production:
        # no mail delivery outside production
        content["reset_token"] = token
    return content


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, ctx: RequestContext = Depends(get_request_context)):
    try:
        ctx.auth.reset_password(
            ctx.session, data.token, data.password, data.confirm_password, ip_address=ctx.client_ip
        )
    except PortalError as e:
        raise _fail(e)

    return {"success": True, "message": "Password has been reset. Please sign in."}


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        ctx.auth.change_password(
            ctx.session,
            principal.id,
            data.current_password,
            data.new_password,
            data.confirm_password,
            ip_address=ctx.client_ip,
        )
    except PortalError as e:
        raise _fail(e)

    return {"success": True, "message": "Password updated successfully"}


@router.get("/me")
async def me(principal: Principal = Depends(get_current_principal)):
    """The current principal, with its resolved role."""
    return {"success": True, "user": principal.to_dict()}
