# FastAPI entrypoint with all routes and middleware

import os
from typing import Optional

import dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger

from admin.admin_routes import admin_router, manager_router, router as portal_router
from auth.auth_routes import router as auth_router
from auth.rbac_dependencies import GuardRedirect
from auth.security_middleware import (
    SecurityHeadersMiddleware,
    SecurityLoggingMiddleware,
    TokenBlacklistMiddleware,
)
from core.errors import GENERIC_FAILURE_MESSAGE, PortalError, to_http_exception
from files.file_routes import router as files_router
from pages.page_routes import router as pages_router
from search.search_routes import router as search_router
from storage.object_store.buckets import StorageConfig
from storage.relational.database import DatabaseConfig, DatabaseManager

dotenv.load_dotenv()

DEFAULT_FRONTEND_ORIGINS = "http://localhost:3000,http://localhost:5173"


def frontend_origins() -> list:
    raw = os.getenv("FRONTEND_ORIGINS", DEFAULT_FRONTEND_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(db_config: Optional[DatabaseConfig] = None,
               storage_config: Optional[StorageConfig] = None) -> FastAPI:
    """Build the portal app. The database is initialized on startup."""

    app = FastAPI(
        title="Access Portal API",
        description="Role-gated portal with federated search",
        version="1.0.0",
    )

    app.state.db = DatabaseManager(db_config or DatabaseConfig())
    app.state.storage_config = storage_config or StorageConfig()

    # ==================== SECURITY MIDDLEWARE STACK ====================

    app.add_middleware(SecurityLoggingMiddleware)
    app.add_middleware(TokenBlacklistMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # ==================== CORS MIDDLEWARE ====================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=frontend_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
        expose_headers=["Content-Disposition"],
        max_age=86400,
    )

    # ==================== ERROR HANDLERS ====================

    @app.exception_handler(GuardRedirect)
    async def guard_redirect_handler(request: Request, exc: GuardRedirect):
        return RedirectResponse(exc.location)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed input is a 400 like every other validation failure
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = first.get("msg", "Invalid request")
        return JSONResponse(status_code=400, content={"detail": f"{field}: {message}" if field else message})

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        http_exc = to_http_exception(exc)
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": GENERIC_FAILURE_MESSAGE})

    # ==================== ROUTER REGISTRATION ====================

    app.include_router(auth_router)         # /auth
    app.include_router(search_router)       # /search
    app.include_router(files_router)        # /api/files
    app.include_router(portal_router)       # /api/profile, /api/contact
    app.include_router(admin_router)        # /api/admin
    app.include_router(manager_router)      # /api/manager
    app.include_router(pages_router)        # /dashboard, /admin, /manager

    @app.get("/")
    async def root():
        return {"message": "Access Portal", "status": "running", "docs_url": "/docs"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status."""
        healthy = app.state.db.health_check()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "healthy" if healthy else "unhealthy", "database": healthy},
        )

    # ==================== STARTUP / SHUTDOWN ====================

    @app.on_event("startup")
    async def startup_event():
        logger.info("Initializing portal database...")
        app.state.db.initialize()
        logger.info("✓ Portal database initialized")

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.db.dispose()

    return app


app = create_app()
