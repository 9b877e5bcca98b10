"""Account auth API - FastAPI application entrypoint.

Run with:
    uvicorn app.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import AppConfig, load_config, log_config_snapshot
from app.routers import auth as auth_router
from app.routers import user as user_router
from auth.errors import AuthError, ServerError
from auth.middleware import clear_session_cookie
from auth.models import utcnow
from auth.notifier import LogNotifier, Notifier, SmtpNotifier
from auth.service import AccountService
from auth.tokens import TokenService
from persistence.db import Database, get_db_path
from persistence.users import SqliteUserStore, UserStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests exceeding size limit to prevent payload bombs."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            return JSONResponse(
                status_code=413,
                content={"success": False, "message": "Request entity too large"},
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


def build_notifier(config: AppConfig) -> Notifier:
    """SMTP when configured, otherwise log-only."""
    if not config.smtp_enabled:
        return LogNotifier()
    return SmtpNotifier(
        host=config.smtp_host,
        port=config.smtp_port,
        sender=config.smtp_sender,
        username=config.smtp_username,
        password=config.smtp_password,
        use_ssl=config.smtp_use_ssl,
        sender_name=f"{config.app_name} App",
    )


def build_store(config: AppConfig) -> UserStore:
    return SqliteUserStore(Database(config.db_path or get_db_path()))


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Map every failure onto the `{success, message}` envelope."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        response = _error_response(exc.status_code, exc.message)
        if exc.clears_session:
            clear_session_cookie(response, production=request.app.state.config.is_production)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "Invalid request body")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error_response(500, ServerError.default_message)


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[UserStore] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Build the application with its collaborators.

    The signing secret, store and mail transport are created once here and
    shared by every request.
    """
    if config is None:
        config = load_config(dotenv=True)
        log_config_snapshot(config)

    store = store if store is not None else build_store(config)
    notifier = notifier if notifier is not None else build_notifier(config)
    tokens = TokenService(config.jwt_secret, clock=clock)
    accounts = AccountService(
        store=store,
        tokens=tokens,
        notifier=notifier,
        app_name=config.app_name,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(notifier, "close", None)
        if close is not None:
            close()

    app = FastAPI(
        title="Account Auth",
        description="Registration, login sessions, email verification and password reset",
        version=config.service_version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.tokens = tokens
    app.state.accounts = accounts
    started_at = datetime.now(timezone.utc)

    # Middleware stack (order matters - added in reverse execution order)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=config.max_request_size_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(auth_router.router)
    app.include_router(user_router.router)

    @app.get("/health")
    async def health():
        """Health check with service observability."""
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "started_at": started_at.isoformat(),
        }

    return app
