from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException

# ===== IMPORT ROUTERS =====
from app.api.v1 import auth
from app.api.v1.admin import doubts as admin_doubts
from app.api.v1.shares import doubt_socket
from app.api.v1.user import doubts as user_doubts
from app.api.v1.user import enrollments as user_enrollments
from app.api.v1.user import payment as user_payment
from app.core.context import get_request_id
from app.core.exceptions import AppException
from app.core.scheduler import start_scheduler
from app.core.settings import Settings, settings as default_settings
from app.core.ws_manager import WSConnectionManager
from app.db.session import Database

# --- MIDDLEWARE ---
from app.middleware.request_context import RequestContextMiddleware

STATUS_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    502: "BAD_GATEWAY",
}


def error_body(status_code: int, error_code: str, message: str, errors=None, request_id=None) -> dict:
    return {
        "success": False,
        "status": status_code,
        "error_code": error_code,
        "message": message,
        "errors": errors or [],
        "request_id": request_id or get_request_id(),
    }


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc, AppException):
        error_code, errors = exc.error_code, exc.errors
    else:
        error_code, errors = STATUS_ERROR_CODES.get(exc.status_code, "ERROR"), []
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, error_code, str(exc.detail), errors),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    # runs outside the request middleware, so the id comes from request.state
    request_id = getattr(request.state, "request_id", None)
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body(500, "INTERNAL_ERROR", "Internal server error", request_id=request_id),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return JSONResponse(
        status_code=400,
        content=error_body(400, "VALIDATION_ERROR", "Validation failed", errors),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ================================
        # 1) DATABASE
        # ================================
        app.state.db = Database(settings.DATABASE_ASYNC_URL, echo=settings.DB_ECHO)
        if settings.DB_AUTO_CREATE:
            await app.state.db.create_all()

        # ================================
        # 2) GLOBAL HTTP CLIENT + WS ROOMS
        # ================================
        app.state.http = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        app.state.ws_manager = WSConnectionManager()
        logger.info("🌐 HTTP client started")

        # ================================
        # 3) START APSCHEDULER
        # ================================
        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = start_scheduler(app.state.db, settings)

        try:
            yield
        finally:
            if scheduler is not None:
                try:
                    scheduler.shutdown(wait=False)
                    logger.info("🛑 Scheduler stopped")
                except Exception as e:
                    logger.warning(f"⚠ Scheduler shutdown error: {e}")

            await app.state.http.aclose()
            logger.info("🌐 HTTP client closed")
            await app.state.db.dispose()

    # ===== APP CONFIG =====
    app = FastAPI(
        title="LMS Doubts & Payments",
        description="Doubt threads with live rooms, and paid-course checkout",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    prefix = "/api/v1"

    # ===== REGISTER ROUTERS =====

    # --- Share ---
    app.include_router(auth.router, prefix=prefix)
    app.include_router(doubt_socket.router, prefix=prefix)

    # --- USER ROUTES ---
    app.include_router(user_doubts.router, prefix=prefix)
    app.include_router(user_payment.router, prefix=prefix)
    app.include_router(user_enrollments.router, prefix=prefix)

    # --- ADMIN ROUTES ---
    app.include_router(admin_doubts.router, prefix=prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
