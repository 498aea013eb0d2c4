import asyncio
from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.database import init_db, close_db, get_db
from portal.logging_config import setup_logging
from portal.services import batch_notifier, security_monitor
from portal.services.email_service import close_http_client
from portal.services.storage import get_storage
from portal.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import portal.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_portal", env=settings.ENVIRONMENT)
    await init_db()
    sweepers = [
        asyncio.create_task(security_monitor.run_periodic_sweep(settings.SECURITY_SWEEP_INTERVAL_SECONDS)),
        asyncio.create_task(batch_notifier.run_periodic_sweep(settings.BATCH_SWEEP_INTERVAL_SECONDS)),
    ]
    yield
    for task in sweepers:
        task.cancel()
    await asyncio.gather(*sweepers, return_exceptions=True)
    await close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: every error body carries a top-level "message"
# and {"error": {"code": "...", "message": "..."}}.
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        body = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" in detail:
        body = dict(detail)
    elif isinstance(detail, dict):
        body = {"error": detail}
    else:
        body = {"error": {"code": "HTTP_ERROR", "message": str(detail)}}
    body["message"] = body["error"].get("message", "")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({
            "message": "Request validation failed",
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
            },
            "details": exc.errors(),
        }),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    message = str(exc) or "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": message, "error": {"code": "INTERNAL_ERROR", "message": message}},
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    # 1. Check DB
    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    # 2. Check storage (degraded, not unhealthy)
    try:
        await asyncio.to_thread(get_storage().ping)
        health_status["checks"]["storage"] = "ok"
    except Exception as e:
        logger.error("health_check_storage_failed", error=str(e))
        health_status["checks"]["storage"] = "error"
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from portal.routes.auth import router as auth_router  # noqa: E402
from portal.routes.registration import router as registration_router  # noqa: E402
from portal.routes.pending_registrations import router as pending_registrations_router  # noqa: E402
from portal.routes.profile import router as profile_router  # noqa: E402
from portal.routes.users import router as users_router  # noqa: E402
from portal.routes.companies import router as companies_router  # noqa: E402
from portal.routes.suppliers import router as suppliers_router  # noqa: E402
from portal.routes.invoices import router as invoices_router  # noqa: E402
from portal.routes.credit_notes import router as credit_notes_router  # noqa: E402
from portal.routes.imports import router as imports_router  # noqa: E402
from portal.routes.files import router as files_router  # noqa: E402
from portal.routes.activity_logs import router as activity_logs_router  # noqa: E402
from portal.routes.email_templates import router as email_templates_router  # noqa: E402
from portal.routes.settings import router as settings_router  # noqa: E402
from portal.jobs.scheduled import router as jobs_router  # noqa: E402

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(registration_router, prefix="/api/registration", tags=["Registration"])
app.include_router(pending_registrations_router, prefix="/api/pending-registrations", tags=["Registration"])
app.include_router(profile_router, prefix="/api/profile", tags=["Profile"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(companies_router, prefix="/api/companies", tags=["Companies"])
app.include_router(suppliers_router, prefix="/api/suppliers", tags=["Suppliers"])
app.include_router(invoices_router, prefix="/api/invoices", tags=["Invoices"])
app.include_router(credit_notes_router, prefix="/api/credit-notes", tags=["Credit Notes"])
app.include_router(imports_router, prefix="/api/imports", tags=["Imports"])
app.include_router(files_router, prefix="/api/files", tags=["Files"])
app.include_router(activity_logs_router, prefix="/api/activity-logs", tags=["Activity Logs"])
app.include_router(email_templates_router, prefix="/api/email-templates", tags=["Email Templates"])
app.include_router(settings_router, prefix="/api/settings", tags=["Settings"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
