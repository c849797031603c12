# app/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.errors import CheckoutSessionValidationError, InvalidJSONBodyError
from app.database import create_db_and_tables

# Import models so SQLModel metadata is populated before create_all()
from app.models import checkout_session as _checkout_session_models  # noqa: F401
from app.models import tenant as _tenant_models  # noqa: F401
from app.models import user as _user_models  # noqa: F401

# Routers
from app.routers.checkout_sessions import router as checkout_sessions_router
from app.routers.admin_checkout_sessions import router as admin_checkout_sessions_router
from app.routers.checkout_sweep import router as checkout_sweep_router

settings = get_settings()

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
      - Verify DB connectivity and create tables.
    """
    logger.info("🔄 Startup: Connecting to Supabase Postgres...")
    try:
        create_db_and_tables()
        logger.info("✅ Startup: DB connection OK, tables verified.")
    except Exception as e:
        logger.error(f"❌ Startup: DB connection FAILED: {e}")
        raise
    yield


app = FastAPI(
    title=settings.PROJECT_NAME or "Checkout Sessions API",
    version="0.1.0",
    lifespan=lifespan,
)


# --- CORS configuration ---
# Storefront checkouts run on tenant domains we don't know up front.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


# --- Error translation ---
# Business errors keep HTTP 200 so storefront telemetry never looks like an
# outage; only transport/infrastructure problems use error status codes.


@app.exception_handler(CheckoutSessionValidationError)
async def checkout_validation_error_handler(
    request: Request, exc: CheckoutSessionValidationError
):
    logger.info("Rejected %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=200, content={"error": exc.message})


@app.exception_handler(ValidationError)
async def payload_validation_error_handler(request: Request, exc: ValidationError):
    logger.info("Invalid payload on %s: %s", request.url.path, exc.error_count())
    return JSONResponse(
        status_code=200,
        content={
            "error": "Invalid payload",
            "details": exc.errors(include_url=False, include_context=False, include_input=False),
        },
    )


@app.exception_handler(InvalidJSONBodyError)
async def invalid_json_handler(request: Request, exc: InvalidJSONBodyError):
    logger.info("Unparseable body on %s", request.url.path)
    return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal error"})


# Storefront functions live at the root, dashboard/scheduler under /api/v1
app.include_router(checkout_sessions_router)
app.include_router(admin_checkout_sessions_router, prefix=settings.API_V1_STR)
app.include_router(checkout_sweep_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "checkout-sessions"}
