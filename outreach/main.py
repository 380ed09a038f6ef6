from contextlib import asynccontextmanager

from sqlalchemy import text

from outreach.core.errors import OutreachError
from outreach.core.observability import (
    http_exception_handler,
    outreach_error_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from outreach.core.config import settings
from outreach.db.session import SessionLocal, engine
from outreach.routers import billing, bot_settings, campaigns, vouchers
from outreach.services.maintenance import MaintenanceWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = None
    if settings.maintenance_enabled:
        worker = MaintenanceWorker(SessionLocal, interval_seconds=settings.maintenance_interval_seconds)
        worker.start()
    app.state.maintenance_worker = worker
    yield
    if worker is not None:
        worker.stop()


app = FastAPI(
    lifespan=lifespan,
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Customer outreach campaigns and subscription billing.\n\n"
        "Swagger quick test flow:\n"
        "1. Obtain a tenant access token from the auth service.\n"
        "2. Click **Authorize** and paste the bearer token.\n"
        "3. Check `GET /campaigns/segments`, create a draft with `POST /campaigns`, "
        "then send it with `POST /campaigns/{id}/send`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "campaigns", "description": "Customer segments, campaign drafts, dispatch, and delivery logs."},
        {"name": "billing", "description": "Subscription entitlement, checkout, vouchers, and payment callbacks."},
        {"name": "bot-settings", "description": "Messaging channel configuration per store."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(OutreachError, outreach_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local web tooling runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(campaigns.router)
app.include_router(billing.router)
app.include_router(billing.webhooks_router)
app.include_router(vouchers.router)
app.include_router(bot_settings.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
