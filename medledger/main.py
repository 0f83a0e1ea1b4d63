from sqlalchemy import text

from medledger.core.errors import LedgerError
from medledger.core.observability import (
    http_exception_handler,
    ledger_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from medledger.core.config import settings
from medledger.db.session import engine
from medledger.routers import auth, medications, reports, team

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Clinic pharmacy inventory API: medication catalog, batch receipts, "
        "the stock adjustment ledger and derived stock/expiry alerts.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** (OAuth token URL: `/auth/token`).\n"
        "3. Create a medication, receive a batch, then dispense with `/medications/{id}/adjust`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Operator registration and access tokens."},
        {"name": "medications", "description": "Medication catalog, batches, stock ledger and alerts."},
        {"name": "reports", "description": "Inventory valuation and distribution reports."},
        {"name": "team", "description": "Clinic member accounts and roles."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(LedgerError, ledger_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
allow_origin_regex = settings.cors_origin_regex

if not allow_origin_regex and settings.env.lower().strip() in {"dev", "development"}:
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(medications.router)
app.include_router(reports.router)
app.include_router(team.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
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
