"""
api/main.py — FastAPI application entry point.

Run with:
    uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.endpoints.lead_routes import router as lead_router
from api.endpoints.outreach_routes import router as outreach_router
from api.endpoints.pipeline_routes import router as pipeline_router
from api.endpoints.system_routes import router as system_router
from api.endpoints.webhook_routes import router as webhook_router
from leadflow.config import settings
from leadflow.db.session import init_db
from leadflow.errors import (
    BatchClaimConflictError,
    BatchNotFinishedError,
    InsufficientInventoryError,
    InvalidTransitionError,
    LeadflowError,
    NotFoundError,
    NotQualifiedError,
)
from leadflow.logging_config import configure_logging
from leadflow.workers.supervisor import get_supervisor

logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    configure_logging()
    init_db()
    logger.info("✅ Database ready.")
    if settings.start_workers_on_boot:
        get_supervisor().start()
    yield
    stopped = get_supervisor().stop()
    logger.info("🛑 Application shutting down (stopped workers: %s).", stopped or "none")


# ── App ───────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Leadflow",
    description=(
        "Finds businesses that show buying signals, qualifies and scores them, "
        "and runs batched, approval-gated email outreach through to booked meetings."
    ),
    version="0.2.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Domain errors → HTTP ─────────────────────────────────────────────────────

_STATUS_CODES = [
    (NotFoundError, 404),
    (NotQualifiedError, 400),
    (InsufficientInventoryError, 409),
    (BatchClaimConflictError, 409),
    (BatchNotFinishedError, 409),
    (InvalidTransitionError, 409),
]


@app.exception_handler(LeadflowError)
async def leadflow_error_handler(request: Request, exc: LeadflowError):
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    if status_code == 500:
        logger.error("Unhandled domain error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(lead_router, prefix="/leads", tags=["Leads"])
app.include_router(pipeline_router, prefix="/pipeline", tags=["Pipeline"])
app.include_router(outreach_router, prefix="/outreach", tags=["Outreach"])
app.include_router(webhook_router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(system_router, prefix="/system", tags=["System"])


# ── Health check ─────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health_check():
    """Returns service liveness status."""
    return {"status": "ok", "service": "leadflow"}


@app.get("/", tags=["System"])
def root():
    return {
        "message": "Leadflow is running.",
        "docs": "/docs",
        "product": settings.product_description[:80] + "...",
    }
