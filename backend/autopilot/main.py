"""
Campaign Autopilot — FastAPI Backend
Monitors Meta ad campaigns, recommends fixes, and applies approved changes
through the Graph API under budget guardrails. All runs persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autopilot.config import get_settings
from autopilot.database import check_db_connection, init_db
from autopilot.routers import automation, cron
from autopilot.services.errors import AutomationError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Campaign Autopilot...")
    try:
        await init_db()
        logger.info("Database initialized.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Campaign Autopilot",
    description="Anomaly detection, recommendations and approval-gated execution for Meta campaigns",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AutomationError)
async def automation_error_handler(request: Request, exc: AutomationError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ── Register Routers ─────────────────────────────────────────────────
# Auth is per route: operator routes take JWT or API_KEY, /approve needs a user JWT.
app.include_router(automation.router, prefix="/api/automation", tags=["Automation"])
app.include_router(cron.router, prefix="/api")  # Guarded by CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Campaign Autopilot",
        "database": "connected" if db_ok else "disconnected",
    }
