"""
Polycle Member - Main Application Entry Point

FastAPI application serving the daily report, task and dashboard APIs.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from config import settings
from .integrations.sheets import get_sheets_integration
from .web.auth import router as auth_router
from .web.routes import router as api_router
from .web.slack_events import router as slack_events_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def allowed_origins() -> List[str]:
    """Browser origins allowed to call the API with the session cookie."""
    base_url = (settings.base_url or "").strip().rstrip("/")
    return [base_url] if base_url else []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    sheets = get_sheets_integration()
    if await sheets.initialize():
        logger.info("Google Sheets ready")
    else:
        logger.warning("Google Sheets not configured; reads will fail until credentials are set")

    if not settings.sheets_dr_spreadsheet_id:
        logger.warning("SHEETS_DR_SPREADSHEET_ID not set")
    if not settings.sheets_tasks_spreadsheet_id:
        logger.warning("SHEETS_TASKS_SPREADSHEET_ID not set")

    logger.info(
        f"Slack: bot token {'set' if settings.slack_bot_token else 'missing'}, "
        f"DR channel {settings.slack_daily_report_channel_id or 'missing'}, "
        f"signing secret {'set' if settings.slack_signing_secret else 'missing'}"
    )

    yield

    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Daily reports and task tracking on Google Sheets, mirrored to Slack",
    version=VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    same_site="lax",
    https_only=settings.environment == "production",
)

app.include_router(auth_router)
app.include_router(api_router)
app.include_router(slack_events_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": VERSION
    }


@app.get("/health")
async def health_check():
    """Detailed health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "sheets": get_sheets_integration().is_initialized,
            "dr_spreadsheet": bool(settings.sheets_dr_spreadsheet_id),
            "tasks_spreadsheet": bool(settings.sheets_tasks_spreadsheet_id),
            "slack_bot": bool(settings.slack_bot_token),
            "slack_channel": bool(settings.slack_daily_report_channel_id),
        }
    }


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP errors as {"error": ...}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Invalid request bodies and parameters are a 400, not FastAPI's 422."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "polycle_member.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
