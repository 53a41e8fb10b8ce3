"""
Session Report Pipeline - FastAPI Application Entry Point

Registers routers for the analysis and admin endpoints.
Run with: uvicorn session_report.main:app
"""

import logging
from pathlib import Path

from dotenv import load_dotenv

# Resolve .env relative to project root (parent of session_report/)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=True)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from session_report.config import settings
from session_report.routers import admin, analysis

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Session Report Pipeline")

# CORS - allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis.router, prefix="/analysis", tags=["analysis"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.on_event("startup")
async def startup_event():
    """Load the tier table early so a bad data file fails at startup."""
    from session_report.core.evidence_tiers import get_tier_table
    from session_report.core.gemini_client import gemini_client

    table = get_tier_table()
    logger.info(
        "Session report pipeline ready (tiers %s, gemini available=%s)",
        table.version, gemini_client.is_available,
    )
