"""
Branch Sales Backend API
FastAPI application for point-of-sale upload and reconciliation.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.routers import sales, sales_upload
from app.db import supabase_admin

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Branch Sales API",
    description="Point-of-sale spreadsheet ingestion with column mapping, duplicate detection and idempotent upsert",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes http://localhost:3000 (Next.js dev server).  Additional
    origins come from the CORS_ORIGINS environment variable as a
    comma-separated list.  Duplicates are removed while preserving order.
    """
    origins: List[str] = ["http://localhost:3000"]

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        for origin in cors_env.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Upload routes first: "/upload/..." must not be captured by "/{branch_id}/{sale_id}"
app.include_router(sales_upload.router, prefix="/api/sales", tags=["sales-upload"])
app.include_router(sales.router, prefix="/api/sales", tags=["sales"])


@app.on_event("startup")
async def log_startup_url() -> None:
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("Branch Sales API running at http://localhost:%s", host_port)


@app.get("/")
async def root():
    return {"message": "Branch Sales API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection with a one-row read from menus.
    Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("menus").select("menu_id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
