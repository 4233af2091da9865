"""
Dashboard Platform — Intent API

Main entrypoint. Sets up FastAPI with:
  - CORS for UI access
  - Rate limiting (slowapi)
  - Prometheus metrics (/metrics)
  - Health check (/health) with Redis status
  - Dashboard CRUD routes (/api/dashboards)
"""

import logging
import uvicorn
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from intent_api.config import settings
from intent_api.routers.dashboards import (
    router as dashboards_router, limiter, _get_events, _init_metrics, _update_gauges,
)

logger = logging.getLogger("intent-api")

VERSION = "0.1.0"


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Dashboard Intent API starting...")
    _init_metrics()
    yield
    logger.info("Dashboard Intent API shutting down...")


# --- FastAPI app ---
app = FastAPI(
    title="Dashboard Platform API",
    description="Intent API for Kubernetes-native Instana custom dashboards",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Include dashboards router ---
app.include_router(dashboards_router, prefix="/api")


# --- Health check ---
@app.get("/health")
async def health():
    """Health check with Redis connectivity status."""
    events = _get_events()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "redis": "connected" if events.enabled else "disabled",
        "version": VERSION,
    }


# --- Prometheus metrics endpoint ---
@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Expose Prometheus metrics."""
    _update_gauges()
    return PlainTextResponse(
        content=generate_latest().decode("utf-8"),
        media_type=CONTENT_TYPE_LATEST,
    )


# --- Global exception handler ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# --- Entry point ---
def run():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(
        "intent_api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    run()
