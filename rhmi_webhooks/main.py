"""
RHMIConfig admission webhooks

Main entrypoint. Sets up FastAPI with:
  - Validating webhook (/validate-rhmiconfig)
  - Mutating webhook (/mutate-rhmiconfig)
  - Prometheus metrics (/metrics)
  - Health check (/health)

The API server only calls webhooks over TLS; point TLS_CERT_FILE / TLS_KEY_FILE
at the serving certificate when running outside a TLS-terminating proxy.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import settings
from .routers.rhmiconfig import router as rhmiconfig_router

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rhmi-webhooks")


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"RHMIConfig webhooks {settings.VERSION} starting...")
    yield
    logger.info("RHMIConfig webhooks shutting down...")


# --- FastAPI app ---
app = FastAPI(
    title="RHMIConfig Admission Webhooks",
    description="Validation and defaulting of the RHMI upgrade schedule",
    version=settings.VERSION,
    lifespan=lifespan,
)

app.include_router(rhmiconfig_router)


# --- Health check ---
@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "version": settings.VERSION,
    }


# --- Prometheus metrics endpoint ---
@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Expose Prometheus metrics."""
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
if __name__ == "__main__":
    uvicorn.run(
        "rhmi_webhooks.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        ssl_certfile=settings.TLS_CERT_FILE or None,
        ssl_keyfile=settings.TLS_KEY_FILE or None,
        log_level="info",
        reload=False,
    )
