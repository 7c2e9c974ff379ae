"""
Secret Mirror Operator: health and metrics HTTP surface.

Sets up FastAPI with:
  - Health check (/health) with registry readiness and Redis status
  - Prometheus metrics (/metrics)
  - Registry snapshot (/registry): live namespaces and mirror patterns

Served by uvicorn on a background thread next to the kopf operator.
"""

import logging
import threading
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from mirrors.config import settings
from mirrors.runtime import Runtime

VERSION = "0.2.0"

# --- Logging ---
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("mirrors.api")


def create_app(runtime: Runtime) -> FastAPI:
    app = FastAPI(
        title="Secret Mirror Operator",
        description="Health and metrics for the SecretMirror controller",
        version=VERSION,
    )

    # --- Health check ---
    @app.get("/health")
    async def health():
        """Ready once the namespace registry has been populated."""
        registry = runtime.registry
        ready = registry.is_ready
        snapshot = registry.snapshot()
        body = {
            "status": "healthy" if ready else "starting",
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "registry_ready": ready,
            "namespaces": len(snapshot["namespaces"]),
            "mirrors": len(snapshot["mirrors"]),
            "redis": runtime.backend.recorder.redis_status(),
            "version": VERSION,
        }
        return JSONResponse(status_code=200 if ready else 503, content=body)

    # --- Prometheus metrics endpoint ---
    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Expose Prometheus metrics."""
        return PlainTextResponse(
            content=generate_latest().decode("utf-8"),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/registry")
    async def registry():
        return runtime.registry.snapshot()

    # --- Global exception handler ---
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


def serve_in_thread(runtime: Runtime, host: str = settings.API_HOST, port: int = settings.API_PORT) -> threading.Thread:
    """Run uvicorn on a daemon thread; the kopf event loop keeps the main thread."""
    server = uvicorn.Server(uvicorn.Config(create_app(runtime), host=host, port=port, log_level="info"))
    thread = threading.Thread(target=server.run, name="mirrors-api", daemon=True)
    thread.start()
    logger.info(f"Health/metrics API listening on {host}:{port}")
    return thread
