"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the face ID
attendance core.

The application provides:
- REST endpoints for capture sessions (frame-by-frame pose capture)
- REST endpoint for identification
- REST endpoints for enrollment and identity management
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_service, shutdown_service
from api.routes import identification_router, identities_router, sessions_router
from api.schemas import HealthResponse
from faceid.config import get_server_config
from faceid.errors import CameraError, SessionNotFound, SessionStateError
from faceid.service import FaceIdService


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Create the face ID service and load the embedding model

    Runs on shutdown:
    - Cancel live sessions and release resources
    """
    logger.info("=" * 60)
    logger.info("Starting Face ID API")
    logger.info("=" * 60)

    service = get_service()
    if service.open():
        logger.info("Embedding model loaded")
    else:
        logger.warning("Embedding model unavailable - identification uses geometric signatures")

    logger.info(f"Registry ready: {service.registry.count()} identities enrolled")
    logger.info("API startup complete!")

    yield

    logger.info("Shutting down API...")
    shutdown_service()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Face ID Attendance API",
    description="""
Face identification for attendance check-in.

## Flow
1. `POST /sessions` with a mode (`enrollment` or `identification`)
2. Push frames to `POST /sessions/{id}/frames` until `is_complete`
3. `POST /sessions/{id}/finalize` to get the samples
4. `POST /identify` (check-in) or `POST /identities` (enrollment)
    """,
    version=API_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions_router)
app.include_router(identification_router)
app.include_router(identities_router)


# ============================================================
# Error Mapping
# ============================================================

@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SessionStateError)
async def session_state_handler(request: Request, exc: SessionStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CameraError)
async def camera_error_handler(request: Request, exc: CameraError):
    logger.error(f"Camera error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# ============================================================
# System Endpoints
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
def health_check(service: FaceIdService = Depends(get_service)):
    """
    Check the health of the API.

    "degraded" means the embedding model is unavailable and matching runs
    on geometric signatures only.
    """
    embeddings = service.embeddings_available
    return HealthResponse(
        status="healthy" if embeddings else "degraded",
        embeddings_available=embeddings,
        enrolled_identities=service.registry.count(),
        live_sessions=len(service.list_sessions()),
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Face ID Attendance API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()

    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
