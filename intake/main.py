"""
FastAPI Application Entry Point

This is the main application module that sets up the FastAPI app,
configures middleware, and includes all routers.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intake.config import settings
from intake.exceptions import StorageError
from intake.routers import admin, auth, files, health
from intake.routers.dependencies import client_address

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup makes sure the file and audit roots exist.
    """
    logger.info("Starting File Intake Service...")
    settings.storage_path.mkdir(parents=True, exist_ok=True)
    settings.audit_index_path.mkdir(parents=True, exist_ok=True)
    logger.info(
        f"File Intake Service started: files={settings.storage_path}, "
        f"audit={settings.audit_index_path}"
    )

    yield

    logger.info("File Intake Service stopped")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # File Intake Service API

    Users upload files; administrators browse, search and download them.
    Every upload and download is written to an append-only audit log:

    - **Per-user CSV logs**: one log per file owner, header row first
    - **Per-user locking**: concurrent writers for one user never interleave
    - **Read cache**: decoded logs stay in memory until the owner's next write
    - **Search**: filename, owner and date filters over every user's history
    """,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)


# ============================================================================
# Middleware
# ============================================================================

# CORS (configure appropriately for production)
if settings.debug:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Time each request and log it with the caller's address."""
    start_time = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Process-Time"] = f"{elapsed_ms / 1000:.6f}"
    logger.debug(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({elapsed_ms:.1f} ms, client={client_address(request)})"
    )
    return response


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    """A store failure that no endpoint handled (e.g. listing the audit root)."""
    logger.error(f"Storage failure: path={exc.path}, method={request.method}, url={request.url.path}: {exc}")

    return JSONResponse(
        status_code=503,
        content={"detail": "Storage unavailable"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    Returns generic error responses to prevent information leakage.
    Detailed errors are logged internally.
    """
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(auth.router)
app.include_router(files.router)
app.include_router(admin.router)
app.include_router(health.router)


@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint.

    Returns basic service information.
    """
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running"
    }


# Single process only: audit locks and the read cache live in this process.
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "intake.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
