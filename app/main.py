"""FastAPI main application."""
import logging
from contextlib import asynccontextmanager

import aiofiles.os
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import init_db, close_db
from app.api import api_keys, auth, billing, usage, videos
from app.services.processing_queue import dispatcher
from app.utils.error_handling import VideoPlatformException, build_error_response

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    await aiofiles.os.makedirs(settings.upload_dir, exist_ok=True)
    await aiofiles.os.makedirs(settings.output_dir, exist_ok=True)
    await init_db()
    logger.info("Database initialized")
    await dispatcher.start()
    logger.info(f"Processing backend: {settings.processing_backend}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await dispatcher.stop()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # Video Processing Platform API

    Multi-tenant video upload, transcoding and delivery.

    ## Features
    - Uploads with per-plan monthly quotas
    - Thumbnail extraction, probing and 720p/1080p transcoding
    - Range-based streaming and optional HLS
    - Organizations, roles and API keys
    - Stripe subscription billing

    ## Authentication

    Every request uses the `Authorization` header:
    ```
    Authorization: Bearer <token>
    ```
    where `<token>` is either a JWT from `POST /api/auth/login` or an API key
    (`vp_live_...`). Streaming, billing and key management require a JWT.

    ## Quick Start

    ### 1. Register (creates organization, owner user and a default API key)
    ```bash
    curl -X POST http://localhost:8000/api/auth/register \\
      -H "Content-Type: application/json" \\
      -d '{
        "email": "owner@example.com",
        "password": "SecurePass123!",
        "name": "Jane Doe",
        "organization_name": "My Company"
      }'
    ```

    ### 2. Upload a video
    ```bash
    curl -X POST http://localhost:8000/api/videos/upload \\
      -H "Authorization: Bearer YOUR_API_KEY" \\
      -F "video=@clip.mp4"
    ```

    ### 3. Poll its status
    ```bash
    curl http://localhost:8000/api/videos/VIDEO_ID \\
      -H "Authorization: Bearer YOUR_API_KEY"
    ```
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "processing": {
            "backend": dispatcher.backend,
            "active": dispatcher.queue.active,
            "pending": dispatcher.queue.pending,
            "saturated": dispatcher.is_saturated,
        },
    }


# Include routers
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(api_keys.router, prefix=settings.api_prefix)
app.include_router(videos.router, prefix=settings.api_prefix)
app.include_router(usage.router, prefix=settings.api_prefix)
app.include_router(billing.router, prefix=settings.api_prefix)


@app.exception_handler(VideoPlatformException)
async def platform_exception_handler(request: Request, exc: VideoPlatformException):
    """Convert platform exceptions into structured error responses."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return build_error_response(exc)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    if settings.debug:
        raise exc

    logger.error(f"Unhandled error on {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "type": "internal_error"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
