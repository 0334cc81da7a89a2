"""Social Video Download Service - Main FastAPI Application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routes import download, health, info, progress, thumbnail
from app.services import logger
from app.utils.exceptions import VideoDLError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    # Startup
    logger.info(f"Download service starting on port {settings.PORT}")

    if settings.YTDLP_PATH:
        logger.info(f"yt-dlp executable: {settings.YTDLP_PATH}")
    else:
        try:
            import yt_dlp
            logger.info(f"yt-dlp version: {yt_dlp.version.__version__}")
        except ImportError as e:
            raise RuntimeError("yt-dlp not installed and YTDLP_PATH not set") from e

    # Create temp directory if it doesn't exist
    from pathlib import Path
    Path(settings.TEMP_DIR).mkdir(parents=True, exist_ok=True)
    logger.info(f"Temp directory: {settings.TEMP_DIR}")

    yield

    # Shutdown
    logger.info("Download service shutting down")

    # Workspaces orphaned by killed requests
    from app.services.workspace import cleanup_old_workspaces
    cleanup_old_workspaces(settings.TEMP_DIR, max_age_hours=1)


app = FastAPI(
    title="Social Video Download Service",
    description="Download videos from YouTube, Facebook, Instagram, TikTok and X using yt-dlp",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)


@app.exception_handler(VideoDLError)
async def videodl_error_handler(request: Request, exc: VideoDLError) -> JSONResponse:
    """Known failures carry their own status and a raw diagnostic."""
    logger.error(
        f"{exc.error_code} at {request.url.path}: {exc.message}",
        "download",
        {"status_code": exc.status_code, "details": (exc.details or "")[:500]},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are a 400 with the first validation message."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    message = message.removeprefix("Value error, ")
    logger.warn(f"Rejected request at {request.url.path}: {message}", "download")
    return JSONResponse(status_code=400, content={"error": message, "error_code": "INVALID_REQUEST"})


app.include_router(download.router)
app.include_router(info.router)
app.include_router(progress.router)
app.include_router(thumbnail.router)
app.include_router(health.router)


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint with service status."""
    return {"service": "videodl-backend", "status": "running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
    )
