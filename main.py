import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from snapurl_app.config import settings
from snapurl_app.database.connection import engine, Base
from snapurl_app.exceptions import SnapURLError
from snapurl_app.log_config import configure_logging
from snapurl_app.api.v1 import analytics, links, redirect

# Import models to ensure they're registered with Base
from snapurl_app.models import Link, Click, User  # noqa: F401

configure_logging()
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the click worker inside the API process when configured to"""
    worker_task = None
    if settings.click_worker_embedded:
        from snapurl_app.click_processor.click_worker import ClickWorker
        from snapurl_app.dependencies import get_geo_lookup, get_queue

        worker = ClickWorker(queue=get_queue(), geo=get_geo_lookup())
        worker_task = asyncio.create_task(worker.run())
        logger.info("Embedded click worker started")

    yield

    if worker_task is not None:
        worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="A URL shortener with click analytics, built with FastAPI",
    debug=settings.debug,
    lifespan=lifespan
)


@app.exception_handler(SnapURLError)
async def snapurl_error_handler(request: Request, exc: SnapURLError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_code}
    )


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "environment": settings.environment}


######## Include routers
app.include_router(links.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")
app.include_router(redirect.router)
