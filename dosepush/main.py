"""
dosepush - Main Application Entry Point

Recurring medicine reminders delivered to browsers over Web Push, using
FastAPI, SQLAlchemy, APScheduler and httpx.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dosepush.api.push_routes import router as push_router
from dosepush.config.settings import get_settings
from dosepush.infrastructure.container import Services
from dosepush.infrastructure.database import init_database
from dosepush.infrastructure.scheduler import start_scheduler, stop_scheduler, get_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting dosepush...")

    services = Services.from_settings(settings)
    app.state.services = services

    logger.info("Initializing database...")
    await init_database(services.engine)
    logger.info("Database initialized")

    config_error = services.signer.configuration_error()
    if config_error:
        logger.warning(f"Push delivery unavailable: {config_error}")

    await start_scheduler(settings, services.resolver)

    logger.info("Application startup complete!")
    logger.info(f"Timezone: {settings.app_timezone}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await stop_scheduler()
    await services.aclose()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="dosepush",
    description="Recurring medicine reminders over Web Push",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Errors use the same {"ok": false} envelope as successes."""
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors()]
    return JSONResponse(status_code=422, content={"ok": False, "error": "Invalid request.", "details": details})


# Register routers
app.include_router(push_router, tags=["Push"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "dosepush",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "subscribe": "/push/subscribe",
            "process": "/reminders/process",
            "health": "/health"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "dosepush"}


@app.get("/scheduler/status")
async def scheduler_status():
    """Get scheduler status and pending jobs."""
    scheduler = get_scheduler(settings.app_timezone)

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if job.next_run_time else None
        })

    return {
        "running": scheduler.running,
        "jobs_count": len(jobs),
        "jobs": jobs
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dosepush.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
