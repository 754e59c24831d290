from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from birthdays.api.errors import setup_error_handlers
from birthdays.api.router import api_router
from birthdays.config import get_settings
from birthdays.core.logging import setup_logging
from birthdays.core.scheduler import get_job_schedules, start_scheduler, stop_scheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler()
    yield
    # Shutdown
    await stop_scheduler()


app = FastAPI(
    title="Birthdays",
    description="Birthday greetings delivered at 09:00 in each user's timezone",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

setup_error_handlers(app)
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}


@app.get("/jobs/schedules")
async def list_schedules() -> list[dict]:
    """List the registered recurring jobs and their next fire times."""
    return await get_job_schedules()
