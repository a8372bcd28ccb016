from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from pumprewards_api.core.settings import settings
from pumprewards_api.db.session import async_session
from .api.errors import register_error_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .scheduling import PointsJobScheduler


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    schedule_path = Path(settings.points_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = _schedule_path()
    job_scheduler = PointsJobScheduler(session_factory=_session_factory, config_path=schedule_path)
    app.state.points_job_scheduler = job_scheduler

    scheduler_enabled = settings.points_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Points job scheduler failed to start", error=str(exc))
        else:
            logger.info("Points job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Points job scheduler disabled", reason="points_job_scheduler_enabled is false")

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the Pump Rewards points service."""
    configure_logging(
        service_name="pumprewards-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Pump Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(api_router)
    return app
