"""APScheduler runtime for the points expiry jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from pumprewards_api.observability.scheduler import JobSchedulerObservabilityStore, get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


class PointsJobScheduler:
    """Register TOML-defined jobs on an ``AsyncIOScheduler`` with retries."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        observability: JobSchedulerObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = observability or get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        for job in config.jobs:
            scheduler.add_job(
                self.wrap(resolve_task(job.task), job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
            )
            logger.info("Registered points job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Points job scheduler started", jobs=len(config.jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Points job scheduler stopped")

    def wrap(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[bool]]:
        """Retry ``func`` per the job policy; the final failure is logged, not raised."""

        async def _run() -> bool:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            attempt = 0
            while True:
                attempt += 1
                try:
                    await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=str(exc))
                    if attempt >= job.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                        )
                        logger.exception("Points job failed after retries", job_id=job.id, attempts=attempt)
                        return False
                    delay = job.retry_delay(attempt, random.uniform(0, job.jitter_seconds))
                    self._observability.record_retry(job.id, job.task)
                    logger.warning("Points job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime = time.perf_counter() - started_at
                self._observability.record_success(job.id, job.task, runtime_seconds=runtime, attempts=attempt)
                logger.info("Points job completed", job_id=job.id, attempts=attempt, runtime_seconds=runtime)
                return True

        return _run

    def health(self) -> dict[str, object]:
        jobs = self._config.jobs if self._config else []
        snapshot = self._observability.snapshot()
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "jobs": [
                {"id": job.id, "task": job.task, "cron": job.cron, "metrics": snapshot.get(job.id)}
                for job in jobs
            ],
        }


def resolve_task(task: str) -> JobCallable:
    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not asyncio.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


__all__ = ["PointsJobScheduler", "resolve_task"]
