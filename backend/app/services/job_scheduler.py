"""Background job collaborator.

The workflow only ever asks for work to be scheduled; it never touches timers
itself. Handlers are registered by job type in a :class:`JobRegistry` at
startup, and the Celery worker resolves them from the same registry.
"""
from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any, Callable

from app.core.celery_app import RUN_JOB_TASK, celery_app
from app.core.exceptions import SchedulingError

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], Any]


class JobRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    def is_registered(self, job_type: str) -> bool:
        return job_type in self._handlers

    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def run(self, job_type: str, payload: dict[str, Any] | None = None) -> Any:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise SchedulingError(f"No handler registered for job type {job_type!r}")
        return handler(payload or {})

    def clear(self) -> None:
        self._handlers.clear()


job_registry = JobRegistry()


class JobScheduler:
    def schedule(self, delay: timedelta, job_type: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def schedule_recurring(self, interval: timedelta, job_type: str) -> None:
        raise NotImplementedError


class CeleryJobScheduler(JobScheduler):
    def __init__(self, app=celery_app) -> None:
        self._app = app

    def schedule(self, delay: timedelta, job_type: str, payload: dict[str, Any]) -> None:
        countdown = max(0.0, delay.total_seconds())
        try:
            self._app.send_task(RUN_JOB_TASK, args=[job_type, payload], countdown=countdown)
        except Exception as exc:
            raise SchedulingError(
                f"Unable to schedule job {job_type!r}",
                details={"payload": payload, "countdown": countdown},
            ) from exc
        logger.info("Scheduled %s in %.0fs with %s", job_type, countdown, payload)

    def schedule_recurring(self, interval: timedelta, job_type: str) -> None:
        self._app.conf.beat_schedule[job_type] = {
            "task": RUN_JOB_TASK,
            "schedule": interval,
            "args": (job_type, {}),
        }
        logger.info("Recurring job %s registered every %s", job_type, interval)


@celery_app.task(name=RUN_JOB_TASK, ignore_result=True)
def run_job(job_type: str, payload: dict[str, Any] | None = None) -> None:
    if not job_registry.is_registered(job_type):
        # Worker processes do not run the FastAPI lifespan.
        from app.services.escalation import register_default_jobs

        register_default_jobs(job_registry)
    job_registry.run(job_type, payload)
