from datetime import timedelta

from celery import Celery

from app.core.config import get_settings

settings = get_settings()

# Every background job is delivered through one generic task keyed by job type.
RUN_JOB_TASK = "app.run_job"

CHECK_OUTPASS_STATUS = "check_outpass_status"
ESCALATE_TO_HOD = "escalate_to_hod"
NOTIFY_PENDING_HOD_REQUESTS = "notify_pending_hod_requests"

celery_app = Celery(
    "quickpass",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.services.job_scheduler",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.institution_timezone,
    enable_utc=True,
    task_track_started=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Read by `celery beat`, which never runs the API lifespan.
celery_app.conf.beat_schedule = {
    NOTIFY_PENDING_HOD_REQUESTS: {
        "task": RUN_JOB_TASK,
        "schedule": timedelta(minutes=settings.hod_sweep_interval_minutes),
        "args": (NOTIFY_PENDING_HOD_REQUESTS, {}),
    },
}
