from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

celery_app = Celery(
    "crm_enrichment",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={
        "crm_enrichment.services.dispatch.run_work_item": {"queue": "enrichment"},
        "crm_enrichment.services.enrichment.poll_agent_job": {"queue": "enrichment_poll"},
        "crm_enrichment.services.sync.sync_integration": {"queue": "sync"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Dispatch status reads STARTED/RETRY metadata from the result backend
    task_track_started=True,
    result_extended=True,
    # One message per worker process; waiting happens in the broker
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    imports=(
        "crm_enrichment.services.dispatch",
        "crm_enrichment.services.enrichment",
        "crm_enrichment.services.sync",
        "crm_enrichment.services.retention",
    ),
    beat_schedule={
        # Daily cleanup of finished enrichment jobs based on ENRICHMENT_JOB_RETENTION_DAYS
        "cleanup-expired-enrichment-jobs": {
            "task": "crm_enrichment.services.retention.cleanup_expired",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
