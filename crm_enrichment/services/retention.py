from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.enrichment_job import EnrichmentJob, TERMINAL_JOB_STATUSES

logger = logging.getLogger(__name__)
settings = get_settings()


def delete_expired_jobs(db: Session, retention_days: int) -> int:
    """
    Delete finished enrichment jobs created more than `retention_days` ago.

    Running and pending jobs are never deleted, whatever their age. Enriched
    data lives on the CRM record and is unaffected.
    """
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    deleted = (
        db.query(EnrichmentJob)
        .filter(
            EnrichmentJob.created_at < cutoff,
            EnrichmentJob.status.in_(list(TERMINAL_JOB_STATUSES)),
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


@celery_app.task(name="crm_enrichment.services.retention.cleanup_expired")
def cleanup_expired() -> int:
    """Periodic task enforcing ENRICHMENT_JOB_RETENTION_DAYS."""
    db: Session = SessionLocal()
    try:
        deleted_jobs = delete_expired_jobs(db, settings.ENRICHMENT_JOB_RETENTION_DAYS)
        if not deleted_jobs:
            logger.info(
                "No expired enrichment jobs found for cleanup",
                extra={"step": "retention"},
            )
            return 0

        logger.info(
            "Deleted expired enrichment jobs",
            extra={"step": "retention", "deleted_jobs": deleted_jobs},
        )
        return deleted_jobs
    except Exception:
        db.rollback()
        logger.exception(
            "Error during cleanup_expired",
            extra={"step": "retention"},
        )
        raise
    finally:
        db.close()
