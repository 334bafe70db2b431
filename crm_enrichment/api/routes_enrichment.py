from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.user import User
from ..schemas.enrichment import (
    EnrichRecordOut,
    EnrichSegmentOut,
    EnrichmentJobOut,
    WorkStatusOut,
)
from ..services.dispatch import DispatchQueue, get_dispatch_queue
from ..services.enrichment import EnrichmentOrchestrator, get_orchestrator
from ..services.errors import ServiceError
from .deps import get_current_user, to_http_error

router = APIRouter(tags=["enrichment"])


@router.post("/records/{record_id}/enrich", response_model=EnrichRecordOut, status_code=202)
def enrich_record(
    record_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.enrich_record(db, user, record_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.post("/segments/{segment_id}/enrich", response_model=EnrichSegmentOut, status_code=202)
def enrich_segment(
    segment_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """
    Queue enrichment for every segment member that is not enriched or
    already pending.
    """
    try:
        return orchestrator.enrich_segment(db, user, segment_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/enrichment/jobs", response_model=list[EnrichmentJobOut])
def list_enrichment_jobs(
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    # Hard cap to avoid unbounded scans
    safe_limit = max(1, min(limit, 200))
    return orchestrator.list_jobs(db, user, limit=safe_limit)


@router.get("/enrichment/jobs/{job_id}", response_model=EnrichmentJobOut)
def get_enrichment_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.get_job(db, user, job_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/records/{record_id}/enrichment-job", response_model=EnrichmentJobOut | None)
def get_record_enrichment_job(
    record_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """Most recent enrichment job for the record, or null if it was never enriched."""
    try:
        return orchestrator.get_job_for_record(db, user, record_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/enrichment/work/{handle}", response_model=WorkStatusOut)
def get_work_status(
    handle: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
    dispatch: DispatchQueue = Depends(get_dispatch_queue),
):
    """Dispatch state of one of the caller's enrichment requests."""
    try:
        UUID(handle)
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown work handle")

    try:
        orchestrator.get_record_for_handle(db, user, handle)
    except ServiceError as e:
        raise to_http_error(e)

    status = dispatch.status(handle)
    return WorkStatusOut(
        handle=handle,
        state=status.state.value,
        previous_attempts=status.previous_attempts,
    )
