# crm_enrichment/schemas/enrichment.py
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..models.enrichment_job import EnrichmentJobStatus


class EnrichRecordOut(BaseModel):
    success: bool
    message: str


class EnrichSegmentOut(BaseModel):
    scheduled: int
    skipped: int
    failed: int


class EnrichmentJobOut(BaseModel):
    id: UUID
    crm_record_id: UUID
    status: EnrichmentJobStatus
    urls: list[str]
    agent_job_id: str | None = None
    status_message: str | None = None
    poll_count: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class WorkStatusOut(BaseModel):
    handle: str
    state: Literal["pending", "running", "finished"]
    previous_attempts: int
