from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from uuid import UUID
import logging

import httpx
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal, session_scope
from ..models.crm_record import CrmRecord, EnrichmentStatus, RecordType
from ..models.enrichment_job import EnrichmentJob, EnrichmentJobStatus
from ..models.segment import Segment, SegmentMember
from ..models.user import User
from ..schemas.extraction import agent_json_schema
from .connectors.firecrawl import (
    AgentJobState,
    FirecrawlAgentClient,
    ResearchAgentError,
    get_research_agent,
)
from .dispatch import CeleryScheduler, DispatchQueue, get_dispatch_queue
from .errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

EXECUTE_TASK = "crm_enrichment.services.enrichment.execute_enrichment"
POLL_TASK = "crm_enrichment.services.enrichment.poll_agent_job"

AGENT_NOT_CONFIGURED = "Research agent API key not configured"
AGENT_FAILED = "Research agent failed to extract data"

ENRICHABLE_STATUSES = (EnrichmentStatus.NONE, EnrichmentStatus.FAILED)


class Scheduler(Protocol):
    def run_after(self, delay_seconds: float, task_name: str, kwargs: Dict[str, Any]) -> str:
        ...


# ---------------------------------------------------------------------------
# Hints and prompt
# ---------------------------------------------------------------------------

@dataclass
class EnrichmentHints:
    domain: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None
    company_name: Optional[str] = None


def _record_values(record: CrmRecord) -> Dict[str, Any]:
    raw = record.raw_data or {}
    values = raw.get("values", raw)
    return values if isinstance(values, dict) else {}


def _first_entry(values: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    entries = values.get(key)
    if isinstance(entries, list) and entries and isinstance(entries[0], dict):
        return entries[0]
    return None


def find_linkedin_url(values: Dict[str, Any]) -> Optional[str]:
    for key in ("linkedin", "linkedin_url", "social_links"):
        entry = _first_entry(values, key)
        if not entry:
            continue
        value = entry.get("value") or entry.get("url") or entry.get("original_url")
        if isinstance(value, str) and "linkedin" in value:
            return value
    return None


def _find_domain(values: Dict[str, Any]) -> Optional[str]:
    entry = _first_entry(values, "domains")
    if not entry:
        return None
    return entry.get("domain") or entry.get("value")


def _find_company_name(values: Dict[str, Any]) -> Optional[str]:
    entry = _first_entry(values, "company")
    if not entry:
        return None
    return entry.get("value") or entry.get("name")


def extract_hints_and_urls(record: CrmRecord) -> Tuple[EnrichmentHints, List[str]]:
    """
    Pull search hints out of the provider payload.

    People: LinkedIn URL (also used as a seed URL), email, employer name.
    Companies: website domain, normalised to an https:// seed URL.
    """
    values = _record_values(record)
    hints = EnrichmentHints()
    urls: List[str] = []

    if RecordType(record.record_type) == RecordType.PERSON:
        linkedin_url = find_linkedin_url(values)
        if linkedin_url:
            hints.linkedin_url = linkedin_url
            urls.append(linkedin_url)
        if record.email:
            hints.email = record.email
        hints.company_name = _find_company_name(values)
    else:
        domain = _find_domain(values)
        if domain:
            hints.domain = domain
            urls.append(domain if domain.startswith("http") else f"https://{domain}")

    return hints, urls


def build_agent_prompt(record_type: RecordType | str, name: str, hints: EnrichmentHints) -> str:
    if RecordType(record_type) == RecordType.COMPANY:
        parts = [
            f'Find comprehensive information about the company "{name}".',
            "Include: founders and their backgrounds, complete funding history with amounts "
            "and investors, recent news and announcements, products/services, team size, "
            "key business metrics, competitors, and tech stack.",
        ]
        if hints.domain:
            parts.append(f"Their website is {hints.domain}.")
        parts.append("Use YYYY-MM format for dates and include currency in amounts.")
        return " ".join(parts)

    parts = [
        f'Find comprehensive professional information about "{name}".',
        "Include: current role and company, work experience history, education, skills, "
        "notable achievements, and social profiles.",
    ]
    if hints.company_name:
        parts.append(f"They work at {hints.company_name}.")
    if hints.email:
        parts.append(f"Their email is {hints.email}.")
    if hints.linkedin_url:
        parts.append(f"Their LinkedIn is {hints.linkedin_url}.")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def complete_job(
    db: Session,
    job_id: UUID,
    record_id: UUID,
    status: EnrichmentJobStatus,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    poll_count: Optional[int] = None,
) -> bool:
    """
    Move a job to a terminal status and mirror the outcome onto its record,
    in one transaction under a row lock on the job.

    Returns False (and writes nothing) when the job is missing or already
    terminal.
    """
    job = (
        db.query(EnrichmentJob)
        .filter(EnrichmentJob.id == job_id)
        .with_for_update()
        .first()
    )
    if not job or job.is_terminal:
        db.rollback()
        return False

    now = datetime.utcnow()
    job.status = status
    job.result = result
    job.error = error
    job.status_message = "Enrichment complete" if status == EnrichmentJobStatus.COMPLETED else error
    job.completed_at = now
    if poll_count is not None:
        job.poll_count = poll_count

    record = db.query(CrmRecord).filter(CrmRecord.id == record_id).first()
    if record:
        if status == EnrichmentJobStatus.COMPLETED:
            record.set_enrichment_status(EnrichmentStatus.ENRICHED, result)
        else:
            record.set_enrichment_status(EnrichmentStatus.FAILED)

    db.commit()

    logger.info(
        "Enrichment job finished",
        extra={
            "job_id": str(job_id),
            "record_id": str(record_id),
            "step": f"complete:{status.value}",
        },
    )
    return True


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class EnrichmentOrchestrator:
    """
    Drives one enrichment from request to terminal job row.

    request  -> record pending, work item enqueued on the dispatch queue
    execute  -> job row created, agent job submitted
    poll     -> self-rescheduling status check until done, failed or timed out
    """

    def __init__(
        self,
        *,
        dispatch: DispatchQueue,
        scheduler: Scheduler,
        agent: FirecrawlAgentClient | None,
        session_factory: Callable[[], Session] = SessionLocal,
        poll_interval_seconds: float = 60,
        max_polls: int = 10,
    ) -> None:
        self.dispatch = dispatch
        self.scheduler = scheduler
        self.agent = agent
        self.session_factory = session_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.max_polls = max_polls

    def _minutes(self, steps: int) -> int:
        return int(round(steps * self.poll_interval_seconds / 60))

    def _require_agent(self) -> None:
        if self.agent is None:
            raise ConfigurationError(AGENT_NOT_CONFIGURED)

    # -- request phase -----------------------------------------------------

    def enrich_record(self, db: Session, user: User, record_id: UUID) -> Dict[str, Any]:
        self._require_agent()

        record = (
            db.query(CrmRecord)
            .filter(CrmRecord.id == record_id, CrmRecord.user_id == user.id)
            .first()
        )
        if not record:
            raise NotFoundError("Record not found")

        record.set_enrichment_status(EnrichmentStatus.PENDING)
        db.commit()

        handle = self.dispatch.enqueue(
            EXECUTE_TASK,
            {"user_id": str(user.id), "record_id": str(record.id)},
        )
        record.enrichment_handle = handle
        db.commit()
        logger.info(
            "Enrichment queued",
            extra={
                "record_id": str(record.id),
                "user_id": str(user.id),
                "handle": handle,
                "step": "request",
            },
        )
        return {"success": True, "message": "Enrichment queued - results will appear shortly"}

    def enrich_segment(self, db: Session, user: User, segment_id: UUID) -> Dict[str, int]:
        self._require_agent()

        segment = (
            db.query(Segment)
            .filter(Segment.id == segment_id, Segment.user_id == user.id)
            .first()
        )
        if not segment:
            raise NotFoundError("Segment not found")

        members: List[CrmRecord] = (
            db.query(CrmRecord)
            .join(SegmentMember, SegmentMember.crm_record_id == CrmRecord.id)
            .filter(SegmentMember.segment_id == segment.id, CrmRecord.user_id == user.id)
            .all()
        )
        to_enrich = [r for r in members if r.enrichment_status in ENRICHABLE_STATUSES]

        for record in to_enrich:
            record.set_enrichment_status(EnrichmentStatus.PENDING)
        db.commit()

        handles = self.dispatch.enqueue_batch(
            EXECUTE_TASK,
            [{"user_id": str(user.id), "record_id": str(r.id)} for r in to_enrich],
        )
        for record, handle in zip(to_enrich, handles):
            record.enrichment_handle = handle
        db.commit()

        logger.info(
            "Segment enrichment queued: %d scheduled, %d skipped",
            len(handles),
            len(members) - len(to_enrich),
            extra={"segment_id": str(segment.id), "user_id": str(user.id), "step": "request"},
        )
        return {
            "scheduled": len(handles),
            "skipped": len(members) - len(to_enrich),
            "failed": 0,
        }

    # -- execution phase ---------------------------------------------------

    def execute(self, user_id: str, record_id: str) -> Optional[UUID]:
        """
        Create the job row and submit it to the research agent.

        Returns the job id, or None when the record vanished or changed
        owner in the meantime.
        """
        with session_scope(self.session_factory) as db:
            record = db.query(CrmRecord).filter(CrmRecord.id == UUID(record_id)).first()
            if not record or str(record.user_id) != str(user_id):
                logger.warning(
                    "Skipping enrichment for missing or foreign record",
                    extra={"record_id": record_id, "user_id": user_id, "step": "execute"},
                )
                return None

            hints, urls = extract_hints_and_urls(record)
            prompt = build_agent_prompt(record.record_type, record.name, hints)
            schema = agent_json_schema(record.record_type)

            job = EnrichmentJob(
                user_id=record.user_id,
                crm_record_id=record.id,
                status=EnrichmentJobStatus.PENDING,
                urls=urls or [record.name],
            )
            db.add(job)
            record.set_enrichment_status(EnrichmentStatus.PENDING)
            db.commit()
            job_id, rec_id = job.id, record.id

            log_extra = {"job_id": str(job_id), "record_id": str(rec_id)}
            logger.info("Starting enrichment job", extra={**log_extra, "step": "execute"})

            if self.agent is None:
                complete_job(db, job_id, rec_id, EnrichmentJobStatus.FAILED, error=AGENT_NOT_CONFIGURED)
                return job_id

            try:
                submission = self.agent.start_job(prompt, schema, urls or None)
            except (ResearchAgentError, httpx.HTTPError) as e:
                logger.warning(
                    "Research agent rejected submission: %s",
                    e,
                    extra={**log_extra, "step": "submit"},
                )
                complete_job(db, job_id, rec_id, EnrichmentJobStatus.FAILED, error=str(e))
                return job_id
            except Exception as e:
                db.rollback()
                complete_job(db, job_id, rec_id, EnrichmentJobStatus.FAILED, error=str(e)[:500])
                raise

            if submission.immediate_result is not None:
                complete_job(
                    db,
                    job_id,
                    rec_id,
                    EnrichmentJobStatus.COMPLETED,
                    result=submission.immediate_result,
                )
                return job_id

            job.status = EnrichmentJobStatus.RUNNING
            job.agent_job_id = submission.job_id
            job.status_message = "Agent started - searching the web for data..."
            job.poll_count = 0
            job.last_poll_step = 0
            job.started_at = datetime.utcnow()
            db.commit()

            self.scheduler.run_after(
                self.poll_interval_seconds,
                POLL_TASK,
                {
                    "job_id": str(job_id),
                    "record_id": str(rec_id),
                    "agent_job_id": submission.job_id,
                    "poll_count": 1,
                },
            )
            logger.info(
                "Agent job started; first poll scheduled",
                extra={**log_extra, "poll_count": 1, "step": "running"},
            )
            return job_id

    # -- poll phase --------------------------------------------------------

    def _schedule_poll(self, job_id: str, record_id: str, agent_job_id: str, poll_count: int) -> None:
        self.scheduler.run_after(
            self.poll_interval_seconds,
            POLL_TASK,
            {
                "job_id": job_id,
                "record_id": record_id,
                "agent_job_id": agent_job_id,
                "poll_count": poll_count,
            },
        )

    def poll(self, job_id: str, record_id: str, agent_job_id: str, poll_count: int) -> None:
        log_extra = {"job_id": job_id, "record_id": record_id, "poll_count": poll_count}

        with session_scope(self.session_factory) as db:
            job_uuid, record_uuid = UUID(job_id), UUID(record_id)
            job = (
                db.query(EnrichmentJob)
                .filter(EnrichmentJob.id == job_uuid)
                .with_for_update()
                .first()
            )
            if not job or job.is_terminal:
                db.rollback()
                return
            # Duplicate delivery of a step that already ran, or a foreign chain
            if (job.last_poll_step or 0) >= poll_count or job.agent_job_id != agent_job_id:
                db.rollback()
                logger.info("Ignoring stale poll step", extra={**log_extra, "step": "poll:stale"})
                return

            # Claim the step before talking to the agent; each step runs at most once
            job.last_poll_step = poll_count
            db.commit()

            if self.agent is None:
                complete_job(db, job_uuid, record_uuid, EnrichmentJobStatus.FAILED, error=AGENT_NOT_CONFIGURED)
                return

            status = self.agent.get_job_status(agent_job_id)

            if status.state == AgentJobState.COMPLETED:
                complete_job(
                    db,
                    job_uuid,
                    record_uuid,
                    EnrichmentJobStatus.COMPLETED,
                    result=status.data,
                    poll_count=poll_count,
                )
                return

            if status.state == AgentJobState.FAILED:
                complete_job(
                    db,
                    job_uuid,
                    record_uuid,
                    EnrichmentJobStatus.FAILED,
                    error=AGENT_FAILED,
                    poll_count=poll_count,
                )
                return

            if poll_count >= self.max_polls:
                complete_job(
                    db,
                    job_uuid,
                    record_uuid,
                    EnrichmentJobStatus.FAILED,
                    error=f"Enrichment timed out after {self._minutes(self.max_polls)} minutes",
                    poll_count=min(poll_count, self.max_polls),
                )
                logger.warning("Enrichment timed out", extra={**log_extra, "step": "poll:timeout"})
                return

            if status.state == AgentJobState.UNAVAILABLE:
                # Inconclusive; the row keeps its previous counter and message
                logger.warning(
                    "Agent status unavailable; will check again",
                    extra={**log_extra, "step": "poll:unavailable"},
                )
            else:
                job.poll_count = poll_count
                job.status_message = (
                    f"Agent is researching... ({self._minutes(poll_count)} min elapsed, "
                    f"{self._minutes(self.max_polls - poll_count)} min remaining)"
                )
                db.commit()

        self._schedule_poll(job_id, record_id, agent_job_id, poll_count + 1)

    # -- queries -----------------------------------------------------------

    def get_job(self, db: Session, user: User, job_id: UUID) -> EnrichmentJob:
        job = (
            db.query(EnrichmentJob)
            .filter(EnrichmentJob.id == job_id, EnrichmentJob.user_id == user.id)
            .first()
        )
        if not job:
            raise NotFoundError("Enrichment job not found")
        return job

    def get_job_for_record(self, db: Session, user: User, record_id: UUID) -> Optional[EnrichmentJob]:
        record = (
            db.query(CrmRecord)
            .filter(CrmRecord.id == record_id, CrmRecord.user_id == user.id)
            .first()
        )
        if not record:
            raise NotFoundError("Record not found")
        return (
            db.query(EnrichmentJob)
            .filter(EnrichmentJob.crm_record_id == record.id)
            .order_by(EnrichmentJob.created_at.desc())
            .first()
        )

    def get_record_for_handle(self, db: Session, user: User, handle: str) -> CrmRecord:
        """Record whose latest enrichment request was dispatched under `handle`."""
        record = (
            db.query(CrmRecord)
            .filter(CrmRecord.enrichment_handle == handle, CrmRecord.user_id == user.id)
            .first()
        )
        if not record:
            raise NotFoundError("Unknown work handle")
        return record

    def list_jobs(self, db: Session, user: User, limit: int = 50) -> List[EnrichmentJob]:
        return (
            db.query(EnrichmentJob)
            .filter(EnrichmentJob.user_id == user.id)
            .order_by(EnrichmentJob.created_at.desc())
            .limit(limit)
            .all()
        )


@lru_cache(maxsize=1)
def get_orchestrator() -> EnrichmentOrchestrator:
    settings = get_settings()
    return EnrichmentOrchestrator(
        dispatch=get_dispatch_queue(),
        scheduler=CeleryScheduler(),
        agent=get_research_agent(),
        poll_interval_seconds=settings.ENRICHMENT_POLL_INTERVAL_SECONDS,
        max_polls=settings.ENRICHMENT_MAX_POLLS,
    )


# ---------------------------------------------------------------------------
# Celery entrypoints
# ---------------------------------------------------------------------------

@celery_app.task(name=EXECUTE_TASK)
def execute_enrichment(user_id: str, record_id: str) -> Optional[str]:
    # Invoked in-process by the dispatch wrapper, inside a parallelism slot
    job_id = get_orchestrator().execute(user_id, record_id)
    return str(job_id) if job_id else None


@celery_app.task(name=POLL_TASK, queue="enrichment_poll")
def poll_agent_job(job_id: str, record_id: str, agent_job_id: str, poll_count: int) -> None:
    get_orchestrator().poll(job_id, record_id, agent_job_id, poll_count)
