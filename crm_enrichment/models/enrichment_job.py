from sqlalchemy import Column, Integer, String, JSON, Enum, DateTime, ForeignKey, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base


class EnrichmentJobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({EnrichmentJobStatus.COMPLETED, EnrichmentJobStatus.FAILED})


class EnrichmentJob(Base):
    """
    One attempt to enrich a single CRM record.

    No uniqueness constraint on (crm_record_id, active status): two requests
    racing for the same record each get their own job row.
    """
    __tablename__ = "enrichment_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    crm_record_id = Column(Uuid, ForeignKey("crm_records.id"), index=True, nullable=False)
    status = Column(
        Enum(EnrichmentJobStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EnrichmentJobStatus.PENDING,
        index=True,
    )
    urls = Column(JSON, nullable=False)  # seed URLs, or the record name when no URL hint exists
    agent_job_id = Column(String, nullable=True)
    status_message = Column(String, nullable=True)
    poll_count = Column(Integer, nullable=True)
    # Highest poll step already consumed; poll_count only moves on conclusive checks
    last_poll_step = Column(Integer, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
