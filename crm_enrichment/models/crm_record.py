from sqlalchemy import Column, String, JSON, Enum, DateTime, ForeignKey, Index, UniqueConstraint, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base


class RecordType(str, enum.Enum):
    COMPANY = "company"
    PERSON = "person"


class EnrichmentStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    ENRICHED = "enriched"
    FAILED = "failed"


class CrmRecord(Base):
    __tablename__ = "crm_records"
    __table_args__ = (
        UniqueConstraint("integration_id", "external_id", name="uq_crm_records_external_id"),
        Index("ix_crm_records_user_type", "user_id", "record_type"),
        Index("ix_crm_records_user_enrichment_status", "user_id", "enrichment_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    integration_id = Column(Uuid, ForeignKey("integrations.id"), index=True, nullable=False)
    external_id = Column(String, nullable=False)
    record_type = Column(
        Enum(RecordType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=False)  # provider payload, used for enrichment hints

    enrichment_status = Column(
        Enum(EnrichmentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EnrichmentStatus.NONE,
    )
    enriched_data = Column(JSON, nullable=True)
    enriched_at = Column(DateTime, nullable=True)
    # Dispatch handle of the latest enrichment request
    enrichment_handle = Column(String, nullable=True, index=True)

    list_memberships = Column(JSON, nullable=True)  # [{list_id, list_name, entry_id}, ...]

    last_synced_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def set_enrichment_status(self, status: EnrichmentStatus, data: dict | None = None) -> None:
        """
        Move the record to `status`.

        `enriched_data` is only ever present while the record is ENRICHED.
        """
        now = datetime.utcnow()
        self.enrichment_status = status
        if status == EnrichmentStatus.ENRICHED:
            self.enriched_data = data
            self.enriched_at = now
        else:
            self.enriched_data = None
            self.enriched_at = None
        self.updated_at = now
