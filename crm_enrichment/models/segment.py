from sqlalchemy import Column, String, Integer, Enum, DateTime, ForeignKey, UniqueConstraint, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base


class SegmentRecordType(str, enum.Enum):
    COMPANY = "company"
    PERSON = "person"
    MIXED = "mixed"


class Segment(Base):
    __tablename__ = "segments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    record_type = Column(
        Enum(SegmentRecordType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    member_count = Column(Integer, nullable=False, default=0)  # denormalised
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SegmentMember(Base):
    __tablename__ = "segment_members"
    __table_args__ = (
        UniqueConstraint("segment_id", "crm_record_id", name="uq_segment_members_segment_record"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(Uuid, ForeignKey("segments.id"), index=True, nullable=False)
    crm_record_id = Column(Uuid, ForeignKey("crm_records.id"), index=True, nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
