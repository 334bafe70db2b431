from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..models.crm_record import CrmRecord, RecordType
from ..models.segment import Segment, SegmentMember, SegmentRecordType
from ..models.user import User
from .errors import NotFoundError, ServiceError
from .records import records_in_list

logger = logging.getLogger(__name__)


class EmptyListError(ServiceError):
    """The CRM list has no synced records to build a segment from."""


def _refresh_member_count(db: Session, segment: Segment) -> None:
    segment.member_count = (
        db.query(SegmentMember).filter(SegmentMember.segment_id == segment.id).count()
    )
    segment.updated_at = datetime.utcnow()


def create_segment(
    db: Session,
    user: User,
    name: str,
    record_type: SegmentRecordType,
    description: Optional[str] = None,
) -> Segment:
    segment = Segment(
        user_id=user.id,
        name=name,
        description=description,
        record_type=record_type,
        member_count=0,
    )
    db.add(segment)
    db.commit()
    db.refresh(segment)
    return segment


def list_segments(db: Session, user: User) -> List[Segment]:
    return (
        db.query(Segment)
        .filter(Segment.user_id == user.id)
        .order_by(Segment.created_at.desc())
        .all()
    )


def get_segment(db: Session, user: User, segment_id: UUID) -> Segment:
    segment = (
        db.query(Segment)
        .filter(Segment.id == segment_id, Segment.user_id == user.id)
        .first()
    )
    if not segment:
        raise NotFoundError("Segment not found")
    return segment


def update_segment(
    db: Session,
    user: User,
    segment_id: UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Segment:
    segment = get_segment(db, user, segment_id)
    if name is not None:
        segment.name = name
    if description is not None:
        segment.description = description
    segment.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(segment)
    return segment


def delete_segment(db: Session, user: User, segment_id: UUID) -> None:
    segment = get_segment(db, user, segment_id)
    db.query(SegmentMember).filter(SegmentMember.segment_id == segment.id).delete(
        synchronize_session=False
    )
    db.delete(segment)
    db.commit()
    logger.info("Deleted segment", extra={"segment_id": str(segment_id), "step": "segment:delete"})


def add_members(db: Session, user: User, segment_id: UUID, record_ids: Iterable[UUID]) -> int:
    """Add records to the segment; records already present are skipped. Returns the added count."""
    segment = get_segment(db, user, segment_id)
    wanted = set(record_ids)
    if not wanted:
        return 0

    owned = {
        r.id
        for r in db.query(CrmRecord.id)
        .filter(CrmRecord.id.in_(wanted), CrmRecord.user_id == user.id)
        .all()
    }
    existing = {
        m.crm_record_id
        for m in db.query(SegmentMember.crm_record_id)
        .filter(SegmentMember.segment_id == segment.id, SegmentMember.crm_record_id.in_(owned))
        .all()
    }

    added = 0
    for record_id in owned - existing:
        db.add(SegmentMember(segment_id=segment.id, crm_record_id=record_id))
        added += 1
    db.flush()

    _refresh_member_count(db, segment)
    db.commit()
    return added


def remove_members(db: Session, user: User, segment_id: UUID, record_ids: Iterable[UUID]) -> None:
    segment = get_segment(db, user, segment_id)
    ids = list(record_ids)
    if ids:
        db.query(SegmentMember).filter(
            SegmentMember.segment_id == segment.id,
            SegmentMember.crm_record_id.in_(ids),
        ).delete(synchronize_session=False)
    _refresh_member_count(db, segment)
    db.commit()


def create_segment_from_list(db: Session, user: User, list_id: str, list_name: str) -> Segment:
    records = records_in_list(db, user, list_id)
    if not records:
        raise EmptyListError("No synced records in this list. Sync the list first.")

    types = {RecordType(r.record_type) for r in records}
    record_type = SegmentRecordType(types.pop().value) if len(types) == 1 else SegmentRecordType.MIXED

    segment = Segment(
        user_id=user.id,
        name=list_name,
        record_type=record_type,
        member_count=len(records),
    )
    db.add(segment)
    db.flush()
    for record in records:
        db.add(SegmentMember(segment_id=segment.id, crm_record_id=record.id))
    db.commit()
    db.refresh(segment)

    logger.info(
        "Created segment from CRM list (%d members)",
        len(records),
        extra={"segment_id": str(segment.id), "user_id": str(user.id), "step": "segment:from_list"},
    )
    return segment


def get_members(db: Session, user: User, segment_id: UUID, limit: int = 200) -> List[CrmRecord]:
    segment = get_segment(db, user, segment_id)
    return (
        db.query(CrmRecord)
        .join(SegmentMember, SegmentMember.crm_record_id == CrmRecord.id)
        .filter(SegmentMember.segment_id == segment.id)
        .order_by(SegmentMember.added_at, SegmentMember.id)
        .limit(limit)
        .all()
    )
