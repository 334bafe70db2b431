from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.crm_record import CrmRecord, RecordType
from ..models.user import User
from .errors import NotFoundError


def list_records(db: Session, user: User, record_type: RecordType, limit: int = 100) -> List[CrmRecord]:
    return (
        db.query(CrmRecord)
        .filter(CrmRecord.user_id == user.id, CrmRecord.record_type == record_type)
        .order_by(CrmRecord.name)
        .limit(limit)
        .all()
    )


def get_record(db: Session, user: User, record_id: UUID) -> CrmRecord:
    record = (
        db.query(CrmRecord)
        .filter(CrmRecord.id == record_id, CrmRecord.user_id == user.id)
        .first()
    )
    if not record:
        raise NotFoundError("Record not found")
    return record


def search_records(
    db: Session,
    user: User,
    term: str,
    record_type: Optional[RecordType] = None,
    limit: int = 50,
) -> List[CrmRecord]:
    """Case-insensitive substring match on name or email."""
    pattern = f"%{term}%"
    query = db.query(CrmRecord).filter(
        CrmRecord.user_id == user.id,
        or_(CrmRecord.name.ilike(pattern), CrmRecord.email.ilike(pattern)),
    )
    if record_type is not None:
        query = query.filter(CrmRecord.record_type == record_type)
    return query.order_by(CrmRecord.name).limit(limit).all()


def records_in_list(db: Session, user: User, list_id: str) -> List[CrmRecord]:
    # Memberships live in a JSON column; filter in Python to stay portable across backends
    records = (
        db.query(CrmRecord)
        .filter(CrmRecord.user_id == user.id)
        .order_by(CrmRecord.name)
        .all()
    )
    return [
        r for r in records
        if any(m.get("list_id") == list_id for m in (r.list_memberships or []))
    ]


def list_records_by_list(db: Session, user: User, list_id: str, limit: int = 100) -> List[CrmRecord]:
    return records_in_list(db, user, list_id)[:limit]
