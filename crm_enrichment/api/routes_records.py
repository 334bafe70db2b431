from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.crm_record import RecordType
from ..models.user import User
from ..schemas.crm import CrmRecordOut, CrmRecordDetailOut
from ..services import records as records_service
from ..services.errors import ServiceError
from .deps import get_current_user, to_http_error

router = APIRouter(tags=["records"])


@router.get("/records", response_model=list[CrmRecordOut])
def list_records(
    record_type: RecordType,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return records_service.list_records(db, user, record_type, limit=max(1, min(limit, 500)))


@router.get("/records/search", response_model=list[CrmRecordOut])
def search_records(
    q: str,
    record_type: RecordType | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return records_service.search_records(
        db, user, q.strip(), record_type=record_type, limit=max(1, min(limit, 200))
    )


@router.get("/lists/{list_id}/records", response_model=list[CrmRecordOut])
def list_records_by_list(
    list_id: str,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return records_service.list_records_by_list(db, user, list_id, limit=max(1, min(limit, 500)))


@router.get("/records/{record_id}", response_model=CrmRecordDetailOut)
def get_record(
    record_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return records_service.get_record(db, user, record_id)
    except ServiceError as e:
        raise to_http_error(e)
