from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.user import User
from ..schemas.crm import (
    CrmRecordOut,
    SegmentCreate,
    SegmentFromListRequest,
    SegmentMembersAddedOut,
    SegmentMembersRequest,
    SegmentOut,
    SegmentUpdate,
)
from ..services import segments as segments_service
from ..services.errors import ServiceError
from .deps import get_current_user, to_http_error

router = APIRouter(tags=["segments"])


@router.post("/segments", response_model=SegmentOut, status_code=201)
def create_segment(
    payload: SegmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return segments_service.create_segment(
        db, user, payload.name, payload.record_type, description=payload.description
    )


@router.post("/segments/from-list", response_model=SegmentOut, status_code=201)
def create_segment_from_list(
    payload: SegmentFromListRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return segments_service.create_segment_from_list(db, user, payload.list_id, payload.list_name)
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/segments", response_model=list[SegmentOut])
def list_segments(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return segments_service.list_segments(db, user)


@router.get("/segments/{segment_id}", response_model=SegmentOut)
def get_segment(
    segment_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return segments_service.get_segment(db, user, segment_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.patch("/segments/{segment_id}", response_model=SegmentOut)
def update_segment(
    segment_id: UUID,
    payload: SegmentUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return segments_service.update_segment(
            db, user, segment_id, name=payload.name, description=payload.description
        )
    except ServiceError as e:
        raise to_http_error(e)


@router.delete("/segments/{segment_id}", status_code=204)
def delete_segment(
    segment_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        segments_service.delete_segment(db, user, segment_id)
    except ServiceError as e:
        raise to_http_error(e)
    return Response(status_code=204)


@router.get("/segments/{segment_id}/members", response_model=list[CrmRecordOut])
def get_segment_members(
    segment_id: UUID,
    limit: int = 200,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return segments_service.get_members(db, user, segment_id, limit=max(1, min(limit, 1000)))
    except ServiceError as e:
        raise to_http_error(e)


@router.post("/segments/{segment_id}/members", response_model=SegmentMembersAddedOut)
def add_segment_members(
    segment_id: UUID,
    payload: SegmentMembersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        added = segments_service.add_members(db, user, segment_id, payload.record_ids)
    except ServiceError as e:
        raise to_http_error(e)
    return SegmentMembersAddedOut(added=added)


@router.post("/segments/{segment_id}/members/remove", response_model=SegmentOut)
def remove_segment_members(
    segment_id: UUID,
    payload: SegmentMembersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        segments_service.remove_members(db, user, segment_id, payload.record_ids)
        return segments_service.get_segment(db, user, segment_id)
    except ServiceError as e:
        raise to_http_error(e)
