from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.user import User
from ..schemas.crm import (
    ConnectIntegrationRequest,
    CrmListOut,
    IntegrationOut,
    SyncQueuedOut,
    SyncRequest,
)
from ..services import integrations as integrations_service
from ..services import sync as sync_service
from ..services.connectors.attio import AttioError
from ..services.errors import ServiceError
from .deps import get_current_user, to_http_error

router = APIRouter(tags=["integrations"])
logger = logging.getLogger(__name__)


@router.post("/integrations", response_model=IntegrationOut, status_code=201)
def connect_integration(
    payload: ConnectIntegrationRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return integrations_service.connect_integration(
            db, user, payload.provider, payload.api_key, display_name=payload.display_name
        )
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/integrations", response_model=list[IntegrationOut])
def list_integrations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return integrations_service.list_integrations(db, user)


@router.get("/integrations/{integration_id}", response_model=IntegrationOut)
def get_integration(
    integration_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return integrations_service.get_integration(db, user, integration_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.post("/integrations/{integration_id}/disconnect", response_model=IntegrationOut)
def disconnect_integration(
    integration_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return integrations_service.disconnect_integration(db, user, integration_id)
    except ServiceError as e:
        raise to_http_error(e)


@router.get("/integrations/{integration_id}/lists", response_model=list[CrmListOut])
def get_available_lists(
    integration_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return sync_service.fetch_available_lists(db, user, integration_id)
    except ServiceError as e:
        raise to_http_error(e)
    except AttioError as e:
        logger.warning(
            "Fetching CRM lists failed: %s",
            e,
            extra={"integration_id": str(integration_id), "step": "lists"},
        )
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/integrations/{integration_id}/sync", response_model=SyncQueuedOut, status_code=202)
def sync_integration(
    integration_id: UUID,
    payload: SyncRequest | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payload = payload or SyncRequest()
    try:
        task_id = sync_service.request_sync(
            db,
            user,
            integration_id,
            list_id=payload.list_id,
            list_name=payload.list_name,
            list_api_slug=payload.list_api_slug,
        )
    except ServiceError as e:
        raise to_http_error(e)
    return SyncQueuedOut(task_id=task_id)
