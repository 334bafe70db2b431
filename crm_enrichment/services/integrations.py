from __future__ import annotations

from datetime import datetime
from typing import Callable, List
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..models.integration import Integration, IntegrationStatus
from ..models.user import User
from .connectors import SUPPORTED_PROVIDERS, get_crm_client
from .connectors.attio import AttioClient
from .errors import IntegrationError, NotAuthorizedError, NotFoundError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], AttioClient]


def connect_integration(
    db: Session,
    user: User,
    provider: str,
    api_key: str,
    display_name: str | None = None,
    client_factory: ClientFactory = get_crm_client,
) -> Integration:
    """
    Validate the provider key and store it. Re-connecting the same provider
    updates the existing row instead of adding a second one.
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise IntegrationError(f"Unknown CRM provider: {provider}")

    validation = client_factory(provider, api_key).validate_api_key()
    if not validation.valid:
        raise IntegrationError(validation.error or "Invalid API key")

    integration = (
        db.query(Integration)
        .filter(Integration.user_id == user.id, Integration.provider == provider)
        .first()
    )
    name = display_name or validation.workspace_name or f"{provider} workspace"
    meta = {"workspace_name": validation.workspace_name} if validation.workspace_name else None

    if integration:
        integration.api_key = api_key
        integration.display_name = name
        integration.status = IntegrationStatus.CONNECTED
        integration.last_error = None
        integration.meta = meta or integration.meta
        integration.updated_at = datetime.utcnow()
    else:
        integration = Integration(
            user_id=user.id,
            provider=provider,
            display_name=name,
            api_key=api_key,
            status=IntegrationStatus.CONNECTED,
            meta=meta,
        )
        db.add(integration)

    db.commit()
    db.refresh(integration)
    logger.info(
        "CRM integration connected",
        extra={"integration_id": str(integration.id), "user_id": str(user.id), "step": "connect"},
    )
    return integration


def get_integration(db: Session, user: User, integration_id: UUID) -> Integration:
    integration = db.query(Integration).filter(Integration.id == integration_id).first()
    if not integration:
        raise NotFoundError("Integration not found")
    if integration.user_id != user.id:
        raise NotAuthorizedError("Not authorized")
    return integration


def get_connected_integration(db: Session, user: User, integration_id: UUID) -> Integration:
    integration = get_integration(db, user, integration_id)
    if integration.status != IntegrationStatus.CONNECTED:
        raise IntegrationError("Integration not connected")
    return integration


def list_integrations(db: Session, user: User) -> List[Integration]:
    return (
        db.query(Integration)
        .filter(Integration.user_id == user.id)
        .order_by(Integration.created_at)
        .all()
    )


def disconnect_integration(db: Session, user: User, integration_id: UUID) -> Integration:
    integration = get_integration(db, user, integration_id)
    integration.status = IntegrationStatus.DISCONNECTED
    integration.api_key = ""
    integration.updated_at = datetime.utcnow()
    db.commit()
    logger.info(
        "CRM integration disconnected",
        extra={"integration_id": str(integration.id), "user_id": str(user.id), "step": "disconnect"},
    )
    return integration
