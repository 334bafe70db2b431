"""
Pull CRM records and list memberships from the provider into `crm_records`.

Records are keyed by (integration, external id). A re-sync refreshes the
provider payload but never touches enrichment fields.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.db import SessionLocal
from ..models.crm_record import CrmRecord, EnrichmentStatus, RecordType
from ..models.integration import Integration, IntegrationStatus
from ..models.user import User
from .connectors import get_crm_client
from .connectors.attio import AttioClient, CrmList, CrmListEntry, NormalizedRecord
from .integrations import ClientFactory, get_connected_integration

logger = logging.getLogger(__name__)

SYNC_TASK = "crm_enrichment.services.sync.sync_integration"


def upsert_records(
    db: Session,
    user_id: UUID,
    integration_id: UUID,
    records: Iterable[NormalizedRecord],
) -> int:
    now = datetime.utcnow()
    count = 0
    for normalized in records:
        record = (
            db.query(CrmRecord)
            .filter(
                CrmRecord.integration_id == integration_id,
                CrmRecord.external_id == normalized.external_id,
            )
            .first()
        )
        if record:
            record.name = normalized.name
            record.email = normalized.email
            record.raw_data = normalized.raw_data
            record.last_synced_at = now
            record.updated_at = now
        else:
            db.add(
                CrmRecord(
                    user_id=user_id,
                    integration_id=integration_id,
                    external_id=normalized.external_id,
                    record_type=RecordType(normalized.record_type),
                    name=normalized.name,
                    email=normalized.email,
                    raw_data=normalized.raw_data,
                    enrichment_status=EnrichmentStatus.NONE,
                    last_synced_at=now,
                )
            )
        count += 1
    db.flush()
    return count


def update_list_memberships(
    db: Session,
    integration_id: UUID,
    list_id: str,
    list_name: str,
    entries: Iterable[CrmListEntry],
) -> None:
    for entry in entries:
        record = (
            db.query(CrmRecord)
            .filter(
                CrmRecord.integration_id == integration_id,
                CrmRecord.external_id == entry.record_id,
            )
            .first()
        )
        if not record:
            continue
        memberships = list(record.list_memberships or [])
        if any(m.get("list_id") == list_id and m.get("entry_id") == entry.entry_id for m in memberships):
            continue
        # Reassign so the JSON column is flagged dirty
        record.list_memberships = memberships + [
            {"list_id": list_id, "list_name": list_name, "entry_id": entry.entry_id}
        ]
        record.updated_at = datetime.utcnow()
    db.flush()


def _mark_synced(db: Session, integration: Integration) -> None:
    integration.last_synced_at = datetime.utcnow()
    integration.last_error = None
    integration.updated_at = integration.last_synced_at
    db.commit()


def _mark_failed(db: Session, integration_id: UUID, error: str) -> None:
    db.rollback()
    integration = db.query(Integration).filter(Integration.id == integration_id).first()
    if integration:
        integration.status = IntegrationStatus.ERROR
        integration.last_error = error
        integration.updated_at = datetime.utcnow()
        db.commit()


def _all_list_entries(client: AttioClient, list_ref: str) -> List[CrmListEntry]:
    entries: List[CrmListEntry] = []
    offset, has_more = 0, True
    while has_more:
        page = client.fetch_list_entries(list_ref, offset)
        entries.extend(page.items)
        has_more, offset = page.has_more, page.next_offset
    return entries


def fetch_available_lists(
    db: Session,
    user: User,
    integration_id: UUID,
    client_factory: ClientFactory = get_crm_client,
) -> List[CrmList]:
    integration = get_connected_integration(db, user, integration_id)
    return client_factory(integration.provider, integration.api_key).fetch_lists()


def sync_all(db: Session, integration: Integration, client: AttioClient) -> Dict[str, Any]:
    """
    Full sync: every company, every person, then memberships for every list.
    """
    integration_id = integration.id
    log_extra = {"integration_id": str(integration_id)}
    total = 0
    try:
        for fetch_page in (client.fetch_companies, client.fetch_people):
            offset, has_more = 0, True
            while has_more:
                page = fetch_page(offset)
                total += upsert_records(db, integration.user_id, integration_id, page.items)
                db.commit()
                has_more, offset = page.has_more, page.next_offset

        for crm_list in client.fetch_lists():
            entries = _all_list_entries(client, crm_list.api_slug or crm_list.id)
            update_list_memberships(db, integration_id, crm_list.id, crm_list.name, entries)
            db.commit()

        _mark_synced(db, integration)
    except Exception as e:
        logger.exception("CRM sync failed", extra={**log_extra, "step": "sync:failed"})
        _mark_failed(db, integration_id, str(e))
        return {"success": False, "error": str(e)}

    logger.info("CRM sync completed", extra={**log_extra, "step": "sync:done"})
    return {"success": True, "total_synced": total}


def sync_list(
    db: Session,
    integration: Integration,
    client: AttioClient,
    list_id: str,
    list_name: str,
    list_api_slug: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Sync a single CRM list: fetch its entries, fetch each referenced record,
    upsert, then record the memberships.
    """
    integration_id = integration.id
    log_extra = {"integration_id": str(integration_id)}
    total = 0
    try:
        entries = _all_list_entries(client, list_api_slug or list_id)
        records: List[NormalizedRecord] = []
        for entry in entries:
            record = client.fetch_record(entry.record_type, entry.record_id)
            if record:
                records.append(record)

        total = upsert_records(db, integration.user_id, integration_id, records)
        update_list_memberships(db, integration_id, list_id, list_name, entries)
        _mark_synced(db, integration)
    except Exception as e:
        logger.exception("CRM list sync failed", extra={**log_extra, "step": "sync_list:failed"})
        _mark_failed(db, integration_id, str(e))
        return {"success": False, "error": str(e)}

    logger.info(
        "CRM list sync completed (%d records)",
        total,
        extra={**log_extra, "step": "sync_list:done"},
    )
    return {"success": True, "total_synced": total}


def request_sync(
    db: Session,
    user: User,
    integration_id: UUID,
    list_id: Optional[str] = None,
    list_name: Optional[str] = None,
    list_api_slug: Optional[str] = None,
) -> str:
    """Validate access and queue a background sync. Returns the Celery task id."""
    integration = get_connected_integration(db, user, integration_id)
    result = celery_app.send_task(
        SYNC_TASK,
        kwargs={
            "integration_id": str(integration.id),
            "list_id": list_id,
            "list_name": list_name,
            "list_api_slug": list_api_slug,
        },
    )
    logger.info(
        "CRM sync queued",
        extra={"integration_id": str(integration.id), "user_id": str(user.id), "step": "sync:queued"},
    )
    return result.id


@celery_app.task(name=SYNC_TASK, queue="sync")
def sync_integration(
    integration_id: str,
    list_id: Optional[str] = None,
    list_name: Optional[str] = None,
    list_api_slug: Optional[str] = None,
) -> Dict[str, Any]:
    db: Session = SessionLocal()
    try:
        integration = db.query(Integration).filter(Integration.id == UUID(integration_id)).first()
        if not integration or integration.status != IntegrationStatus.CONNECTED:
            return {"success": False, "error": "Integration not connected"}

        client = get_crm_client(integration.provider, integration.api_key)
        if list_id:
            return sync_list(db, integration, client, list_id, list_name or list_id, list_api_slug)
        return sync_all(db, integration, client)
    finally:
        db.close()
