# crm_enrichment/schemas/crm.py
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.crm_record import RecordType, EnrichmentStatus
from ..models.integration import IntegrationStatus
from ..models.segment import SegmentRecordType

MAX_NAME_LEN = 200
MAX_DESCRIPTION_LEN = 2000


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------

class ConnectIntegrationRequest(BaseModel):
    provider: str = "attio"
    api_key: str
    display_name: str | None = None

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("api_key must not be empty")
        return v


class IntegrationOut(BaseModel):
    # api_key is deliberately absent
    id: UUID
    provider: str
    display_name: str
    status: IntegrationStatus
    last_synced_at: datetime | None = None
    last_error: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="meta")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CrmListOut(BaseModel):
    id: str
    name: str
    api_slug: str | None = None
    parent_object: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SyncRequest(BaseModel):
    # Omit list_id for a full sync
    list_id: str | None = None
    list_name: str | None = None
    list_api_slug: str | None = None


class SyncQueuedOut(BaseModel):
    queued: bool = True
    task_id: str


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class ListMembershipOut(BaseModel):
    list_id: str
    list_name: str
    entry_id: str


class CrmRecordOut(BaseModel):
    id: UUID
    integration_id: UUID
    external_id: str
    record_type: RecordType
    name: str
    email: str | None = None
    enrichment_status: EnrichmentStatus
    enriched_data: dict[str, Any] | None = None
    enriched_at: datetime | None = None
    list_memberships: list[ListMembershipOut] | None = None
    last_synced_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CrmRecordDetailOut(CrmRecordOut):
    raw_data: dict[str, Any]


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

class SegmentCreate(BaseModel):
    name: str
    description: str | None = None
    record_type: SegmentRecordType

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            raise ValueError("name must not be empty")
        if len(v) > MAX_NAME_LEN:
            raise ValueError(f"name must be at most {MAX_NAME_LEN} characters")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_DESCRIPTION_LEN:
            raise ValueError(f"description must be at most {MAX_DESCRIPTION_LEN} characters")
        return v


class SegmentUpdate(BaseModel):
    name: str | None = None
    description: str | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v:
            raise ValueError("name must not be empty")
        if len(v) > MAX_NAME_LEN:
            raise ValueError(f"name must be at most {MAX_NAME_LEN} characters")
        return v


class SegmentFromListRequest(BaseModel):
    list_id: str
    list_name: str


class SegmentMembersRequest(BaseModel):
    record_ids: list[UUID]


class SegmentMembersAddedOut(BaseModel):
    added: int


class SegmentOut(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    record_type: SegmentRecordType
    member_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
