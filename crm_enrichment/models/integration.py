from sqlalchemy import Column, String, JSON, Enum, DateTime, ForeignKey, UniqueConstraint, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base


class IntegrationStatus(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_integrations_user_provider"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    provider = Column(String, nullable=False)  # only "attio" today
    display_name = Column(String, nullable=False)
    api_key = Column(String, nullable=False)  # never serialised to API responses
    status = Column(
        Enum(IntegrationStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=IntegrationStatus.CONNECTED,
    )
    last_synced_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    # `metadata` is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)  # {"workspace_name": ...}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
