from sqlalchemy import Column, String, DateTime, Uuid
from datetime import datetime
import uuid
from ..core.db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    # Resolves the caller from the X-API-Key header
    api_key = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
