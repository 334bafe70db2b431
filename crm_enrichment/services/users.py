from __future__ import annotations

import logging
import secrets

from sqlalchemy.orm import Session

from ..models.user import User

logger = logging.getLogger(__name__)


def generate_api_key() -> str:
    return secrets.token_urlsafe(32)


def get_user_by_api_key(db: Session, api_key: str) -> User | None:
    if not api_key:
        return None
    return db.query(User).filter(User.api_key == api_key).first()


def create_user(db: Session, email: str, name: str | None = None, api_key: str | None = None) -> User:
    user = User(email=email, name=name, api_key=api_key or generate_api_key())
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created user", extra={"user_id": str(user.id), "step": "create_user"})
    return user
