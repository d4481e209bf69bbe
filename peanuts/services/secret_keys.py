"""Secret keys authorize API writes and reveal unpublished photos."""
from __future__ import annotations

import logging
import secrets

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from peanuts.models import SecretKey

logger = logging.getLogger(__name__)


def generate_secret_key() -> str:
    return secrets.token_urlsafe(48)


def valid_secret_key(db: Session, secret_key: str) -> bool:
    if not secret_key:
        return False
    found = db.execute(
        select(SecretKey.secret_key).where(SecretKey.secret_key == secret_key)
    ).first()
    return found is not None


def add_secret_key(db: Session, secret_key: str) -> str:
    try:
        db.add(SecretKey(secret_key=secret_key))
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Secret key added")
    return secret_key


def create_secret_key(db: Session) -> str:
    """Store and return a freshly generated key."""
    return add_secret_key(db, generate_secret_key())


def revoke_secret_key(db: Session, secret_key: str) -> bool:
    try:
        result = db.execute(
            delete(SecretKey).where(SecretKey.secret_key == secret_key)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount > 0


def list_secret_keys(db: Session) -> list[str]:
    return list(
        db.execute(select(SecretKey.secret_key).order_by(SecretKey.secret_key))
        .scalars()
        .all()
    )
