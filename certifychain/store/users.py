"""Wallet users, created on first sign-in."""
import logging

from sqlalchemy.orm import Session

from certifychain.auth.wallet_auth import default_user_name
from certifychain.db.models import User
from certifychain.store.base import translate_db_errors

log = logging.getLogger(__name__)


def find_or_create_user(db: Session, wallet_address: str) -> User:
    """User row for a lower-cased wallet address, created if missing."""
    with translate_db_errors(db, "load user"):
        user = db.query(User).filter(User.wallet_address == wallet_address).first()
    if user is not None:
        return user

    with translate_db_errors(db, "create user"):
        user = User(wallet_address=wallet_address, name=default_user_name(wallet_address))
        db.add(user)
        db.commit()
        db.refresh(user)
    log.info(f"Created user for wallet {wallet_address}", extra={"user_id": user.id})
    return user
