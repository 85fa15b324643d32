from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from nunyalearn.backend.core.errors import InvalidToken, NotFound
from nunyalearn.backend.core.security import hash_password
from nunyalearn.backend.core.tokens import new_reset_token, reset_token_expiry, utcnow
from nunyalearn.backend.models.password_reset import PasswordReset
from nunyalearn.backend.models.refresh_token import RefreshToken
from nunyalearn.backend.models.user import User
from nunyalearn.backend.services.auth_service import normalize_email

log = logging.getLogger(__name__)


def logout(db: Session, refresh_token: str, user_id: int) -> None:
    """Delete exactly the presented refresh token; it must belong to ``user_id``."""
    row = db.get(RefreshToken, refresh_token)
    if row is None or row.user_id != user_id:
        raise NotFound()
    try:
        db.delete(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    log.info("logout user_id=%s", user_id)


def revoke_all(db: Session, user_id: int) -> int:
    """Delete every refresh token of ``user_id``. Runs inside the caller's transaction."""
    rows = db.exec(select(RefreshToken).where(RefreshToken.user_id == user_id)).all()
    for row in rows:
        db.delete(row)
    return len(rows)


def request_password_reset(db: Session, email: str) -> Optional[str]:
    """
    Issue a fresh reset token for ``email``.

    Unknown emails get ``None`` and no error, so callers cannot probe for
    accounts. Every earlier unused token of the user is retired first.
    """
    user = db.exec(select(User).where(User.email == normalize_email(email))).first()
    if user is None:
        log.info("password reset requested for unknown email")
        return None

    token = new_reset_token()
    try:
        for prior in db.exec(
            select(PasswordReset).where(
                PasswordReset.user_id == user.id,
                PasswordReset.used == False,  # noqa: E712
            )
        ).all():
            prior.used = True
            db.add(prior)
        db.add(PasswordReset(token=token, user_id=user.id, expires_at=reset_token_expiry()))
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info("password reset issued user_id=%s", user.id)
    return token


def complete_password_reset(db: Session, token: str, new_password: str) -> int:
    """
    Set a new password, burn the reset token and revoke every refresh token,
    all in one commit. Returns the user id.
    """
    row = db.get(PasswordReset, token)
    if row is None or row.used or row.expires_at <= utcnow():
        raise InvalidToken()

    user = db.get(User, row.user_id)
    if user is None:
        raise InvalidToken()

    user_id = user.id
    password_hash = hash_password(new_password)
    try:
        claimed = db.exec(
            update(PasswordReset)
            .where(PasswordReset.token == token, PasswordReset.used == False)  # noqa: E712
            .values(used=True)
        )
        if claimed.rowcount != 1:
            # consumed concurrently
            db.rollback()
            raise InvalidToken()
        user.password_hash = password_hash
        db.add(user)
        revoked = revoke_all(db, user_id)
        db.commit()
    except InvalidToken:
        raise
    except Exception:
        db.rollback()
        raise

    log.info("password reset completed user_id=%s revoked_sessions=%s", user_id, revoked)
    return user_id
