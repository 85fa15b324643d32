from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from nunyalearn.backend.core.config import get_settings
from nunyalearn.backend.core.errors import (
    DuplicateAccount,
    InvalidCredentials,
    InvalidToken,
    Unauthorized,
)
from nunyalearn.backend.core.security import (
    burn_verify,
    hash_password,
    needs_rehash,
    verify_password,
)
from nunyalearn.backend.core.tokens import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    utcnow,
    verify,
)
from nunyalearn.backend.models.refresh_token import RefreshToken
from nunyalearn.backend.models.user import User

log = logging.getLogger(__name__)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class RefreshResult:
    access_token: str
    # set only when the refresh token was rotated
    refresh_token: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def issue_tokens_for_user(db: Session, user: User, *, family_id: str | None = None) -> TokenPair:
    """
    Mint an access/refresh pair and stage the refresh row on ``db``.

    Does not commit: the row lands in the caller's transaction.
    """
    access_token = create_access_token(user)
    refresh_token, _jti, exp, family_id = create_refresh_token(user.id, family_id)
    db.add(
        RefreshToken(
            token=refresh_token,
            user_id=user.id,
            family_id=family_id,
            expires_at=exp,
        )
    )
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


def sweep_expired_refresh_tokens(db: Session, user_id: int) -> int:
    now = utcnow()
    rows = db.exec(
        select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.expires_at <= now,
        )
    ).all()
    for row in rows:
        db.delete(row)
    return len(rows)


def register_user(
    db: Session, *, full_name: str, email: str, password: str
) -> Tuple[User, TokenPair]:
    email = normalize_email(email)

    # 해싱 전에 중복 확인
    existing = db.exec(select(User.id).where(User.email == email)).first()
    if existing is not None:
        raise DuplicateAccount()

    user = User(full_name=full_name, email=email, password_hash=hash_password(password))
    try:
        db.add(user)
        db.flush()
        pair = issue_tokens_for_user(db, user)
        db.commit()
    except IntegrityError as exc:
        # lost a race with a concurrent registration of the same email
        db.rollback()
        raise DuplicateAccount() from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    log.info("registered user_id=%s", user.id)
    return user, pair


def login_user(db: Session, *, email: str, password: str) -> Tuple[User, TokenPair]:
    email = normalize_email(email)
    user = db.exec(select(User).where(User.email == email)).first()
    if user is None:
        burn_verify(password)
        log.info("login failed: unknown email")
        raise InvalidCredentials()
    if not verify_password(user.password_hash, password):
        log.info("login failed: bad password user_id=%s", user.id)
        raise InvalidCredentials()

    try:
        swept = sweep_expired_refresh_tokens(db, user.id)
        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
            db.add(user)
        pair = issue_tokens_for_user(db, user)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    log.info("login user_id=%s swept_expired=%s", user.id, swept)
    return user, pair


def _revoke_family(db: Session, family_id: str) -> int:
    rows = db.exec(select(RefreshToken).where(RefreshToken.family_id == family_id)).all()
    for row in rows:
        db.delete(row)
    return len(rows)


def refresh_access_token(
    db: Session, refresh_token: str, *, rotate: bool | None = None
) -> RefreshResult:
    """
    Exchange a refresh token for a new access token.

    The signed claims and the persisted row are both checked: the codec alone
    cannot see logout or revoke-all.
    """
    if rotate is None:
        rotate = get_settings().refresh_token_rotation

    try:
        payload = verify(refresh_token, REFRESH)
    except InvalidToken as exc:
        log.debug("refresh rejected: codec failure")
        raise Unauthorized() from exc

    row = db.get(RefreshToken, refresh_token)
    if row is None:
        log.debug("refresh rejected: unknown or revoked token")
        raise Unauthorized()

    if str(row.user_id) != str(payload["sub"]) or row.expires_at <= utcnow():
        log.debug("refresh rejected: owner mismatch or expired row")
        raise Unauthorized()

    if row.replaced_by is not None:
        # A rotated-out token came back: treat the whole family as leaked.
        user_id, family_id = row.user_id, row.family_id
        try:
            revoked = _revoke_family(db, family_id)
            db.commit()
        except Exception:
            db.rollback()
            raise
        log.warning(
            "refresh token reuse user_id=%s family=%s revoked=%s",
            user_id,
            family_id,
            revoked,
        )
        raise Unauthorized()

    user = db.get(User, row.user_id)
    if user is None:
        raise Unauthorized()

    access_token = create_access_token(user)
    if not rotate:
        return RefreshResult(access_token=access_token)

    new_token, new_jti, exp, family_id = create_refresh_token(user.id, row.family_id)
    try:
        claimed = db.exec(
            update(RefreshToken)
            .where(RefreshToken.token == refresh_token, RefreshToken.replaced_by.is_(None))
            .values(replaced_by=new_jti)
        )
        if claimed.rowcount != 1:
            # a concurrent refresh rotated this token first
            db.rollback()
            raise Unauthorized()
        db.add(
            RefreshToken(
                token=new_token,
                user_id=user.id,
                family_id=family_id,
                expires_at=exp,
            )
        )
        db.commit()
    except Unauthorized:
        raise
    except Exception:
        db.rollback()
        raise

    log.info("rotated refresh token user_id=%s family=%s", user.id, family_id)
    return RefreshResult(access_token=access_token, refresh_token=new_token)
