from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple
from uuid import uuid4

from jose import JWTError, jwt

from nunyalearn.backend.core.config import get_settings
from nunyalearn.backend.core.errors import InvalidToken

ACCESS = "access"
REFRESH = "refresh"
TOKEN_CLASSES = (ACCESS, REFRESH)


# ---- 공통 ----
def utcnow() -> datetime:
    """Aware UTC now; every persisted timestamp uses this."""
    return datetime.now(tz=timezone.utc)


def _secret_for(token_class: str) -> str:
    settings = get_settings()
    if token_class == ACCESS:
        return settings.jwt_secret_key
    if token_class == REFRESH:
        return settings.jwt_refresh_secret
    raise ValueError(f"unknown token class: {token_class!r}")


def _default_ttl(token_class: str) -> timedelta:
    settings = get_settings()
    if token_class == ACCESS:
        return timedelta(minutes=settings.access_token_expire_minutes)
    return timedelta(days=settings.refresh_token_expire_days)


def sign(
    claims: Dict[str, Any],
    token_class: str,
    expires_in: timedelta | None = None,
) -> str:
    """Sign ``claims`` as a token of ``token_class`` ("access" or "refresh")."""
    secret = _secret_for(token_class)
    now = datetime.now(tz=timezone.utc)
    exp = now + (expires_in if expires_in is not None else _default_ttl(token_class))
    to_encode = claims.copy()
    to_encode["typ"] = token_class
    to_encode.setdefault("jti", uuid4().hex)
    to_encode["iat"] = int(now.timestamp())
    to_encode["exp"] = int(exp.timestamp())
    return jwt.encode(to_encode, secret, algorithm=get_settings().jwt_algorithm)


def verify(token: str, expected_class: str) -> Dict[str, Any]:
    """
    Return the claims of ``token`` or raise InvalidToken.

    Bad signature, expiry, malformed input and a class tag other than
    ``expected_class`` are all the same failure.
    """
    secret = _secret_for(expected_class)
    if not token or not isinstance(token, str):
        raise InvalidToken()
    try:
        payload = jwt.decode(token, secret, algorithms=[get_settings().jwt_algorithm])
    except JWTError as exc:
        raise InvalidToken() from exc
    if payload.get("typ") != expected_class:
        raise InvalidToken()
    for k in ("sub", "exp"):
        if k not in payload:
            raise InvalidToken()
    return payload


def expires_at(payload: Dict[str, Any]) -> datetime:
    return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


# ---- Access Token ----
def create_access_token(user) -> str:
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value if hasattr(user.role, "value") else str(user.role),
    }
    return sign(payload, ACCESS)


# ---- Refresh Token ----
def new_family_id() -> str:
    return uuid4().hex


def create_refresh_token(user_id: int, family_id: str | None = None) -> Tuple[str, str, datetime, str]:
    """Return ``(token, jti, expires_at, family_id)``."""
    family_id = family_id or new_family_id()
    jti = uuid4().hex
    token = sign({"sub": str(user_id), "jti": jti, "fam": family_id}, REFRESH)
    # row expiry mirrors the signed exp claim exactly
    exp = expires_at(jwt.get_unverified_claims(token))
    return token, jti, exp, family_id


# ---- Password reset ----
def new_reset_token() -> str:
    return secrets.token_hex(32)


def reset_token_expiry() -> datetime:
    return utcnow() + timedelta(minutes=get_settings().password_reset_expire_minutes)
