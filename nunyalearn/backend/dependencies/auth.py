import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from nunyalearn.backend.core.errors import Forbidden, InvalidToken, Unauthorized
from nunyalearn.backend.core.tokens import ACCESS, verify
from nunyalearn.backend.models.user import Role, User
from nunyalearn.db.session import get_session

log = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    full_name: str
    role: Role
    is_premium: bool
    level: int


def _extract_bearer(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    # HTTPBearer hides the reason; log the shape of what arrived
    header = request.headers.get("authorization")
    log.debug("auth rejected: %s", "header missing" if not header else "header malformed")
    raise Unauthorized()


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_session),
) -> CurrentUser:
    """
    Strict auth dependency: access token in, identity out.

    The user row is re-read on every request so role and flag changes apply
    before the access token expires.
    """
    token = _extract_bearer(request, credentials)
    try:
        payload = verify(token, ACCESS)
    except InvalidToken as exc:
        raise Unauthorized() from exc

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise Unauthorized() from exc

    user = db.get(User, user_id)
    if user is None:
        log.debug("auth rejected: user_id=%s no longer exists", user_id)
        raise Unauthorized()

    current = CurrentUser(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        is_premium=user.is_premium,
        level=user.level,
    )
    request.state.user = current
    return current


def require_role(*roles: Role):
    """Dependency factory: 403 unless the caller holds one of ``roles``."""

    def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise Forbidden()
        return user

    return _check
