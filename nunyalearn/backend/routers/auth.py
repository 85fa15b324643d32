from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from nunyalearn.backend.core.config import get_settings
from nunyalearn.backend.core.errors import Unauthorized
from nunyalearn.backend.dependencies.auth import CurrentUser, get_current_user
from nunyalearn.backend.models.user import User
from nunyalearn.backend.schemas.auth import (
    AuthData,
    AuthResponse,
    CompleteResetRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ProfileData,
    ProfileResponse,
    RefreshData,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetData,
    ResetRequest,
    UserOut,
)
from nunyalearn.backend.services import auth_service, revocation
from nunyalearn.db.session import get_session

auth_router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(user: User, pair: auth_service.TokenPair) -> AuthResponse:
    return AuthResponse(
        data=AuthData(
            user=UserOut.from_user(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )
    )


@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_session)):
    user, pair = auth_service.register_user(
        db, full_name=body.full_name, email=body.email, password=body.password
    )
    return _auth_response(user, pair)


@auth_router.post("/login", response_model=AuthResponse)
def login(body: LoginRequest, db: Session = Depends(get_session)):
    user, pair = auth_service.login_user(db, email=body.email, password=body.password)
    return _auth_response(user, pair)


@auth_router.get("/profile", response_model=ProfileResponse)
def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    user = db.get(User, current_user.id)
    if user is None:
        raise Unauthorized()
    return ProfileResponse(data=ProfileData(user=UserOut.from_user(user)))


@auth_router.post("/refresh", response_model=RefreshResponse)
def refresh(body: RefreshRequest, db: Session = Depends(get_session)):
    """
    Exchange a refresh token for a new access token.
    With REFRESH_TOKEN_ROTATION on, a replacement refresh token comes back too.
    """
    result = auth_service.refresh_access_token(db, body.refresh_token)
    return RefreshResponse(
        data=RefreshData(access_token=result.access_token, refresh_token=result.refresh_token)
    )


@auth_router.post("/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    revocation.logout(db, body.refresh_token, current_user.id)
    return MessageResponse(message="Logged out")


@auth_router.post("/request-reset", response_model=MessageResponse)
def request_reset(body: ResetRequest, db: Session = Depends(get_session)):
    token = revocation.request_password_reset(db, body.email)
    message = "If the account exists, a reset link has been sent"
    # TODO: hand the token to the notification service once it has an email channel
    if get_settings().password_reset_expose_token:
        return MessageResponse(message=message, data=ResetData(reset_token=token))
    return MessageResponse(message=message)


@auth_router.post("/reset", response_model=MessageResponse)
def reset(body: CompleteResetRequest, db: Session = Depends(get_session)):
    revocation.complete_password_reset(db, body.token, body.new_password)
    return MessageResponse(message="Password updated")
