from typing import Optional

from pydantic import BaseModel, Field

from nunyalearn.backend.models.user import Role

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    full_name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ResetRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class CompleteResetRequest(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class UserOut(BaseModel):
    id: int
    full_name: str
    email: str
    role: Role
    level: int
    xp_total: int
    is_premium: bool

    @classmethod
    def from_user(cls, user) -> "UserOut":
        return cls(
            id=user.id,
            full_name=user.full_name,
            email=user.email,
            role=user.role,
            level=user.level,
            xp_total=user.xp_total,
            is_premium=user.is_premium,
        )


class AuthData(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthResponse(BaseModel):
    success: bool = True
    data: AuthData


class ProfileData(BaseModel):
    user: UserOut


class ProfileResponse(BaseModel):
    success: bool = True
    data: ProfileData


class RefreshData(BaseModel):
    access_token: str
    # only set when refresh-token rotation is enabled
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


class RefreshResponse(BaseModel):
    success: bool = True
    data: RefreshData


class ResetData(BaseModel):
    reset_token: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
    data: Optional[ResetData] = None
