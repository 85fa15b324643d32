from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from nunyalearn.backend.core.tokens import utcnow
from nunyalearn.db.types import utc_column


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: Role = Field(default=Role.USER)
    is_premium: bool = False
    level: int = 1
    xp_total: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    __tablename__ = "user"
