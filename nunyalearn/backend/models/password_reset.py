from datetime import datetime

from sqlmodel import SQLModel, Field

from nunyalearn.backend.core.tokens import utcnow
from nunyalearn.db.types import utc_column


class PasswordReset(SQLModel, table=True):
    token: str = Field(primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id", ondelete="CASCADE")
    expires_at: datetime = Field(sa_column=utc_column())
    used: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
