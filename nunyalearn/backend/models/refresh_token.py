from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from nunyalearn.backend.core.tokens import utcnow
from nunyalearn.db.types import utc_column


class RefreshToken(SQLModel, table=True):
    """
    Persisted refresh token. The row existing is what keeps the token usable.
    - token: the signed token string itself
    - family_id: shared by every token rotated out of one login
    - replaced_by: jti of the successor (rotation mode only)
    """
    token: str = Field(primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id", ondelete="CASCADE")
    family_id: str = Field(index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    expires_at: datetime = Field(sa_column=utc_column())
    replaced_by: Optional[str] = None
