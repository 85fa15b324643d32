"""Centralized SQLModel imports to ensure metadata is populated."""

from nunyalearn.backend.models import user as _user  # noqa: F401
from nunyalearn.backend.models import refresh_token as _refresh_token  # noqa: F401
from nunyalearn.backend.models import password_reset as _password_reset  # noqa: F401
