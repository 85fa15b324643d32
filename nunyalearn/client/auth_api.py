from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from nunyalearn.client.session import SessionClient, unwrap

log = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _raise_for_error(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        body = None
    if response.is_success:
        return unwrap(body)
    message = body.get("message") if isinstance(body, dict) else None
    raise ApiError(response.status_code, message or response.reason_phrase)


class AuthApi:
    """Client side of the /auth endpoints, bound to one SessionClient."""

    # clear credentials after this many profile failures in a row
    MAX_PROFILE_ERRORS = 2

    def __init__(self, client: SessionClient):
        self.client = client
        self.user: Optional[dict] = None
        self._profile_errors = 0

    async def _authenticate(self, path: str, payload: dict) -> dict:
        try:
            data = _raise_for_error(
                await self.client.post(path, json=payload, refresh_on_401=False)
            )
            self.client.set_tokens(data.get("access_token"), data.get("refresh_token"))
        except (ApiError, httpx.HTTPError):
            self.client.clear_tokens()
            self.user = None
            raise
        self.user = data.get("user")
        return data

    async def register(self, full_name: str, email: str, password: str) -> dict:
        return await self._authenticate(
            "/auth/register",
            {"full_name": full_name, "email": email, "password": password},
        )

    async def login(self, email: str, password: str) -> dict:
        return await self._authenticate("/auth/login", {"email": email, "password": password})

    async def profile(self) -> dict:
        data = _raise_for_error(await self.client.get("/auth/profile"))
        return data.get("user", data)

    async def refresh_profile(self) -> dict:
        try:
            user = await self.profile()
        except (ApiError, httpx.HTTPError):
            self._profile_errors += 1
            if self._profile_errors >= self.MAX_PROFILE_ERRORS:
                log.info("profile failed %s times in a row; clearing session", self._profile_errors)
                self.client.clear_tokens()
                self.user = None
            raise
        self._profile_errors = 0
        self.user = user
        return user

    async def bootstrap(self) -> Optional[dict]:
        """Restore stored credentials and confirm them against the profile endpoint."""
        stored = self.client.load_tokens()
        if not (stored.access_token and stored.refresh_token):
            return None
        try:
            return await self.refresh_profile()
        except (ApiError, httpx.HTTPError) as exc:
            log.info("stored session rejected: %s", exc)
            self.client.clear_tokens()
            self.user = None
            return None

    async def logout(self) -> None:
        """Revoke the refresh token server-side when possible; local state is cleared regardless."""
        refresh_token = self.client.state.refresh_token
        try:
            if refresh_token and self.client.state.access_token:
                _raise_for_error(
                    await self.client.post("/auth/logout", json={"refresh_token": refresh_token})
                )
        except (ApiError, httpx.HTTPError) as exc:
            log.warning("server-side logout failed: %s", exc)
        finally:
            self.client.clear_tokens()
            self.user = None

    async def request_password_reset(self, email: str) -> Optional[str]:
        data = _raise_for_error(
            await self.client.post(
                "/auth/request-reset", json={"email": email}, refresh_on_401=False
            )
        )
        if isinstance(data, dict):
            return data.get("reset_token")
        return None

    async def complete_password_reset(self, token: str, new_password: str) -> None:
        _raise_for_error(
            await self.client.post(
                "/auth/reset",
                json={"token": token, "new_password": new_password},
                refresh_on_401=False,
            )
        )
