from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from nunyalearn.client.storage import MemoryTokenStorage, StoredTokens, TokenStorage

log = logging.getLogger(__name__)

LogoutHandler = Callable[[], Union[None, Awaitable[None]]]

REFRESH_PATH = "/auth/refresh"


class RefreshFailed(Exception):
    pass


@dataclass
class SessionState:
    """
    Credentials and the refresh slot of one client.

    ``generation`` changes whenever the pair is replaced or cleared; a refresh
    that settles under an older generation is discarded.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    refresh_task: Optional["asyncio.Task[Optional[str]]"] = None
    generation: int = 0


def unwrap(body: Any) -> Any:
    """Strip the ``{"success": ..., "data": ...}`` envelope when present."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class SessionClient:
    """
    httpx.AsyncClient wrapper that carries the bearer token and recovers from
    401 with a single shared refresh.
    """

    def __init__(
        self,
        base_url: str,
        *,
        storage: TokenStorage | None = None,
        on_logout: LogoutHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        refresh_path: str = REFRESH_PATH,
    ):
        self.state = SessionState()
        self.storage = storage or MemoryTokenStorage()
        self._on_logout = on_logout
        self._refresh_path = refresh_path
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ---- credentials ----
    def set_logout_handler(self, handler: LogoutHandler | None) -> None:
        self._on_logout = handler

    def set_tokens(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        self.state.access_token = access_token or None
        self.state.refresh_token = refresh_token or None
        self.state.generation += 1
        self.storage.save(StoredTokens(self.state.access_token, self.state.refresh_token))

    def clear_tokens(self) -> None:
        self.state.access_token = None
        self.state.refresh_token = None
        self.state.generation += 1
        self.storage.clear()

    def load_tokens(self) -> StoredTokens:
        stored = self.storage.load()
        self.state.access_token = stored.access_token
        self.state.refresh_token = stored.refresh_token
        self.state.generation += 1
        return stored

    # ---- requests ----
    async def _send(self, method: str, url: str, kwargs: dict, token: Optional[str]) -> httpx.Response:
        request = self._http.build_request(method, url, **kwargs)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        return await self._http.send(request)

    async def request(
        self, method: str, url: str, *, refresh_on_401: bool = True, **kwargs: Any
    ) -> httpx.Response:
        sent_with = self.state.access_token
        response = await self._send(method, url, kwargs, sent_with)
        if not refresh_on_401 or response.status_code != 401 or not self.state.refresh_token:
            return response

        if self.state.access_token and self.state.access_token != sent_with:
            # a refresh finished while this request was on the wire
            new_token = self.state.access_token
        else:
            new_token = await self.refresh_access_token()
        if not new_token:
            return response

        # The retry is final: its own 401 is handed back as-is.
        await response.aclose()
        return await self._send(method, url, kwargs, new_token)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    # ---- single-flight refresh ----
    async def refresh_access_token(self) -> Optional[str]:
        """
        Join the in-flight refresh, starting one if none is running.

        Returns the new access token, or None when the refresh failed or its
        result was discarded.
        """
        if not self.state.refresh_token:
            return None
        task = self.state.refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_refresh())
            self.state.refresh_task = task
        # a cancelled waiter must not cancel the refresh everyone else waits on
        return await asyncio.shield(task)

    async def _run_refresh(self) -> Optional[str]:
        generation = self.state.generation
        refresh_token = self.state.refresh_token
        try:
            try:
                response = await self._http.post(
                    self._refresh_path, json={"refresh_token": refresh_token}
                )
                if response.status_code != 200:
                    raise RefreshFailed(f"refresh returned {response.status_code}")
                data = unwrap(response.json())
                access_token = data.get("access_token") if isinstance(data, dict) else None
                if not access_token:
                    raise RefreshFailed("refresh response carried no access token")
            except (httpx.HTTPError, ValueError, RefreshFailed) as exc:
                log.warning("token refresh failed: %s", exc)
                if self.state.generation == generation:
                    self.clear_tokens()
                    await self._notify_logout()
                return None

            if self.state.generation != generation:
                log.info("discarding refresh result: credentials changed while in flight")
                return None

            self.set_tokens(access_token, data.get("refresh_token") or refresh_token)
            return access_token
        finally:
            self.state.refresh_task = None

    async def _notify_logout(self) -> None:
        if self._on_logout is None:
            return
        result = self._on_logout()
        if inspect.isawaitable(result):
            await result
