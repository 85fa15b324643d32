import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from nunyalearn.backend.core import tokens
from nunyalearn.client.auth_api import ApiError, AuthApi
from nunyalearn.client.session import SessionClient
from nunyalearn.client.storage import FileTokenStorage, MemoryTokenStorage, StoredTokens

BASE_URL = "http://testserver"


def _bearer_of(request):
    header = request.headers.get("authorization", "")
    return header.removeprefix("Bearer ") or None


def _ok(data):
    return httpx.Response(200, json={"success": True, "data": data})


def _unauthorized():
    return httpx.Response(401, json={"success": False, "message": "Unauthorized"})


class FakeBackend:
    """Accepts only ``valid_token`` on /data; /auth/refresh is scripted per test."""

    def __init__(self, *, valid_token="new", refresh_status=200, stale_batch=1):
        self.valid_token = valid_token
        self.refresh_status = refresh_status
        self.refresh_calls = 0
        self.data_calls = []
        self.refresh_gate = None
        self.refresh_entered = asyncio.Event()
        # 401s for stale tokens are held until this many have arrived
        self.stale_batch = stale_batch
        self._stale_seen = 0
        self._stale_release = asyncio.Event()

    async def __call__(self, request):
        if request.url.path == "/auth/refresh":
            self.refresh_calls += 1
            self.refresh_entered.set()
            if self.refresh_gate is not None:
                await self.refresh_gate.wait()
            await asyncio.sleep(0)
            if self.refresh_status != 200:
                return _unauthorized()
            body = json.loads(request.content)
            assert body == {"refresh_token": "r1"}
            return _ok({"access_token": self.valid_token, "refresh_token": None})

        token = _bearer_of(request)
        self.data_calls.append(token)
        if token == self.valid_token:
            return _ok({"token": token})
        self._stale_seen += 1
        if self._stale_seen >= self.stale_batch:
            self._stale_release.set()
        await self._stale_release.wait()
        return _unauthorized()


def _client(backend, **kwargs):
    return SessionClient(BASE_URL, transport=httpx.MockTransport(backend), **kwargs)


async def test_concurrent_401s_share_one_refresh():
    n = 5
    backend = FakeBackend(stale_batch=n)
    logouts = []
    async with _client(backend, on_logout=lambda: logouts.append(1)) as client:
        client.set_tokens("old", "r1")

        responses = await asyncio.gather(*(client.get("/data") for _ in range(n)))

        assert [r.status_code for r in responses] == [200] * n
        assert backend.refresh_calls == 1
        assert backend.data_calls.count("old") == n
        assert backend.data_calls.count("new") == n
        assert client.state.access_token == "new"
        assert client.state.refresh_token == "r1"
        assert client.state.refresh_task is None
        assert logouts == []


async def test_failed_refresh_logs_out_once_and_returns_original_401():
    n = 3
    backend = FakeBackend(refresh_status=401, stale_batch=n)
    storage = MemoryTokenStorage()
    logouts = []
    async with _client(backend, storage=storage, on_logout=lambda: logouts.append(1)) as client:
        client.set_tokens("old", "r1")

        responses = await asyncio.gather(*(client.get("/data") for _ in range(n)))

        assert [r.status_code for r in responses] == [401] * n
        assert backend.refresh_calls == 1
        assert logouts == [1]
        assert client.state.access_token is None
        assert client.state.refresh_token is None
        assert storage.load() == StoredTokens()


async def test_async_logout_handler_is_awaited():
    backend = FakeBackend(refresh_status=401)
    called = asyncio.Event()

    async def on_logout():
        called.set()

    async with _client(backend, on_logout=on_logout) as client:
        client.set_tokens("old", "r1")
        await client.get("/data")

    assert called.is_set()


async def test_retry_is_final():
    refresh_calls = []
    data_calls = []

    def handler(request):
        if request.url.path == "/auth/refresh":
            refresh_calls.append(1)
            # a token /data still refuses
            return _ok({"access_token": "also-stale"})
        data_calls.append(_bearer_of(request))
        return _unauthorized()

    async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
        client.set_tokens("old", "r1")

        response = await client.get("/data")

    assert response.status_code == 401
    assert refresh_calls == [1]
    assert data_calls == ["old", "also-stale"]


async def test_no_refresh_without_refresh_token():
    backend = FakeBackend()
    async with _client(backend) as client:
        client.set_tokens("old", None)

        response = await client.get("/data")

    assert response.status_code == 401
    assert backend.refresh_calls == 0


async def test_refresh_on_401_can_be_switched_off():
    backend = FakeBackend()
    async with _client(backend) as client:
        client.set_tokens("old", "r1")

        response = await client.get("/data", refresh_on_401=False)

    assert response.status_code == 401
    assert backend.refresh_calls == 0
    assert client.state.access_token == "old"


async def test_no_authorization_header_without_token():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return _ok({})

    async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
        await client.get("/open")

    assert seen == [None]


async def test_refresh_result_discarded_when_tokens_change_in_flight():
    backend = FakeBackend()
    backend.refresh_gate = asyncio.Event()
    logouts = []
    async with _client(backend, on_logout=lambda: logouts.append(1)) as client:
        client.set_tokens("old", "r1")

        pending = asyncio.ensure_future(client.refresh_access_token())
        await backend.refresh_entered.wait()
        # user logs in again while the old refresh is on the wire
        client.set_tokens("fresh", "r2")
        backend.refresh_gate.set()

        assert await pending is None

    assert client.state.access_token == "fresh"
    assert client.state.refresh_token == "r2"
    assert logouts == []


async def test_failed_refresh_after_logout_does_not_notify():
    backend = FakeBackend(refresh_status=401)
    backend.refresh_gate = asyncio.Event()
    logouts = []
    async with _client(backend, on_logout=lambda: logouts.append(1)) as client:
        client.set_tokens("old", "r1")

        pending = asyncio.ensure_future(client.refresh_access_token())
        await backend.refresh_entered.wait()
        client.clear_tokens()
        backend.refresh_gate.set()

        assert await pending is None

    assert logouts == []


async def test_cancelled_waiter_does_not_cancel_shared_refresh():
    backend = FakeBackend()
    backend.refresh_gate = asyncio.Event()
    async with _client(backend) as client:
        client.set_tokens("old", "r1")

        first = asyncio.ensure_future(client.refresh_access_token())
        await backend.refresh_entered.wait()
        second = asyncio.ensure_future(client.refresh_access_token())
        await asyncio.sleep(0)
        first.cancel()
        backend.refresh_gate.set()

        assert await second == "new"
        with pytest.raises(asyncio.CancelledError):
            await first

    assert backend.refresh_calls == 1


# ---- storage ----
def test_file_storage_round_trip(tmp_path):
    storage = FileTokenStorage(tmp_path / "session" / "tokens.json")

    storage.save(StoredTokens("a1", "r1"))

    assert FileTokenStorage(storage.path).load() == StoredTokens("a1", "r1")


def test_file_storage_saving_empty_pair_clears(tmp_path):
    storage = FileTokenStorage(tmp_path / "tokens.json")
    storage.save(StoredTokens("a1", "r1"))

    storage.save(StoredTokens())

    assert not storage.path.exists()
    assert storage.load() == StoredTokens()


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_file_storage_discards_corrupt_file(tmp_path, content):
    path = tmp_path / "tokens.json"
    path.write_text(content, encoding="utf-8")

    assert FileTokenStorage(path).load() == StoredTokens()
    assert not path.exists()


def test_file_storage_clear_when_missing(tmp_path):
    FileTokenStorage(tmp_path / "missing.json").clear()


async def test_client_mirrors_tokens_to_storage(tmp_path):
    storage = FileTokenStorage(tmp_path / "tokens.json")
    async with SessionClient(BASE_URL, storage=storage, transport=httpx.MockTransport(lambda r: _ok({}))) as client:
        client.set_tokens("a1", "r1")
        assert storage.load() == StoredTokens("a1", "r1")

        client.clear_tokens()
        assert storage.load() == StoredTokens()


# ---- AuthApi against the real app ----
ALICE = ("Alice", "alice@example.com", "Password1")


def _asgi_client(app, **kwargs):
    return SessionClient(BASE_URL, transport=httpx.ASGITransport(app=app), **kwargs)


async def test_expired_access_token_is_refreshed_transparently(app):
    async with _asgi_client(app) as client:
        api = AuthApi(client)
        data = await api.register(*ALICE)
        user_id = data["user"]["id"]
        refresh_token = client.state.refresh_token

        client.state.access_token = tokens.sign(
            {"sub": str(user_id), "email": ALICE[1], "role": "USER"},
            tokens.ACCESS,
            expires_in=timedelta(seconds=-5),
        )

        user = await api.refresh_profile()

        assert user["id"] == user_id
        assert client.state.refresh_token == refresh_token
        assert tokens.verify(client.state.access_token, tokens.ACCESS)["sub"] == str(user_id)


async def test_login_failure_does_not_trigger_refresh_and_clears_session(app):
    async with _asgi_client(app) as client:
        api = AuthApi(client)
        await api.register(*ALICE)

        with pytest.raises(ApiError) as excinfo:
            await api.login(ALICE[1], "WrongPass1")

        assert excinfo.value.status_code == 401
        assert excinfo.value.message == "Invalid credentials"
        assert client.state.access_token is None
        assert api.user is None


async def test_bootstrap_restores_stored_session(app):
    storage = MemoryTokenStorage()
    async with _asgi_client(app, storage=storage) as client:
        await AuthApi(client).register(*ALICE)

    async with _asgi_client(app, storage=storage) as client:
        api = AuthApi(client)
        user = await api.bootstrap()

    assert user["email"] == ALICE[1]
    assert api.user == user


async def test_bootstrap_with_rejected_tokens_logs_out(app):
    storage = MemoryTokenStorage(StoredTokens("bogus-access", "bogus-refresh"))
    logouts = []
    async with _asgi_client(app, storage=storage, on_logout=lambda: logouts.append(1)) as client:
        api = AuthApi(client)

        assert await api.bootstrap() is None

    assert logouts == [1]
    assert storage.load() == StoredTokens()


async def test_bootstrap_without_stored_tokens_skips_network():
    def handler(request):
        raise AssertionError("no request expected")

    async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
        assert await AuthApi(client).bootstrap() is None


async def test_profile_errors_clear_session_after_two_in_a_row():
    def handler(request):
        return httpx.Response(500, json={"success": False, "message": "Internal server error"})

    async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
        client.set_tokens("a1", "r1")
        api = AuthApi(client)

        with pytest.raises(ApiError):
            await api.refresh_profile()
        assert client.state.access_token == "a1"

        with pytest.raises(ApiError):
            await api.refresh_profile()
        assert client.state.access_token is None


async def test_logout_revokes_server_side(app):
    async with _asgi_client(app) as client:
        api = AuthApi(client)
        await api.register(*ALICE)
        refresh_token = client.state.refresh_token

        await api.logout()

        assert client.state.access_token is None
        response = await client.post(
            "/auth/refresh", json={"refresh_token": refresh_token}, refresh_on_401=False
        )
        assert response.status_code == 401


async def test_logout_clears_locally_when_server_unreachable():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
        client.set_tokens("a1", "r1")
        api = AuthApi(client)

        await api.logout()

    assert client.state.access_token is None
    assert client.state.refresh_token is None


async def test_password_reset_round_trip(app, monkeypatch):
    monkeypatch.setenv("PASSWORD_RESET_EXPOSE_TOKEN", "true")
    tokens.get_settings.cache_clear()
    async with _asgi_client(app) as client:
        api = AuthApi(client)
        await api.register(*ALICE)

        reset_token = await api.request_password_reset(ALICE[1])
        await api.complete_password_reset(reset_token, "NewPassword1")

        with pytest.raises(ApiError):
            await api.complete_password_reset(reset_token, "Another1")
        await api.login(ALICE[1], "NewPassword1")
        assert api.user["email"] == ALICE[1]
