import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from career_job_client.errors import TokenRefreshError
from career_job_client.token_refresh import (
    AuthenticatedSession,
    RefreshCoordinator,
    cookie_refresh,
)


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    calls = 0
    release = asyncio.Event()

    async def refresh():
        nonlocal calls
        calls += 1
        await release.wait()
        return "fresh-token"

    coordinator = RefreshCoordinator(refresh)
    waiters = [asyncio.create_task(coordinator.refreshed_token()) for _ in range(5)]
    await asyncio.sleep(0)

    assert coordinator.refreshing
    assert coordinator.pending == 5

    release.set()
    tokens = await asyncio.gather(*waiters)

    assert tokens == ["fresh-token"] * 5
    assert calls == 1
    assert coordinator.pending == 0
    assert coordinator.access_token == "fresh-token"


@pytest.mark.asyncio
async def test_refresh_failure_rejects_every_waiter():
    calls = 0

    async def refresh():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        raise TokenRefreshError("refresh token revoked")

    coordinator = RefreshCoordinator(refresh, access_token="stale")
    results = await asyncio.gather(
        *[coordinator.refreshed_token() for _ in range(3)], return_exceptions=True
    )

    assert all(isinstance(result, TokenRefreshError) for result in results)
    assert calls == 1
    assert coordinator.pending == 0
    assert not coordinator.refreshing
    assert coordinator.access_token == "stale"

    with pytest.raises(TokenRefreshError):
        await coordinator.refreshed_token()
    assert calls == 2


class ProtectedApi:
    def __init__(self):
        self.refresh_calls = 0
        self.app = web.Application()
        self.app.router.add_get("/api/user-info", self.handle_user_info)
        self.app.router.add_post("/api/auth/refresh-token", self.handle_refresh)

    async def handle_user_info(self, request):
        if request.headers.get("Authorization") != "Bearer fresh-token":
            return web.json_response({"message": "expired"}, status=401)
        return web.json_response({"email": "jane@example.com"})

    async def handle_refresh(self, request):
        self.refresh_calls += 1
        await asyncio.sleep(0.05)
        response = web.json_response({"success": True})
        response.set_cookie("token", "fresh-token", httponly=True)
        return response


@pytest_asyncio.fixture
async def protected_api():
    api = ProtectedApi()
    server = TestServer(api.app)
    await server.start_server()
    try:
        yield api, server
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_expired_requests_retry_after_single_refresh(protected_api):
    api, server = protected_api

    async with aiohttp.ClientSession() as session:
        refresh = cookie_refresh(session, str(server.make_url("/api/auth/refresh-token")))
        authed = AuthenticatedSession(
            session, RefreshCoordinator(refresh, access_token="expired-token")
        )

        async def fetch():
            response = await authed.get(str(server.make_url("/api/user-info")))
            async with response:
                return response.status, await response.json()

        results = await asyncio.gather(*[fetch() for _ in range(4)])

    assert results == [(200, {"email": "jane@example.com"})] * 4
    assert api.refresh_calls == 1


@pytest.mark.asyncio
async def test_cookie_refresh_without_cookie():
    app = web.Application()

    async def handle_refresh(request):
        return web.json_response({"success": True})

    app.router.add_post("/refresh", handle_refresh)
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            refresh = cookie_refresh(session, str(server.make_url("/refresh")))
            with pytest.raises(TokenRefreshError):
                await refresh()
    finally:
        await server.close()
