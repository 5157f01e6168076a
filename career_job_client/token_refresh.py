import asyncio
from typing import Awaitable, Callable, List, Optional

import aiohttp
from loguru import logger

from career_job_client.errors import TokenRefreshError

RefreshFn = Callable[[], Awaitable[str]]


class RefreshCoordinator:
    """Single-flight access token refresh shared by every request of one process.

    The first caller that needs a new token starts the refresh; callers arriving
    while it runs only queue a future. When the refresh settles, the waiter list
    is swapped out and every queued future gets the same token or error.
    """

    def __init__(self, refresh: RefreshFn, access_token: Optional[str] = None):
        self._refresh = refresh
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None
        self.access_token = access_token
        self.logger = logger

    @property
    def refreshing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def refreshed_token(self) -> str:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        if not self.refreshing:
            self.logger.debug("Starting access token refresh")
            self._task = asyncio.create_task(self._run_refresh())
        return await waiter

    async def _run_refresh(self) -> None:
        try:
            token = await self._refresh()
        except asyncio.CancelledError:
            self._drain(error=TokenRefreshError("Token refresh was cancelled"))
            raise
        except Exception as e:
            self.logger.warning(f"Access token refresh failed: {e!r}")
            self._drain(error=e)
        else:
            self.access_token = token
            self.logger.debug(f"Access token refreshed for {len(self._waiters)} waiters")
            self._drain(token=token)

    def _drain(
        self, token: Optional[str] = None, error: Optional[BaseException] = None
    ) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)


class AuthenticatedSession:
    """Sends bearer-authenticated requests and replays a request once after a 401"""

    def __init__(self, session: aiohttp.ClientSession, coordinator: RefreshCoordinator):
        self.session = session
        self.coordinator = coordinator
        self.logger = logger

    def _headers(self, headers: Optional[dict]) -> dict:
        merged = dict(headers or {})
        if self.coordinator.access_token:
            merged["Authorization"] = f"Bearer {self.coordinator.access_token}"
        return merged

    async def request(self, method: str, url: str, **kwargs) -> aiohttp.ClientResponse:
        headers = kwargs.pop("headers", None)
        response = await self.session.request(
            method, url, headers=self._headers(headers), **kwargs
        )
        if response.status != 401:
            return response

        response.release()
        self.logger.debug(f"{method} {url} returned 401, waiting for a fresh token")
        token = await self.coordinator.refreshed_token()
        retry_headers = dict(headers or {})
        retry_headers["Authorization"] = f"Bearer {token}"
        return await self.session.request(method, url, headers=retry_headers, **kwargs)

    async def get(self, url: str, **kwargs) -> aiohttp.ClientResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> aiohttp.ClientResponse:
        return await self.request("POST", url, **kwargs)


def cookie_refresh(
    session: aiohttp.ClientSession, url: str, cookie_name: str = "token"
) -> RefreshFn:
    """Build a refresh callable that reads the new access token from a response cookie"""

    async def refresh() -> str:
        try:
            async with session.post(url) as response:
                response.raise_for_status()
                cookie = response.cookies.get(cookie_name)
        except aiohttp.ClientError as e:
            raise TokenRefreshError(f"Refresh request to {url} failed: {e!r}") from e

        if cookie is None or not cookie.value:
            raise TokenRefreshError(
                f"Refresh endpoint succeeded but set no {cookie_name!r} cookie"
            )
        return cookie.value

    return refresh
