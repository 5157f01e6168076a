from typing import AsyncGenerator

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer
from job_runner_server import JobRunnerServer

from career_job_client.models import StatusPollingConfig
from career_job_client.settings import RunnerSettings

API_KEY = "test-signing-key"


@pytest_asyncio.fixture
async def start_runner() -> AsyncGenerator:
    """Factory starting scripted JobRunnerServer instances on random ports."""
    servers = []

    async def _start(**kwargs):
        kwargs.setdefault("api_key", API_KEY)
        runner = JobRunnerServer(**kwargs)
        test_server = TestServer(runner.app)
        await test_server.start_server()
        servers.append(test_server)

        base_url = str(test_server.make_url("")).rstrip("/")
        settings = RunnerSettings(
            event_api_url=base_url,
            api_host=base_url,
            event_key="test",
            api_key=API_KEY,
            request_timeout=5.0,
        )
        return runner, settings

    try:
        yield _start
    finally:
        for test_server in servers:
            await test_server.close()


@pytest.fixture
def config() -> StatusPollingConfig:
    """Provide a fast polling configuration."""
    return StatusPollingConfig(
        initial_delay=0.01,
        max_delay=0.05,
        backoff_factor=2.0,
        max_attempts=10,
        timeout=5.0,
        jitter=False,
    )
