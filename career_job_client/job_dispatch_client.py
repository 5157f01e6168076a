import asyncio
import inspect
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional, Union

import aiohttp
from loguru import logger
from pydantic import ValidationError

from career_job_client.errors import (
    DispatchError,
    JobCancelledError,
    JobFailedError,
    MissingOutputError,
    PollTimeoutError,
    UpstreamError,
)
from career_job_client.jobs import JobPayload, JobType, event_data, polling_config_for
from career_job_client.models import (
    JobRun,
    JobStatus,
    JobSubmission,
    PollAttempt,
    StatusPollingConfig,
)
from career_job_client.settings import RunnerSettings


class JobDispatchClient:
    def __init__(
        self,
        settings: RunnerSettings,
        config: Optional[StatusPollingConfig] = None,
        on_status_change: Optional[Callable[[PollAttempt], Any]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings
        self.event_api_url = settings.event_api_url.rstrip("/")
        self.api_host = settings.api_host.rstrip("/")
        self.config = config
        self.on_status_change = on_status_change
        self.logger = logger
        self._session = session

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        """Yield the shared session if one was given, otherwise a short-lived one"""
        if self._session is not None:
            yield self._session
            return
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield session

    def _auth_headers(self) -> dict:
        if not self.settings.api_key:
            return {}
        return {"Authorization": f"Bearer {self.settings.api_key}"}

    async def _send_event_once(
        self, session: aiohttp.ClientSession, submission: JobSubmission
    ) -> List[str]:
        url = f"{self.event_api_url}/e/{self.settings.event_key}"

        try:
            async with session.post(url, json=submission.model_dump()) as response:
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise UpstreamError(
                f"Job runner rejected event {submission.name}: {e.status} {e.message}",
                status=e.status,
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Error sending event {submission.name}: {e!r}")
            raise UpstreamError(
                f"Could not reach job runner for event {submission.name}: {e!r}"
            ) from e

        ids = data.get("ids") if isinstance(data, dict) else None
        return [run_id for run_id in (ids or []) if run_id]

    async def send_event(self, name: str, data: dict) -> List[str]:
        """Submit one event to the runner and return the ids it assigned"""
        submission = JobSubmission(name=name, data=data)
        async with self._session_scope() as session:
            return await self._send_event_once(session, submission)

    async def dispatch(self, job_type: JobType, payload: Union[JobPayload, dict]) -> str:
        ids = await self.send_event(job_type.event_name, event_data(payload))
        if not ids:
            self.logger.error(f"No run id returned for {job_type.event_name}")
            raise DispatchError(f"No runId returned for {job_type.event_name}")

        run_id = ids[0]
        self.logger.info(f"Dispatched {job_type.event_name} as run {run_id}")
        return run_id

    async def _get_run_once(self, session: aiohttp.ClientSession, run_id: str) -> JobRun:
        """Fetches the latest run record for an event from the runner"""
        url = f"{self.api_host}/v1/events/{run_id}/runs"

        try:
            async with session.get(url, headers=self._auth_headers()) as response:
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise UpstreamError(
                f"Status query for run {run_id} failed: {e.status} {e.message}",
                run_id=run_id,
                status=e.status,
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Error querying run {run_id}: {e!r}")
            raise UpstreamError(
                f"Could not reach job runner for run {run_id}: {e!r}", run_id=run_id
            ) from e

        records = data.get("data") if isinstance(data, dict) else None
        if records is None or not isinstance(records, list):
            raise UpstreamError(
                f"Malformed status response for run {run_id}", run_id=run_id
            )
        if not records:
            # the runner has not created a run for this event yet
            return JobRun(run_id=run_id, status=JobStatus.queued, raw_response=data)

        record = records[0]
        if not isinstance(record, dict):
            raise UpstreamError(
                f"Malformed run record for run {run_id}", run_id=run_id
            )
        try:
            return JobRun(
                run_id=run_id,
                status=JobStatus.parse(record.get("status")),
                output=record.get("output"),
                error=record.get("error"),
                raw_response=record,
            )
        except ValidationError as e:
            self.logger.error(f"Unreadable run record for run {run_id}: {e}")
            raise UpstreamError(
                f"Malformed run record for run {run_id}", run_id=run_id
            ) from e

    async def get_run(self, run_id: str) -> JobRun:
        async with self._session_scope() as session:
            return await self._get_run_once(session, run_id)

    def _calculate_delay(self, config: StatusPollingConfig, attempt: int) -> float:
        """Calculates the delay before the next attempt using exponential backoff with an optional jitter"""
        delay = min(
            config.initial_delay * (config.backoff_factor**attempt),
            config.max_delay,
        )

        # Add random jitter between 0-20% of the delay
        if config.jitter:
            delay *= 1 + random.uniform(0, 0.2)
        return delay

    async def _handle_status_change(
        self, poll_attempt: PollAttempt, last_status: Optional[JobStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status == poll_attempt.status or self.on_status_change is None:
            return
        self.logger.debug(
            f"Run {poll_attempt.run.run_id} status changed to {poll_attempt.status.value}"
        )
        result = self.on_status_change(poll_attempt)
        if inspect.isawaitable(result):
            await result

    async def _wait_before_retry(
        self, run_id: str, delay: float, cancel: Optional[asyncio.Event]
    ) -> None:
        """Sleep for the given delay, waking early if the caller cancels"""
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.logger.info(f"Polling for run {run_id} cancelled")
        raise JobCancelledError("Polling cancelled by caller", run_id)

    async def poll_until_complete(
        self,
        run_id: str,
        config: Optional[StatusPollingConfig] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> JobRun:
        """Poll the run status until a terminal status or an exhausted budget, using exponential backoff"""
        config = config or self.config or StatusPollingConfig()
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + config.timeout
        last_status = None
        attempt = 0

        async with self._session_scope() as session:
            while attempt < config.max_attempts and loop.time() < deadline:
                if cancel is not None and cancel.is_set():
                    raise JobCancelledError("Polling cancelled by caller", run_id)

                run = await self._get_run_once(session, run_id)
                attempt += 1
                poll_attempt = PollAttempt(
                    attempt=attempt,
                    elapsed_time=loop.time() - started,
                    status=run.status,
                    run=run,
                )
                await self._handle_status_change(poll_attempt, last_status)
                last_status = run.status

                if config.is_terminal(run.status):
                    if run.status in config.success_statuses:
                        self.logger.info(f"Run {run_id} completed after {attempt} polls")
                        return run

                    detail = run.failure_detail
                    self.logger.warning(
                        f"Run {run_id} ended with {run.status.value}: {detail}"
                    )
                    raise JobFailedError(run_id, run.status.value, detail)

                if attempt >= config.max_attempts:
                    break

                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                delay = min(self._calculate_delay(config, attempt - 1), remaining)
                self.logger.debug(
                    f"Run {run_id} is {run.status.value}, waiting {delay:.2f}s before next attempt"
                )
                await self._wait_before_retry(run_id, delay, cancel)

        elapsed = loop.time() - started
        self.logger.warning(f"Run {run_id} timed out after {attempt} polls")
        raise PollTimeoutError(run_id, attempt, elapsed)

    async def run_job(
        self,
        job_type: JobType,
        payload: Union[JobPayload, dict],
        config: Optional[StatusPollingConfig] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Any:
        """Dispatch a job, wait for its run to finish and return the run output"""
        config = config or self.config or polling_config_for(job_type)
        run_id = await self.dispatch(job_type, payload)

        try:
            run = await self.poll_until_complete(run_id, config, cancel)
        except asyncio.CancelledError:
            self.logger.info(f"Request for run {run_id} went away, stopped polling")
            raise

        if not run.has_output:
            self.logger.warning(f"Run {run_id} completed without an output object")
            raise MissingOutputError(
                "AI workflow did not return any output object.", run_id
            )
        return run.output
